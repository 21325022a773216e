"""Tracker configuration from YAML file.

Loads from config/config.yaml with all settings in one place:
- HTTP server settings
- Task store backend
- Supported automation carriers and their dispatch endpoints
- Client poller timing
- Logging

Environment variables ARE supported using ${VAR_NAME} syntax in YAML files.
"""

import json
import logging
import os
import re
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

# Default config file: config/config.yaml in src/ directory
DEFAULT_CONFIG_FILE = Path(__file__).parent / "config.yaml"

DEFAULT_CARRIERS = ["encova", "guard", "columbia"]
STORE_BACKENDS = ("memory", "sqlite")


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return dict."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} environment variables in config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        pattern = r"\$\{([^}:]+)(?::-(([^}]*))?)?\}"

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return os.getenv(var_name, default_value)

        return re.sub(pattern, replacer, data)
    else:
        return data


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes", "on")


@dataclass
class ServerConfig:
    """HTTP server settings."""

    host: str = "0.0.0.0"
    port: int = 8080
    cors_allow_origin: str = "*"


@dataclass
class StoreConfig:
    """Task record store settings."""

    backend: str = "sqlite"
    sqlite_path: str = "data/tracker.sqlite3"


@dataclass
class PollerConfig:
    """Client poller timing (seconds)."""

    interval_seconds: float = 5.0
    max_backoff_seconds: float = 30.0
    timeout_seconds: Optional[float] = None


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "INFO"
    json_format: bool = True
    log_dir: str = "logs"
    log_to_stdout: bool = False


@dataclass
class TrackerConfig:
    """Submission tracker configuration.

    Configuration structure:
        server: {host, port, cors_allow_origin}
        store: {backend, sqlite_path}
        carriers:
          encova: {dispatch_url: ...}
          guard: {dispatch_url: ...}
        dispatch: {timeout_seconds}
        poller: {interval_seconds, max_backoff_seconds, timeout_seconds}
        logging: {level, json_format, log_dir, log_to_stdout}

    Priority (highest to lowest): environment variables, YAML, dataclass defaults.
    """

    server: ServerConfig = field(default_factory=ServerConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    poller: PollerConfig = field(default_factory=PollerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Carrier name -> dispatch endpoint ("" when the carrier has no endpoint)
    carriers: Dict[str, str] = field(
        default_factory=lambda: {name: "" for name in DEFAULT_CARRIERS}
    )
    dispatch_timeout_seconds: float = 30.0

    @property
    def supported_carriers(self) -> List[str]:
        return list(self.carriers)

    def validate(self) -> None:
        """Validate settings, raising ValueError on the first problem found."""
        if self.store.backend not in STORE_BACKENDS:
            raise ValueError(
                f"Invalid store backend: {self.store.backend}. Must be one of {STORE_BACKENDS}"
            )
        if self.store.backend == "sqlite" and not self.store.sqlite_path:
            raise ValueError("store.sqlite_path is required for the sqlite backend")
        if not self.carriers:
            raise ValueError("At least one carrier must be configured")
        for name in self.carriers:
            if not name or name != name.strip().lower():
                raise ValueError(f"Carrier names must be lowercase identifiers: {name!r}")
        if not 0 < self.server.port < 65536:
            raise ValueError(f"Invalid server port: {self.server.port}")
        if self.poller.interval_seconds <= 0:
            raise ValueError("poller.interval_seconds must be positive")
        if self.poller.max_backoff_seconds < self.poller.interval_seconds:
            raise ValueError(
                "poller.max_backoff_seconds must be >= poller.interval_seconds"
            )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _build_config(data: Dict[str, Any]) -> TrackerConfig:
    server_data = data.get("server", {}) or {}
    store_data = data.get("store", {}) or {}
    poller_data = data.get("poller", {}) or {}
    logging_data = data.get("logging", {}) or {}
    dispatch_data = data.get("dispatch", {}) or {}
    carriers_data = data.get("carriers")

    if carriers_data is None:
        carriers = {name: "" for name in DEFAULT_CARRIERS}
    elif isinstance(carriers_data, list):
        carriers = {str(name).strip().lower(): "" for name in carriers_data}
    else:
        carriers = {
            str(name).strip().lower(): str((settings or {}).get("dispatch_url", "") or "")
            for name, settings in carriers_data.items()
        }

    # TRACKER_CARRIERS=encova,guard narrows or extends the supported set
    carriers_env = os.getenv("TRACKER_CARRIERS")
    if carriers_env:
        names = [n.strip().lower() for n in carriers_env.split(",") if n.strip()]
        carriers = {name: carriers.get(name, "") for name in names}

    for name in carriers:
        env_url = os.getenv(f"{name.upper()}_DISPATCH_URL")
        if env_url:
            carriers[name] = env_url

    timeout = os.getenv("POLL_TIMEOUT_SECONDS", poller_data.get("timeout_seconds"))

    return TrackerConfig(
        server=ServerConfig(
            host=os.getenv("TRACKER_HOST", server_data.get("host", "0.0.0.0")),
            port=int(os.getenv("TRACKER_PORT", str(server_data.get("port", 8080)))),
            cors_allow_origin=server_data.get("cors_allow_origin", "*"),
        ),
        store=StoreConfig(
            backend=os.getenv("TRACKER_STORE_BACKEND", store_data.get("backend", "sqlite")),
            sqlite_path=os.getenv(
                "TRACKER_SQLITE_PATH",
                store_data.get("sqlite_path", "data/tracker.sqlite3"),
            ),
        ),
        poller=PollerConfig(
            interval_seconds=float(
                os.getenv("POLL_INTERVAL_SECONDS", str(poller_data.get("interval_seconds", 5.0)))
            ),
            max_backoff_seconds=float(
                os.getenv(
                    "POLL_MAX_BACKOFF_SECONDS",
                    str(poller_data.get("max_backoff_seconds", 30.0)),
                )
            ),
            timeout_seconds=float(timeout) if timeout not in (None, "") else None,
        ),
        logging=LoggingConfig(
            level=os.getenv("LOG_LEVEL", logging_data.get("level", "INFO")).upper(),
            json_format=_parse_bool(logging_data.get("json_format", True)),
            log_dir=os.getenv("LOG_DIR", logging_data.get("log_dir", "logs")),
            log_to_stdout=_parse_bool(
                os.getenv("LOG_TO_STDOUT", logging_data.get("log_to_stdout", False))
            ),
        ),
        carriers=carriers,
        dispatch_timeout_seconds=float(dispatch_data.get("timeout_seconds", 30.0)),
    )


def load_config(config_path: Optional[Path] = None) -> TrackerConfig:
    """Load and validate tracker configuration.

    Args:
        config_path: YAML file to load (default: src/config/config.yaml)

    Raises:
        ValueError: If configuration is invalid
    """
    resolved_path = config_path or DEFAULT_CONFIG_FILE
    if config_path is not None and not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    data = _expand_env_vars(load_yaml(resolved_path))
    config = _build_config(data)
    config.validate()

    logger.debug(
        "Loaded tracker configuration",
        extra={"backend": config.store.backend, "carriers": config.supported_carriers},
    )
    return config


_config: Optional[TrackerConfig] = None


def get_config() -> TrackerConfig:
    """Get or load the singleton config instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: TrackerConfig) -> None:
    """Set the singleton config instance (tests, embedding)."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the singleton config instance."""
    global _config
    _config = None


def _cli_main() -> int:
    """Validate the configuration and optionally print it."""
    import argparse

    parser = argparse.ArgumentParser(description="Submission tracker configuration tool")
    parser.add_argument("--config", type=Path, help="Path to config.yaml")
    parser.add_argument("--show", action="store_true", help="Print the merged configuration")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    try:
        config = load_config(config_path=args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"✗ Error: {e}", file=sys.stderr)
        return 1

    print("✓ Configuration validation passed")
    if args.show:
        print(json.dumps(config.to_dict(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(_cli_main())
