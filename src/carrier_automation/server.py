"""
HTTP surface of the submission tracker.

Endpoints:
- POST    /webhooks/rpa-complete  - completion notification from a worker
- GET     /webhooks/rpa-complete  - endpoint liveness for worker operators
- OPTIONS /webhooks/rpa-complete  - CORS preflight
- GET     /submissions/{id}       - current carrier task map
- GET     /health/live            - liveness probe
- GET     /health/ready           - readiness probe (store reachable)
- GET     /metrics                - Prometheus exposition

Every webhook response carries permissive CORS headers and disables caching.

Usage:
    server = TrackerServer(config, store)
    await server.start()
    ...
    await server.stop()
"""

import json
import logging
import time
import uuid
from datetime import UTC, datetime
from typing import Any, Dict, Optional

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from carrier_automation import metrics
from carrier_automation.errors import StorageError
from carrier_automation.ingestion import WebhookIngestionHandler
from carrier_automation.status import StatusQueryService
from carrier_automation.store import TaskRecordStore
from config.config import TrackerConfig
from core.errors import TrackerError
from core.logging import clear_log_context, log_exception, log_with_context, set_log_context

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/webhooks/rpa-complete"

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate",
    "Pragma": "no-cache",
}


def cors_headers(allow_origin: str = "*") -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": allow_origin,
        "Access-Control-Allow-Methods": "POST, GET, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type",
    }


def error_body(error: TrackerError) -> Dict[str, Any]:
    body: Dict[str, Any] = {"error": error.message, "code": error.code}
    if error.context:
        body["details"] = error.context
    return body


class TrackerServer:
    """aiohttp application wiring the tracker services to HTTP."""

    def __init__(self, config: TrackerConfig, store: TaskRecordStore):
        self.config = config
        self.store = store
        self.ingestion = WebhookIngestionHandler(store, config.supported_carriers)
        self.status = StatusQueryService(store)
        self._webhook_headers = {**cors_headers(config.server.cors_allow_origin), **NO_CACHE_HEADERS}
        self._started_at = datetime.now(UTC)

        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post(WEBHOOK_PATH, self.handle_webhook)
        app.router.add_get(WEBHOOK_PATH, self.handle_webhook_info)
        app.router.add_route("OPTIONS", WEBHOOK_PATH, self.handle_webhook_options)
        app.router.add_get("/submissions/{submission_id}", self.handle_get_submission)
        app.router.add_get("/health/live", self.handle_liveness)
        app.router.add_get("/health/ready", self.handle_readiness)
        app.router.add_get("/metrics", self.handle_metrics)
        app.on_cleanup.append(self._on_cleanup)
        return app

    async def _on_cleanup(self, app: web.Application) -> None:
        await self.store.close()

    def _webhook_response(self, body: Dict[str, Any], status: int = 200) -> web.Response:
        metrics.record_webhook(status)
        return web.json_response(body, status=status, headers=self._webhook_headers)

    # -- webhook --

    async def handle_webhook(self, request: web.Request) -> web.Response:
        """Handle POST /webhooks/rpa-complete."""
        clear_log_context()
        set_log_context(trace_id=request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16])
        started = time.perf_counter()

        try:
            payload = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            log_with_context(
                logger,
                logging.WARNING,
                "Rejected webhook with malformed JSON",
                http_status=400,
                error_message=str(e)[:200],
            )
            return self._webhook_response(
                {"error": "Invalid JSON body", "code": "MalformedBody"}, status=400
            )

        try:
            result = await self.ingestion.ingest(payload)
        except TrackerError as e:
            level = logging.ERROR if e.http_status >= 500 else logging.WARNING
            log_exception(
                logger,
                e,
                "Webhook rejected",
                level=level,
                include_traceback=isinstance(e, StorageError),
                http_status=e.http_status,
            )
            return self._webhook_response(error_body(e), status=e.http_status)
        except Exception as e:
            log_exception(logger, e, "Unexpected error processing webhook", http_status=500)
            return self._webhook_response(
                {"error": "Internal server error", "details": str(e)}, status=500
            )

        log_with_context(
            logger,
            logging.INFO,
            "Webhook processed",
            http_status=200,
            outcome=result.outcome.value,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return self._webhook_response(result.to_response())

    async def handle_webhook_info(self, request: web.Request) -> web.Response:
        """Handle GET /webhooks/rpa-complete."""
        return web.json_response(
            {
                "status": "ok",
                "message": "RPA webhook endpoint is ready",
                "endpoint": WEBHOOK_PATH,
                "method": "POST",
            },
            headers=self._webhook_headers,
        )

    async def handle_webhook_options(self, request: web.Request) -> web.Response:
        """CORS preflight."""
        return web.Response(status=200, headers=self._webhook_headers)

    # -- queries --

    async def handle_get_submission(self, request: web.Request) -> web.Response:
        """Handle GET /submissions/{submission_id}."""
        submission_id = request.match_info["submission_id"]
        try:
            body = await self.status.describe(submission_id)
        except TrackerError as e:
            if e.http_status >= 500:
                metrics.record_store_error("get")
                log_exception(logger, e, "Status query failed", submission_id=submission_id)
            return web.json_response(error_body(e), status=e.http_status, headers=NO_CACHE_HEADERS)
        return web.json_response(body, headers=NO_CACHE_HEADERS)

    # -- probes --

    async def handle_liveness(self, request: web.Request) -> web.Response:
        uptime_seconds = (datetime.now(UTC) - self._started_at).total_seconds()
        return web.json_response(
            {
                "status": "alive",
                "uptime_seconds": int(uptime_seconds),
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )

    async def handle_readiness(self, request: web.Request) -> web.Response:
        try:
            await self.store.exists("__readiness_probe__")
        except TrackerError as e:
            log_exception(logger, e, "Readiness check failed", level=logging.WARNING)
            return web.json_response(
                {
                    "status": "not_ready",
                    "reasons": ["store_unavailable"],
                    "timestamp": datetime.now(UTC).isoformat(),
                },
                status=503,
            )
        return web.json_response(
            {
                "status": "ready",
                "backend": self.store.backend,
                "carriers": self.config.supported_carriers,
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )

    async def handle_metrics(self, request: web.Request) -> web.Response:
        return web.Response(body=generate_latest(REGISTRY), headers={"Content-Type": CONTENT_TYPE_LATEST})

    # -- lifecycle --

    async def start(self) -> None:
        app = self.create_app()
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self.config.server.host, self.config.server.port)
        await self._site.start()
        logger.info(
            "Tracker server started",
            extra={
                "endpoint": f"http://{self.config.server.host}:{self.config.server.port}{WEBHOOK_PATH}",
                "backend": self.store.backend,
                "carriers": self.config.supported_carriers,
            },
        )

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
        self._runner = None
        self._site = None
        logger.info("Tracker server stopped")


def create_app(config: TrackerConfig, store: TaskRecordStore) -> web.Application:
    """Application factory (used by tests and ``aiohttp.web.run_app``)."""
    return TrackerServer(config, store).create_app()


__all__ = ["TrackerServer", "create_app", "cors_headers", "WEBHOOK_PATH"]
