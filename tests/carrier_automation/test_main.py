"""Tests for CLI argument handling."""

import pytest

from carrier_automation.__main__ import _apply_overrides, parse_args
from config.config import TrackerConfig


def test_serve_overrides():
    args = parse_args(["--log-level", "DEBUG", "serve", "--port", "9000", "--store", "memory"])
    config = _apply_overrides(TrackerConfig(), args)

    assert config.server.port == 9000
    assert config.store.backend == "memory"
    assert config.logging.level == "DEBUG"


def test_poll_interval_raises_backoff_ceiling():
    args = parse_args(["poll", "sub-1", "--interval", "60", "--timeout", "600"])
    config = _apply_overrides(TrackerConfig(), args)

    assert args.submission_id == "sub-1"
    assert args.base_url == "http://localhost:8080"
    assert config.poller.interval_seconds == 60
    assert config.poller.max_backoff_seconds == 60
    assert config.poller.timeout_seconds == 600


def test_invalid_override_rejected():
    args = parse_args(["serve", "--port", "70000"])
    with pytest.raises(ValueError):
        _apply_overrides(TrackerConfig(), args)


def test_command_required():
    with pytest.raises(SystemExit):
        parse_args([])
