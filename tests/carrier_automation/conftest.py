"""Shared fixtures for carrier automation tests."""

import pytest
from tracker_helpers import CARRIERS, SUBMISSION_ID

from carrier_automation.dispatch import DispatchRecorder
from carrier_automation.ingestion import WebhookIngestionHandler
from carrier_automation.sqlite_store import SqliteTaskStore
from carrier_automation.status import StatusQueryService
from carrier_automation.store import InMemoryTaskStore


@pytest.fixture(params=["memory", "sqlite"])
async def store(request, tmp_path):
    """Store-level tests run against both backends."""
    if request.param == "memory":
        backend = InMemoryTaskStore()
    else:
        backend = SqliteTaskStore(tmp_path / "tracker.sqlite3")
    await backend.create_submission(SUBMISSION_ID)
    yield backend
    await backend.close()


@pytest.fixture
async def memory_store():
    backend = InMemoryTaskStore()
    await backend.create_submission(SUBMISSION_ID)
    return backend


@pytest.fixture
def handler(store):
    return WebhookIngestionHandler(store, CARRIERS)


@pytest.fixture
def recorder(store):
    return DispatchRecorder(store, CARRIERS)


@pytest.fixture
def status_service(store):
    return StatusQueryService(store)
