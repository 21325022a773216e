"""Tests for the status query service."""

import pytest
from tracker_helpers import SUBMISSION_ID, T0, at

from carrier_automation.errors import NotFoundError
from carrier_automation.models import CompletedTask, ProcessingTask, QueuedTask
from carrier_automation.status import StatusQueryService, elapsed_seconds


async def test_empty_when_nothing_dispatched(status_service):
    assert await status_service.get_task_statuses(SUBMISSION_ID) == {}


async def test_unknown_submission(status_service):
    with pytest.raises(NotFoundError):
        await status_service.get_task_statuses("missing")


async def test_service_is_callable_as_status_source(status_service, recorder):
    await recorder.record_dispatch(SUBMISSION_ID, "guard", "t1", T0)
    tasks = await status_service(SUBMISSION_ID)
    assert tasks["guard"].task_id == "t1"


async def test_reads_do_not_mutate(status_service, recorder, store):
    await recorder.record_dispatch(SUBMISSION_ID, "guard", "t1", T0)
    first = await status_service.get_task_statuses(SUBMISSION_ID)
    first.pop("guard")
    assert "guard" in await store.get(SUBMISSION_ID)


def test_summarize():
    tasks = {
        "encova": CompletedTask(carrier="encova", task_id="a", submitted_at=T0, completed_at=at(5)),
        "guard": QueuedTask(carrier="guard", task_id="b", submitted_at=T0),
    }
    summary = StatusQueryService.summarize(tasks)
    assert summary.counts == {"queued": 1, "processing": 0, "completed": 1, "failed": 0}
    assert summary.active
    assert not summary.settled

    del tasks["guard"]
    assert StatusQueryService.summarize(tasks).settled


def test_summarize_empty_is_neither_active_nor_settled():
    summary = StatusQueryService.summarize({})
    assert not summary.active
    assert not summary.settled
    assert summary.to_dict()["total"] == 0


def test_elapsed_seconds():
    done = CompletedTask(carrier="encova", task_id="a", submitted_at=T0, completed_at=at(90))
    running = ProcessingTask(carrier="guard", task_id="b", submitted_at=T0, started_at=at(1))
    assert elapsed_seconds(done, now=at(1000)) == 90
    assert elapsed_seconds(running, now=at(30)) == 30


async def test_describe(status_service, recorder):
    await recorder.record_dispatch(SUBMISSION_ID, "guard", "t1", T0)
    body = await status_service.describe(SUBMISSION_ID, now=at(12))
    assert body["id"] == SUBMISSION_ID
    assert body["rpa_tasks"]["guard"]["status"] == "queued"
    assert body["elapsed_seconds"] == {"guard": 12.0}
    assert body["summary"]["active"] is True
