"""End-to-end flows: dispatch, webhook delivery over HTTP, status reads, polling."""

import asyncio

import pytest
from aiohttp.test_utils import TestClient, TestServer
from tracker_helpers import CARRIERS, SUBMISSION_ID, T0, at, notification

from carrier_automation.dispatch import DispatchRecorder
from carrier_automation.poller import ClientPoller, PollState
from carrier_automation.server import WEBHOOK_PATH, TrackerServer
from carrier_automation.status import StatusQueryService
from config.config import StoreConfig, TrackerConfig


@pytest.fixture
async def system(store):
    """Running HTTP app over the parametrized store, plus its collaborators."""
    config = TrackerConfig(store=StoreConfig(backend=store.backend))
    app = TrackerServer(config, store).create_app()
    async with TestClient(TestServer(app)) as client:
        yield client, DispatchRecorder(store, CARRIERS), StatusQueryService(store)


async def test_dispatch_complete_then_query(system):
    client, recorder, status = system
    await recorder.record_dispatch(SUBMISSION_ID, "encova", "task-77", T0)

    response = await client.post(
        WEBHOOK_PATH,
        json={
            "carrier": "encova",
            "taskId": "task-77",
            "submissionId": SUBMISSION_ID,
            "status": "completed",
            "completed_at": at(120).isoformat(),
            "result": {"policy_code": "ABC123"},
        },
    )
    assert response.status == 200

    query = await client.get(f"/submissions/{SUBMISSION_ID}")
    encova = (await query.json())["rpa_tasks"]["encova"]
    assert encova["status"] == "completed"
    assert encova["result"]["policy_code"] == "ABC123"


async def test_unsupported_carrier_leaves_store_unchanged(system):
    client, recorder, status = system
    await recorder.record_dispatch(SUBMISSION_ID, "encova", "task-77", T0)
    before = await status.get_task_statuses(SUBMISSION_ID)

    response = await client.post(WEBHOOK_PATH, json=notification(carrier="aetna"))

    assert response.status == 400
    assert (await response.json())["code"] == "InvalidCarrier"
    assert await status.get_task_statuses(SUBMISSION_ID) == before


async def test_unknown_submission_leaves_store_unchanged(system):
    client, recorder, status = system
    response = await client.post(WEBHOOK_PATH, json=notification(submission_id="sub-404"))

    assert response.status == 404
    assert await status.get_task_statuses(SUBMISSION_ID) == {}


async def test_repeated_delivery_matches_single_delivery(system):
    client, recorder, status = system
    await recorder.record_dispatch(SUBMISSION_ID, "guard", "g-1", T0)
    payload = notification(carrier="guard", task_id="g-1", result={"policy_code": "G1"})

    await client.post(WEBHOOK_PATH, json=payload)
    once = await status.get_task_statuses(SUBMISSION_ID)
    for _ in range(3):
        response = await client.post(WEBHOOK_PATH, json=payload)
        assert response.status == 200

    assert await status.get_task_statuses(SUBMISSION_ID) == once


async def test_concurrent_siblings_are_not_lost(system):
    client, recorder, status = system
    for carrier in CARRIERS:
        await recorder.record_dispatch(SUBMISSION_ID, carrier, f"{carrier}-t", T0)

    responses = await asyncio.gather(
        *(
            client.post(WEBHOOK_PATH, json=notification(carrier=c, task_id=f"{c}-t"))
            for c in CARRIERS
        )
    )

    assert [r.status for r in responses] == [200, 200, 200]
    tasks = await status.get_task_statuses(SUBMISSION_ID)
    assert {c: t.status for c, t in tasks.items()} == {c: "completed" for c in CARRIERS}


async def test_late_failure_cannot_undo_completion(system):
    client, recorder, status = system
    await recorder.record_dispatch(SUBMISSION_ID, "encova", "task-77", T0)
    await client.post(WEBHOOK_PATH, json=notification(status="completed"))

    response = await client.post(
        WEBHOOK_PATH, json=notification(status="failed", error="timeout")
    )

    assert response.status == 200
    task = (await status.get_task_statuses(SUBMISSION_ID))["encova"]
    assert task.status == "completed"


async def test_redispatch_resets_terminal_task(system):
    client, recorder, status = system
    await recorder.record_dispatch(SUBMISSION_ID, "encova", "task-1", T0)
    await client.post(
        WEBHOOK_PATH, json=notification(task_id="task-1", status="failed", error="Login failed")
    )

    await recorder.record_dispatch(SUBMISSION_ID, "encova", "task-2", at(600))

    task = (await status.get_task_statuses(SUBMISSION_ID))["encova"]
    assert task.status == "queued"
    assert task.task_id == "task-2"
    assert not hasattr(task, "error")
    assert not hasattr(task, "result")


async def test_poller_settles_after_last_completion(system):
    client, recorder, status = system
    await recorder.record_dispatch(SUBMISSION_ID, "encova", "e-1", T0)
    await recorder.record_dispatch(SUBMISSION_ID, "guard", "g-1", T0)
    await client.post(WEBHOOK_PATH, json=notification(carrier="guard", task_id="g-1"))

    poller = ClientPoller(SUBMISSION_ID, status, interval_seconds=0.01)
    poller.start()
    await asyncio.sleep(0.05)

    # {encova: queued, guard: completed} keeps polling
    assert poller.state == PollState.POLLING

    await client.post(WEBHOOK_PATH, json=notification(carrier="encova", task_id="e-1"))
    tasks = await poller.wait(timeout=2)

    assert poller.state == PollState.SETTLED
    assert {c: t.status for c, t in tasks.items()} == {"encova": "completed", "guard": "completed"}
