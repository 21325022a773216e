"""HTTP-level tests for the tracker server."""

import pytest
from aiohttp.test_utils import TestClient, TestServer
from tracker_helpers import SUBMISSION_ID, T0, notification

from carrier_automation.errors import StorageError
from carrier_automation.server import WEBHOOK_PATH, TrackerServer
from carrier_automation.store import InMemoryTaskStore
from config.config import StoreConfig, TrackerConfig


def make_config():
    return TrackerConfig(store=StoreConfig(backend="memory"))


@pytest.fixture
async def tracker():
    store = InMemoryTaskStore()
    await store.create_submission(SUBMISSION_ID)
    server = TrackerServer(make_config(), store)
    async with TestClient(TestServer(server.create_app())) as client:
        yield client, store


async def post_webhook(client, payload):
    response = await client.post(WEBHOOK_PATH, json=payload)
    return response, await response.json()


class TestWebhook:
    async def test_completion_accepted(self, tracker):
        client, store = tracker
        await store.set_queued(SUBMISSION_ID, "encova", "task-77", T0)

        response, body = await post_webhook(client, notification(result={"policy_code": "ABC123"}))

        assert response.status == 200
        assert body["success"] is True
        assert body["message"] == "RPA task completed for encova"
        task = await store.get_task(SUBMISSION_ID, "encova")
        assert task.status == "completed"
        assert task.result.policy_code == "ABC123"

    async def test_numeric_policy_code_accepted(self, tracker):
        client, store = tracker
        await store.set_queued(SUBMISSION_ID, "encova", "task-77", T0)

        response, body = await post_webhook(
            client, notification(result={"policy_code": 12345, "message": "ok"})
        )

        assert response.status == 200
        assert body["applied"] is True
        task = await store.get_task(SUBMISSION_ID, "encova")
        assert task.result.policy_code == 12345

        query = await client.get(f"/submissions/{SUBMISSION_ID}")
        body = await query.json()
        assert body["rpa_tasks"]["encova"]["result"]["policy_code"] == 12345

    async def test_response_headers(self, tracker):
        client, _ = tracker
        response, _ = await post_webhook(client, notification())

        assert response.headers["Access-Control-Allow-Origin"] == "*"
        assert "POST" in response.headers["Access-Control-Allow-Methods"]
        assert "no-store" in response.headers["Cache-Control"]
        assert response.headers["Pragma"] == "no-cache"

    async def test_error_responses_carry_cors_headers(self, tracker):
        client, _ = tracker
        response, _ = await post_webhook(client, {})
        assert response.status == 400
        assert response.headers["Access-Control-Allow-Origin"] == "*"

    async def test_preflight(self, tracker):
        client, _ = tracker
        response = await client.options(WEBHOOK_PATH)
        assert response.status == 200
        assert response.headers["Access-Control-Allow-Headers"] == "Content-Type"

    async def test_info(self, tracker):
        client, _ = tracker
        response = await client.get(WEBHOOK_PATH)
        body = await response.json()
        assert response.status == 200
        assert body == {
            "status": "ok",
            "message": "RPA webhook endpoint is ready",
            "endpoint": WEBHOOK_PATH,
            "method": "POST",
        }

    @pytest.mark.parametrize(
        "payload, code",
        [
            ({"carrier": "encova"}, "MissingField"),
            (notification(carrier="acme", status="bogus"), "InvalidCarrier"),
            (notification(status="processing"), "InvalidStatus"),
            (notification(completed_at=None) | {"completed_at": "not-a-date"}, "InvalidField"),
            (["a", "list"], "MalformedBody"),
        ],
    )
    async def test_rejections(self, tracker, payload, code):
        client, store = tracker
        response, body = await post_webhook(client, payload)

        assert response.status == 400
        assert body["code"] == code
        assert body["error"]
        assert await store.get(SUBMISSION_ID) == {}

    async def test_missing_fields_listed_in_details(self, tracker):
        client, _ = tracker
        _, body = await post_webhook(client, {"carrier": "encova", "status": "completed"})
        assert body["details"]["missing"] == ["task_id", "submission_id", "completed_at"]

    async def test_malformed_json(self, tracker):
        client, _ = tracker
        response = await client.post(
            WEBHOOK_PATH, data="{not json", headers={"Content-Type": "application/json"}
        )
        body = await response.json()
        assert response.status == 400
        assert body == {"error": "Invalid JSON body", "code": "MalformedBody"}

    async def test_unknown_submission(self, tracker):
        client, _ = tracker
        response, body = await post_webhook(client, notification(submission_id="nope"))
        assert response.status == 404
        assert body["code"] == "NotFound"

    async def test_duplicate_and_conflict_return_200(self, tracker):
        client, store = tracker
        await post_webhook(client, notification(status="completed"))

        dup_response, dup = await post_webhook(client, notification(status="completed"))
        conflict_response, conflict = await post_webhook(client, notification(status="failed"))

        assert dup_response.status == 200
        assert dup["applied"] is False
        assert dup["outcome"] == "duplicate"
        assert conflict_response.status == 200
        assert conflict["outcome"] == "conflict"
        assert (await store.get_task(SUBMISSION_ID, "encova")).status == "completed"


async def test_storage_failure_is_500():
    class BrokenStore(InMemoryTaskStore):
        async def _read_modify_write(self, submission_id, mutate):
            raise StorageError("disk full")

    store = BrokenStore()
    await store.create_submission(SUBMISSION_ID)
    app = TrackerServer(make_config(), store).create_app()

    async with TestClient(TestServer(app)) as client:
        response, body = await post_webhook(client, notification())

    assert response.status == 500
    assert body["code"] == "StorageError"
    assert await store.get(SUBMISSION_ID) == {}


async def test_unexpected_error_is_500():
    class ExplodingStore(InMemoryTaskStore):
        async def exists(self, submission_id):
            raise RuntimeError("boom")

    app = TrackerServer(make_config(), ExplodingStore()).create_app()

    async with TestClient(TestServer(app)) as client:
        response, body = await post_webhook(client, notification())

    assert response.status == 500
    assert body["error"] == "Internal server error"
    assert body["details"] == "boom"


class TestSubmissionQuery:
    async def test_returns_task_map(self, tracker):
        client, store = tracker
        await store.set_queued(SUBMISSION_ID, "guard", "t1", T0)

        response = await client.get(f"/submissions/{SUBMISSION_ID}")
        body = await response.json()

        assert response.status == 200
        assert "no-store" in response.headers["Cache-Control"]
        assert body["id"] == SUBMISSION_ID
        assert body["rpa_tasks"]["guard"]["status"] == "queued"
        assert body["summary"]["active"] is True

    async def test_unknown_submission(self, tracker):
        client, _ = tracker
        response = await client.get("/submissions/missing")
        assert response.status == 404


class TestProbes:
    async def test_liveness(self, tracker):
        client, _ = tracker
        response = await client.get("/health/live")
        body = await response.json()
        assert response.status == 200
        assert body["status"] == "alive"

    async def test_readiness(self, tracker):
        client, _ = tracker
        response = await client.get("/health/ready")
        body = await response.json()
        assert response.status == 200
        assert body["backend"] == "memory"
        assert body["carriers"] == ["encova", "guard", "columbia"]

    async def test_readiness_fails_when_store_unavailable(self):
        class DownStore(InMemoryTaskStore):
            async def exists(self, submission_id):
                raise StorageError("database is locked")

        app = TrackerServer(make_config(), DownStore()).create_app()
        async with TestClient(TestServer(app)) as client:
            response = await client.get("/health/ready")
            body = await response.json()

        assert response.status == 503
        assert body["reasons"] == ["store_unavailable"]

    async def test_metrics_exposes_webhook_counter(self, tracker):
        client, _ = tracker
        await post_webhook(client, notification())

        response = await client.get("/metrics")
        text = await response.text()

        assert response.status == 200
        assert "tracker_webhook_requests_total" in text
