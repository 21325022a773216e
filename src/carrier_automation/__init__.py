"""
Carrier automation task tracking.

Tracks per-carrier automation tasks for insurance submissions: records
dispatches, ingests worker completion webhooks, answers status queries and
polls until every carrier settles.

Modules:
    models       - CarrierTask tagged variant and webhook payload schemas
    transitions  - Pure merge rules for a carrier task
    store        - Task record store interface and in-memory backend
    sqlite_store - SQLite backend
    ingestion    - Webhook ingestion handler
    dispatch     - Dispatch recorder and HTTP carrier dispatcher
    status       - Status query service
    poller       - Client poller state machine
    server       - aiohttp application
"""

from carrier_automation.dispatch import CarrierDispatcher, DispatchRecorder, DispatchSummary
from carrier_automation.errors import ConflictError, NotFoundError, StorageError, ValidationError
from carrier_automation.ingestion import IngestionResult, WebhookIngestionHandler
from carrier_automation.models import (
    CarrierTask,
    CompletedTask,
    CompletionNotification,
    FailedTask,
    ProcessingTask,
    QueuedTask,
    TaskPatch,
    TaskResult,
    TaskStatus,
)
from carrier_automation.poller import ClientPoller, HttpStatusSource, PollState
from carrier_automation.status import StatusQueryService
from carrier_automation.store import InMemoryTaskStore, TaskRecordStore, create_task_store
from carrier_automation.transitions import MergeOutcome, MergeResult

__all__ = [
    # Models
    "CarrierTask",
    "QueuedTask",
    "ProcessingTask",
    "CompletedTask",
    "FailedTask",
    "TaskStatus",
    "TaskResult",
    "TaskPatch",
    "CompletionNotification",
    # Errors
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "StorageError",
    # Store
    "TaskRecordStore",
    "InMemoryTaskStore",
    "create_task_store",
    "MergeOutcome",
    "MergeResult",
    # Services
    "WebhookIngestionHandler",
    "IngestionResult",
    "DispatchRecorder",
    "CarrierDispatcher",
    "DispatchSummary",
    "StatusQueryService",
    "ClientPoller",
    "HttpStatusSource",
    "PollState",
]
