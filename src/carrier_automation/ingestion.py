"""
Webhook ingestion: validate a worker's completion notification and merge it
into the submission's task map.

Validation order is fixed so callers always see the first problem:

    1. required fields present       -> 400 MissingField
    2. carrier is supported          -> 400 InvalidCarrier
    3. status is completed|failed    -> 400 InvalidStatus
    4. fields parse (timestamps ...) -> 400 InvalidField
    5. submission exists             -> 404 NotFound

Re-delivered notifications are idempotent; a contradicting terminal
notification for a finished task is absorbed (first terminal wins).
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from carrier_automation import metrics
from carrier_automation.errors import ConflictError, NotFoundError, StorageError, ValidationError
from carrier_automation.models import (
    TERMINAL_STATUSES,
    CarrierTask,
    CompletionNotification,
    TaskPatch,
    TaskStatus,
)
from carrier_automation.store import TaskRecordStore
from carrier_automation.transitions import MergeOutcome
from core.logging import log_exception, log_with_context, set_log_context

logger = logging.getLogger(__name__)

# (canonical name, accepted keys)
REQUIRED_FIELDS = (
    ("carrier", ("carrier",)),
    ("task_id", ("task_id", "taskId")),
    ("submission_id", ("submission_id", "submissionId")),
    ("status", ("status",)),
    ("completed_at", ("completed_at", "completedAt")),
)

WEBHOOK_STATUSES = tuple(sorted(s.value for s in TERMINAL_STATUSES))


def _field_value(payload: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None and value != "":
            return value
    return None


@dataclass(frozen=True)
class IngestionResult:
    """What happened to one accepted notification."""

    submission_id: str
    carrier: str
    status: TaskStatus
    outcome: MergeOutcome
    task: CarrierTask

    @property
    def applied(self) -> bool:
        return self.outcome in (MergeOutcome.APPLIED, MergeOutcome.REDISPATCHED)

    @property
    def message(self) -> str:
        if self.outcome == MergeOutcome.DUPLICATE:
            return f"Duplicate {self.status.value} notification for {self.carrier} ignored"
        if self.outcome == MergeOutcome.CONFLICT:
            return (
                f"{self.carrier} task already {self.task.status}; "
                f"{self.status.value} notification ignored"
            )
        return f"RPA task {self.status.value} for {self.carrier}"

    def to_response(self) -> dict:
        return {
            "success": True,
            "message": self.message,
            "applied": self.applied,
            "outcome": self.outcome.value,
            "carrier": self.carrier,
            "submission_id": self.submission_id,
            "status": self.status.value,
        }


class WebhookIngestionHandler:
    """Turns completion notifications into task state merges."""

    def __init__(self, store: TaskRecordStore, carriers: Iterable[str]):
        self._store = store
        self._carriers = frozenset(c.lower() for c in carriers)

    @property
    def supported_carriers(self) -> frozenset:
        return self._carriers

    def validate(self, payload: Any) -> CompletionNotification:
        """Check a raw payload in the documented order and parse it."""
        if not isinstance(payload, Mapping):
            raise ValidationError(
                "Request body must be a JSON object",
                code=ValidationError.MALFORMED_BODY,
            )

        missing = [name for name, keys in REQUIRED_FIELDS if _field_value(payload, keys) is None]
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                code=ValidationError.MISSING_FIELD,
                context={"missing": missing},
            )

        carrier = str(payload["carrier"]).strip().lower()
        if carrier not in self._carriers:
            raise ValidationError(
                f"Invalid carrier. Must be one of: {', '.join(sorted(self._carriers))}",
                code=ValidationError.INVALID_CARRIER,
                context={"carrier": carrier},
            )

        status = str(payload["status"]).strip().lower()
        if status not in WEBHOOK_STATUSES:
            raise ValidationError(
                f"Invalid status. Must be one of: {', '.join(WEBHOOK_STATUSES)}",
                code=ValidationError.INVALID_STATUS,
                context={"status": status},
            )

        try:
            return CompletionNotification.model_validate(
                {**payload, "carrier": carrier, "status": status}
            )
        except PydanticValidationError as e:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
            raise ValidationError(
                f"Invalid field(s): {', '.join(fields)}",
                cause=e,
                code=ValidationError.INVALID_FIELD,
                context={"fields": fields},
            ) from e

    async def ingest(self, payload: Any) -> IngestionResult:
        """Validate, then merge. Raises a TrackerError subclass on rejection."""
        notification = self.validate(payload)
        submission_id = notification.submission_id
        carrier = notification.carrier
        set_log_context(submission_id=submission_id, carrier=carrier, task_id=notification.task_id)

        if not await self._store.exists(submission_id):
            raise NotFoundError(
                "Submission not found",
                context={"submission_id": submission_id},
            )

        started = time.perf_counter()
        try:
            result = await self._store.merge(
                submission_id, carrier, TaskPatch.from_notification(notification)
            )
        except StorageError:
            metrics.record_store_error("merge")
            raise
        metrics.webhook_duration_seconds.observe(time.perf_counter() - started)
        metrics.record_merge(carrier, result.outcome.value)

        ingestion = IngestionResult(
            submission_id=submission_id,
            carrier=carrier,
            status=notification.status,
            outcome=result.outcome,
            task=result.task,
        )
        self._log_outcome(notification, ingestion, result.previous)
        return ingestion

    def _log_outcome(
        self,
        notification: CompletionNotification,
        ingestion: IngestionResult,
        previous: Optional[CarrierTask],
    ) -> None:
        fields = dict(
            submission_id=notification.submission_id,
            carrier=notification.carrier,
            task_id=notification.task_id,
            incoming_status=notification.status.value,
            outcome=ingestion.outcome.value,
        )
        if ingestion.outcome == MergeOutcome.CONFLICT:
            conflict = ConflictError(
                "Conflicting terminal notification ignored",
                context={"existing_status": ingestion.task.status},
            )
            log_exception(
                logger,
                conflict,
                "Conflicting terminal notification ignored",
                level=logging.WARNING,
                include_traceback=False,
                status=ingestion.task.status,
                **fields,
            )
            return
        if ingestion.outcome == MergeOutcome.DUPLICATE:
            log_with_context(logger, logging.INFO, "Duplicate notification ignored", **fields)
            return
        if previous is not None and previous.task_id != notification.task_id:
            log_with_context(
                logger,
                logging.WARNING if previous.is_active else logging.INFO,
                "Notification task_id differs from recorded task",
                existing_task_id=previous.task_id,
                previous_status=previous.status,
                **fields,
            )
        log_with_context(logger, logging.INFO, "RPA task updated", status=ingestion.task.status, **fields)


__all__ = ["IngestionResult", "WebhookIngestionHandler", "REQUIRED_FIELDS", "WEBHOOK_STATUSES"]
