"""
Carrier task schemas.

A ``CarrierTask`` is a tagged variant on ``status``: each of the four states
carries exactly the fields that are meaningful for it, so a queued task can
never hold a result and a failed task always holds an error.

Serialized form (one submission's task map, keyed by carrier):

    {
      "encova": {"carrier": "encova", "task_id": "task-77", "status": "completed",
                 "submitted_at": "...", "completed_at": "...",
                 "result": {"policy_code": "ABC123", "quote_url": null,
                            "message": "Automation completed successfully"}},
      "guard": {"carrier": "guard", "task_id": "task-78", "status": "queued",
                "submitted_at": "..."}
    }
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Mapping, Optional, Union

from pydantic import (
    AfterValidator,
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
)

DEFAULT_RESULT_MESSAGE = "Automation completed successfully"
DEFAULT_ERROR_MESSAGE = "Automation failed"


class TaskStatus(str, Enum):
    """Lifecycle states of a carrier task."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_STATUSES = frozenset({TaskStatus.QUEUED, TaskStatus.PROCESSING})
TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})


def ensure_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC and normalize aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def utc_now() -> datetime:
    return datetime.now(UTC)


UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


class TaskResult(BaseModel):
    """Worker-supplied output of a completed task.

    Opaque: the well-known keys are typed ``Any`` so a worker's values are
    stored exactly as sent, and any other key is preserved as-is.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    policy_code: Any = None
    quote_url: Any = None
    message: Any = DEFAULT_RESULT_MESSAGE

    @field_validator("message", mode="before")
    @classmethod
    def default_message(cls, v: Any) -> Any:
        return v or DEFAULT_RESULT_MESSAGE


class _TaskBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    carrier: str = Field(..., min_length=1)
    task_id: str = Field(..., min_length=1)
    submitted_at: UtcDatetime

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class QueuedTask(_TaskBase):
    """Handed to an external worker; no progress reported yet."""

    status: Literal["queued"] = "queued"


class ProcessingTask(_TaskBase):
    """The worker reported that it picked the task up."""

    status: Literal["processing"] = "processing"
    started_at: UtcDatetime


class CompletedTask(_TaskBase):
    status: Literal["completed"] = "completed"
    started_at: Optional[UtcDatetime] = None
    completed_at: UtcDatetime
    result: Optional[TaskResult] = None


class FailedTask(_TaskBase):
    status: Literal["failed"] = "failed"
    started_at: Optional[UtcDatetime] = None
    completed_at: UtcDatetime
    error: str = DEFAULT_ERROR_MESSAGE
    error_details: Optional[Any] = None


CarrierTask = Annotated[
    Union[QueuedTask, ProcessingTask, CompletedTask, FailedTask],
    Field(discriminator="status"),
]

TaskMap = Dict[str, CarrierTask]

_TASK_ADAPTER: TypeAdapter = TypeAdapter(CarrierTask)
_TASK_MAP_ADAPTER: TypeAdapter = TypeAdapter(Dict[str, CarrierTask])


def parse_task(data: Mapping[str, Any]) -> CarrierTask:
    return _TASK_ADAPTER.validate_python(data)


def parse_task_map(data: Optional[Mapping[str, Any]]) -> TaskMap:
    """Parse a persisted or transmitted task map (``None`` means empty)."""
    if not data:
        return {}
    return _TASK_MAP_ADAPTER.validate_python(data)


def dump_task_map(tasks: Mapping[str, CarrierTask]) -> Dict[str, Any]:
    """JSON-compatible dict keyed by carrier name."""
    return {carrier: task.model_dump(mode="json") for carrier, task in tasks.items()}


def has_active_tasks(tasks: Mapping[str, CarrierTask]) -> bool:
    return any(task.is_active for task in tasks.values())


class CompletionNotification(BaseModel):
    """Body of ``POST /webhooks/rpa-complete``.

    Snake-case keys are canonical; the camelCase spellings some workers send
    are accepted as aliases.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    carrier: str
    task_id: str = Field(..., validation_alias=AliasChoices("task_id", "taskId"))
    submission_id: str = Field(
        ..., validation_alias=AliasChoices("submission_id", "submissionId")
    )
    status: TaskStatus
    completed_at: UtcDatetime = Field(
        ..., validation_alias=AliasChoices("completed_at", "completedAt")
    )
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_details: Optional[Any] = Field(
        default=None, validation_alias=AliasChoices("error_details", "errorDetails")
    )

    @field_validator("carrier", "task_id", "submission_id", mode="before")
    @classmethod
    def strip_identifiers(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            v = str(v)
        return v.strip() if isinstance(v, str) else v

    @field_validator("error", mode="before")
    @classmethod
    def stringify_error(cls, v: Any) -> Any:
        if v is None or isinstance(v, str):
            return v
        return str(v)


class TaskPatch(BaseModel):
    """A single state transition requested for one carrier's task."""

    model_config = ConfigDict(frozen=True)

    task_id: str = Field(..., min_length=1)
    status: TaskStatus
    at: UtcDatetime
    result: Optional[TaskResult] = None
    error: Optional[str] = None
    error_details: Optional[Any] = None

    @classmethod
    def from_notification(cls, notification: CompletionNotification) -> "TaskPatch":
        completed = notification.status == TaskStatus.COMPLETED
        failed = notification.status == TaskStatus.FAILED
        result = None
        if completed and notification.result:
            result = TaskResult.model_validate(notification.result)
        return cls(
            task_id=notification.task_id,
            status=notification.status,
            at=notification.completed_at,
            result=result,
            error=(notification.error or DEFAULT_ERROR_MESSAGE) if failed else None,
            error_details=notification.error_details if failed else None,
        )


__all__ = [
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "CarrierTask",
    "CompletedTask",
    "CompletionNotification",
    "FailedTask",
    "ProcessingTask",
    "QueuedTask",
    "TaskMap",
    "TaskPatch",
    "TaskResult",
    "TaskStatus",
    "dump_task_map",
    "ensure_utc",
    "has_active_tasks",
    "parse_task",
    "parse_task_map",
    "utc_now",
]
