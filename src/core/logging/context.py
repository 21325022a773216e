"""Context variables for structured logging."""

from contextvars import ContextVar
from typing import Dict, Optional

_submission_id: ContextVar[str] = ContextVar("submission_id", default="")
_carrier: ContextVar[str] = ContextVar("carrier", default="")
_task_id: ContextVar[str] = ContextVar("task_id", default="")
_stage_name: ContextVar[str] = ContextVar("stage_name", default="")
_trace_id: ContextVar[str] = ContextVar("trace_id", default="")


def set_log_context(
    submission_id: Optional[str] = None,
    carrier: Optional[str] = None,
    task_id: Optional[str] = None,
    stage: Optional[str] = None,
    trace_id: Optional[str] = None,
) -> None:
    if submission_id is not None:
        _submission_id.set(submission_id)
    if carrier is not None:
        _carrier.set(carrier)
    if task_id is not None:
        _task_id.set(task_id)
    if stage is not None:
        _stage_name.set(stage)
    if trace_id is not None:
        _trace_id.set(trace_id)


def get_log_context() -> Dict[str, str]:
    return {
        "submission_id": _submission_id.get(),
        "carrier": _carrier.get(),
        "task_id": _task_id.get(),
        "stage": _stage_name.get(),
        "trace_id": _trace_id.get(),
    }


def clear_log_context() -> None:
    _submission_id.set("")
    _carrier.set("")
    _task_id.set("")
    _stage_name.set("")
    _trace_id.set("")
