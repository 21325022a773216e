"""
Pure state-transition rules for a single carrier task.

Nothing here touches storage or the clock; the store calls these inside its
per-submission critical section and persists whatever they return.

Transition table (existing -> incoming):

    none                  -> any           applied (submitted_at = incoming time)
    queued|processing     -> processing    applied, duplicate if already
                                           processing under the same task_id
    queued|processing     -> terminal      applied
    terminal (same id)    -> same status   duplicate (no-op)
    terminal (same id)    -> other status  conflict (first terminal wins)
    terminal (other id)   -> any           redispatched (overwrites)
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from carrier_automation.models import (
    CarrierTask,
    CompletedTask,
    FailedTask,
    ProcessingTask,
    QueuedTask,
    TaskPatch,
    TaskStatus,
)


class MergeOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    CONFLICT = "conflict"
    REDISPATCHED = "redispatched"


@dataclass(frozen=True)
class MergeResult:
    """Outcome of merging one patch into a carrier's task."""

    task: CarrierTask
    outcome: MergeOutcome
    previous: Optional[CarrierTask] = None

    @property
    def changed(self) -> bool:
        return self.outcome in (MergeOutcome.APPLIED, MergeOutcome.REDISPATCHED)


def _build_task(
    carrier: str,
    patch: TaskPatch,
    submitted_at: datetime,
    started_at: Optional[datetime],
) -> CarrierTask:
    if patch.status == TaskStatus.PROCESSING:
        return ProcessingTask(
            carrier=carrier,
            task_id=patch.task_id,
            submitted_at=submitted_at,
            started_at=patch.at,
        )
    if patch.status == TaskStatus.COMPLETED:
        return CompletedTask(
            carrier=carrier,
            task_id=patch.task_id,
            submitted_at=submitted_at,
            started_at=started_at,
            completed_at=patch.at,
            result=patch.result,
        )
    if patch.status == TaskStatus.FAILED:
        kwargs = {"error": patch.error} if patch.error else {}
        return FailedTask(
            carrier=carrier,
            task_id=patch.task_id,
            submitted_at=submitted_at,
            started_at=started_at,
            completed_at=patch.at,
            error_details=patch.error_details,
            **kwargs,
        )
    return QueuedTask(carrier=carrier, task_id=patch.task_id, submitted_at=submitted_at)


def apply_patch(
    existing: Optional[CarrierTask], carrier: str, patch: TaskPatch
) -> MergeResult:
    """Compute the carrier's next task given its current one and a patch."""
    if existing is None:
        # No dispatch was ever recorded; the notification time stands in.
        task = _build_task(carrier, patch, patch.at, None)
        return MergeResult(task=task, outcome=MergeOutcome.APPLIED)

    if existing.is_terminal:
        if existing.task_id != patch.task_id:
            task = _build_task(carrier, patch, existing.submitted_at, None)
            return MergeResult(task=task, outcome=MergeOutcome.REDISPATCHED, previous=existing)
        if existing.status == patch.status:
            return MergeResult(task=existing, outcome=MergeOutcome.DUPLICATE, previous=existing)
        return MergeResult(task=existing, outcome=MergeOutcome.CONFLICT, previous=existing)

    same_task = existing.task_id == patch.task_id
    if (
        patch.status == TaskStatus.PROCESSING
        and existing.status == TaskStatus.PROCESSING
        and same_task
    ):
        return MergeResult(task=existing, outcome=MergeOutcome.DUPLICATE, previous=existing)

    started_at = None
    if isinstance(existing, ProcessingTask) and same_task:
        started_at = existing.started_at
    task = _build_task(carrier, patch, existing.submitted_at, started_at)
    return MergeResult(task=task, outcome=MergeOutcome.APPLIED, previous=existing)


def queue_task(
    existing: Optional[CarrierTask],
    carrier: str,
    task_id: str,
    submitted_at: datetime,
) -> QueuedTask:
    """Fresh queued task for a new dispatch.

    Always replaces whatever the carrier held before. ``submitted_at`` never
    moves backwards relative to the task being replaced.
    """
    if existing is not None and existing.submitted_at > submitted_at:
        submitted_at = existing.submitted_at
    return QueuedTask(carrier=carrier, task_id=task_id, submitted_at=submitted_at)


__all__ = ["MergeOutcome", "MergeResult", "apply_patch", "queue_task"]
