"""Read-side view of a submission's carrier tasks."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Mapping, Optional

from carrier_automation.models import CarrierTask, TaskMap, TaskStatus, dump_task_map, utc_now
from carrier_automation.store import TaskRecordStore

logger = logging.getLogger(__name__)


def elapsed_seconds(task: CarrierTask, now: Optional[datetime] = None) -> float:
    """Seconds from dispatch until completion (or until ``now`` while active)."""
    end = getattr(task, "completed_at", None) or now or utc_now()
    return max(0.0, (end - task.submitted_at).total_seconds())


@dataclass
class StatusSummary:
    counts: Dict[str, int] = field(default_factory=dict)
    total: int = 0

    @property
    def active(self) -> bool:
        return bool(
            self.counts.get(TaskStatus.QUEUED.value) or self.counts.get(TaskStatus.PROCESSING.value)
        )

    @property
    def settled(self) -> bool:
        return self.total > 0 and not self.active

    def to_dict(self) -> dict:
        return {
            "counts": dict(self.counts),
            "total": self.total,
            "active": self.active,
            "settled": self.settled,
        }


class StatusQueryService:
    """Pure reads over the task store."""

    def __init__(self, store: TaskRecordStore):
        self._store = store

    async def get_task_statuses(self, submission_id: str) -> TaskMap:
        """Current task map; empty if nothing was ever dispatched.

        Raises NotFoundError for an unknown submission.
        """
        return await self._store.get(submission_id)

    __call__ = get_task_statuses

    @staticmethod
    def summarize(tasks: Mapping[str, CarrierTask]) -> StatusSummary:
        counts = {status.value: 0 for status in TaskStatus}
        for task in tasks.values():
            counts[task.status] += 1
        return StatusSummary(counts=counts, total=len(tasks))

    async def describe(self, submission_id: str, now: Optional[datetime] = None) -> dict:
        """Serializable view: tasks, per-task elapsed time and a summary."""
        tasks = await self.get_task_statuses(submission_id)
        now = now or utc_now()
        return {
            "id": submission_id,
            "rpa_tasks": dump_task_map(tasks),
            "elapsed_seconds": {
                carrier: round(elapsed_seconds(task, now), 3) for carrier, task in tasks.items()
            },
            "summary": self.summarize(tasks).to_dict(),
        }


__all__ = ["StatusQueryService", "StatusSummary", "elapsed_seconds"]
