"""
Task record store.

Per-submission persistent map ``carrier -> CarrierTask``. Every mutation is a
read-modify-write executed under the submission's lock, so concurrent
notifications for different carriers of the same submission are never lost.
Backends only need to provide an atomic "load, mutate, save" primitive.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar

from carrier_automation.errors import NotFoundError, StorageError
from carrier_automation.locks import SubmissionLocks
from carrier_automation.models import (
    CarrierTask,
    QueuedTask,
    TaskMap,
    TaskPatch,
    TaskStatus,
    dump_task_map,
    parse_task_map,
    utc_now,
)
from carrier_automation.transitions import MergeResult, apply_patch, queue_task
from core.logging import log_with_context

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Pure function applied to the current map inside the critical section.
# Returns (new map or None when unchanged, value handed back to the caller).
Mutation = Callable[[TaskMap], Tuple[Optional[TaskMap], T]]


def encode_tasks(tasks: TaskMap) -> str:
    return json.dumps(dump_task_map(tasks), sort_keys=True)


def decode_tasks(raw: Optional[str]) -> TaskMap:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise StorageError("Stored task map is not valid JSON", cause=e) from e
    if not isinstance(data, dict):
        raise StorageError("Stored task map is not an object")
    return parse_task_map(data)


class TaskRecordStore(ABC):
    """Base class for task record stores."""

    backend = "abstract"

    def __init__(self) -> None:
        self._locks = SubmissionLocks()

    # -- backend primitives --

    @abstractmethod
    async def create_submission(self, submission_id: str) -> bool:
        """Register a submission with an empty task map. False if it existed."""

    @abstractmethod
    async def exists(self, submission_id: str) -> bool: ...

    @abstractmethod
    async def _load(self, submission_id: str) -> Optional[TaskMap]:
        """Current map, or None when the submission does not exist."""

    @abstractmethod
    async def _read_modify_write(self, submission_id: str, mutate: Mutation) -> Any:
        """Apply ``mutate`` atomically. Raises NotFoundError for unknown ids."""

    async def close(self) -> None:
        return None

    # -- operations --

    async def get(self, submission_id: str) -> TaskMap:
        """Snapshot of a submission's task map (empty if nothing dispatched)."""
        tasks = await self._load(submission_id)
        if tasks is None:
            raise NotFoundError(
                f"Submission not found: {submission_id}",
                context={"submission_id": submission_id},
            )
        return tasks

    async def merge(self, submission_id: str, carrier: str, patch: TaskPatch) -> MergeResult:
        """Merge a state transition into one carrier's task."""

        def mutate(tasks: TaskMap) -> Tuple[Optional[TaskMap], MergeResult]:
            result = apply_patch(tasks.get(carrier), carrier, patch)
            if not result.changed:
                return None, result
            return {**tasks, carrier: result.task}, result

        async with self._locks.hold(submission_id):
            result = await self._read_modify_write(submission_id, mutate)

        log_with_context(
            logger,
            logging.DEBUG,
            "Merged task update",
            submission_id=submission_id,
            carrier=carrier,
            task_id=patch.task_id,
            status=result.task.status,
            incoming_status=patch.status.value,
            outcome=result.outcome.value,
            backend=self.backend,
        )
        return result

    async def set_queued(
        self,
        submission_id: str,
        carrier: str,
        task_id: str,
        submitted_at: Optional[datetime] = None,
    ) -> QueuedTask:
        """Record a fresh dispatch, replacing any previous task for the carrier."""
        submitted_at = submitted_at or utc_now()

        def mutate(tasks: TaskMap) -> Tuple[TaskMap, QueuedTask]:
            task = queue_task(tasks.get(carrier), carrier, task_id, submitted_at)
            return {**tasks, carrier: task}, task

        async with self._locks.hold(submission_id):
            return await self._read_modify_write(submission_id, mutate)

    async def adopt_task_id(
        self, submission_id: str, carrier: str, expected_task_id: str, task_id: str
    ) -> Optional[CarrierTask]:
        """
        Swap in the id a worker assigned to a dispatched task.

        Only applies while the carrier still holds ``expected_task_id`` and is
        active; a notification that already settled or replaced the task wins.
        Returns the updated task, or None when nothing changed.
        """

        def mutate(tasks: TaskMap) -> Tuple[Optional[TaskMap], Optional[CarrierTask]]:
            current = tasks.get(carrier)
            if current is None or current.task_id != expected_task_id or not current.is_active:
                return None, None
            task = current.model_copy(update={"task_id": task_id})
            return {**tasks, carrier: task}, task

        async with self._locks.hold(submission_id):
            return await self._read_modify_write(submission_id, mutate)

    async def set_processing(
        self,
        submission_id: str,
        carrier: str,
        task_id: str,
        started_at: Optional[datetime] = None,
    ) -> MergeResult:
        """Record that a worker picked up the task."""
        patch = TaskPatch(
            task_id=task_id, status=TaskStatus.PROCESSING, at=started_at or utc_now()
        )
        return await self.merge(submission_id, carrier, patch)

    async def get_task(self, submission_id: str, carrier: str) -> Optional[CarrierTask]:
        return (await self.get(submission_id)).get(carrier)


class InMemoryTaskStore(TaskRecordStore):
    """
    Process-local store.

    Rows are kept as encoded JSON, the same shape the sqlite backend stores,
    and replaced only after a mutation fully succeeds.
    """

    backend = "memory"

    def __init__(self) -> None:
        super().__init__()
        self._rows: Dict[str, str] = {}

    async def create_submission(self, submission_id: str) -> bool:
        if submission_id in self._rows:
            return False
        self._rows[submission_id] = "{}"
        return True

    async def exists(self, submission_id: str) -> bool:
        return submission_id in self._rows

    async def _load(self, submission_id: str) -> Optional[TaskMap]:
        raw = self._rows.get(submission_id)
        if raw is None:
            return None
        return decode_tasks(raw)

    async def _read_modify_write(self, submission_id: str, mutate: Mutation) -> Any:
        raw = self._rows.get(submission_id)
        if raw is None:
            raise NotFoundError(
                f"Submission not found: {submission_id}",
                context={"submission_id": submission_id},
            )
        updated, value = mutate(decode_tasks(raw))
        if updated is not None:
            encoded = encode_tasks(updated)
            # Yield once so concurrent writers interleave here, as a real
            # backend would while waiting on I/O.
            await asyncio.sleep(0)
            self._rows[submission_id] = encoded
        return value

    def __len__(self) -> int:
        return len(self._rows)


def create_task_store(store_config) -> TaskRecordStore:
    """Build the configured store backend."""
    if store_config.backend == "memory":
        return InMemoryTaskStore()
    if store_config.backend == "sqlite":
        from carrier_automation.sqlite_store import SqliteTaskStore

        return SqliteTaskStore(store_config.sqlite_path)
    raise ValueError(f"Unknown store backend: {store_config.backend}")


__all__ = [
    "InMemoryTaskStore",
    "Mutation",
    "TaskRecordStore",
    "create_task_store",
    "decode_tasks",
    "encode_tasks",
]
