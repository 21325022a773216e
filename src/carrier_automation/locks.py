"""Per-submission mutual exclusion for read-modify-write sequences."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class SubmissionLocks:
    """
    Registry of asyncio locks keyed by submission id.

    Locks are created on first use and dropped once no coroutine holds or
    waits on them, so the registry only ever contains in-flight submissions.
    Updates to different submissions never contend.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, submission_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(submission_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[submission_id] = lock
        self._users[submission_id] = self._users.get(submission_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._users[submission_id] - 1
            if remaining:
                self._users[submission_id] = remaining
            else:
                del self._users[submission_id]
                del self._locks[submission_id]

    def __len__(self) -> int:
        return len(self._locks)

    def __contains__(self, submission_id: object) -> bool:
        return submission_id in self._locks
