"""
SQLite-backed task record store.

One row per submission; the carrier task map lives in the ``rpa_tasks`` JSON
column. Each call opens its own connection and runs in a worker thread.
Writes use ``BEGIN IMMEDIATE`` so the read-modify-write is serialized across
processes sharing the database file as well as within this event loop.
"""

import asyncio
import contextlib
import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Optional

from carrier_automation.errors import NotFoundError, StorageError
from carrier_automation.models import TaskMap
from carrier_automation.store import Mutation, TaskRecordStore, decode_tasks, encode_tasks
from core.resilience import STORE_READ_RETRY, with_retry_async

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS submissions (
    id TEXT PRIMARY KEY,
    rpa_tasks TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class SqliteTaskStore(TaskRecordStore):
    """Task store persisted to a local SQLite database."""

    backend = "sqlite"

    def __init__(self, db_path: str | Path = "data/tracker.sqlite3", timeout: float = 30.0) -> None:
        super().__init__()
        self._db_path = Path(db_path)
        self._timeout = timeout
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info(
            "SqliteTaskStore ready",
            extra={"db_path": str(self._db_path), "backend": self.backend},
        )

    @property
    def db_path(self) -> Path:
        return self._db_path

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        # Autocommit mode; transactions are opened explicitly.
        conn = sqlite3.connect(str(self._db_path), timeout=self._timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            conn.execute(_SCHEMA)
        finally:
            conn.close()

    def _insert_sync(self, submission_id: str) -> bool:
        now = _now_iso()
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "INSERT OR IGNORE INTO submissions (id, rpa_tasks, created_at, updated_at) "
                "VALUES (?, '{}', ?, ?)",
                (submission_id, now, now),
            )
            return cur.rowcount == 1
        finally:
            conn.close()

    def _select_sync(self, submission_id: str) -> Optional[str]:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT rpa_tasks FROM submissions WHERE id = ?", (submission_id,)
            ).fetchone()
            return None if row is None else row["rpa_tasks"]
        finally:
            conn.close()

    def _update_sync(self, submission_id: str, mutate: Mutation) -> Any:
        conn = self._get_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                row = conn.execute(
                    "SELECT rpa_tasks FROM submissions WHERE id = ?", (submission_id,)
                ).fetchone()
                if row is None:
                    raise NotFoundError(
                        f"Submission not found: {submission_id}",
                        context={"submission_id": submission_id},
                    )
                updated, value = mutate(decode_tasks(row["rpa_tasks"]))
                if updated is not None:
                    conn.execute(
                        "UPDATE submissions SET rpa_tasks = ?, updated_at = ? WHERE id = ?",
                        (encode_tasks(updated), _now_iso(), submission_id),
                    )
                conn.execute("COMMIT")
                return value
            except BaseException:
                with contextlib.suppress(sqlite3.Error):
                    conn.execute("ROLLBACK")
                raise
        finally:
            conn.close()

    # ---- async API ----

    async def create_submission(self, submission_id: str) -> bool:
        try:
            return await asyncio.to_thread(self._insert_sync, submission_id)
        except sqlite3.Error as e:
            raise StorageError(
                f"Failed to create submission {submission_id}",
                cause=e,
                context={"submission_id": submission_id},
            ) from e

    async def exists(self, submission_id: str) -> bool:
        return await self._select(submission_id) is not None

    async def _load(self, submission_id: str) -> Optional[TaskMap]:
        raw = await self._select(submission_id)
        if raw is None:
            return None
        return decode_tasks(raw)

    @with_retry_async(config=STORE_READ_RETRY)
    async def _select(self, submission_id: str) -> Optional[str]:
        try:
            return await asyncio.to_thread(self._select_sync, submission_id)
        except sqlite3.Error as e:
            raise StorageError(
                f"Failed to read submission {submission_id}",
                cause=e,
                context={"submission_id": submission_id},
            ) from e

    async def _read_modify_write(self, submission_id: str, mutate: Mutation) -> Any:
        try:
            return await asyncio.to_thread(self._update_sync, submission_id, mutate)
        except sqlite3.Error as e:
            raise StorageError(
                f"Failed to update submission {submission_id}",
                cause=e,
                context={"submission_id": submission_id},
            ) from e


__all__ = ["SqliteTaskStore"]
