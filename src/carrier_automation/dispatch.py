"""
Dispatch: hand carrier tasks to external automation workers and record them.

``DispatchRecorder`` is the internal entry point that marks a carrier as
queued (or processing) for a submission. ``CarrierDispatcher`` adds the HTTP
handoff: it records the task first, then POSTs a ``start_automation`` request
to each carrier's worker concurrently. A rejected handoff is recorded as a
failed task so the submission never shows a carrier queued forever; an
accepted one that names its own task id has the pending task adopt that id.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, Mapping, Optional

import aiohttp

from carrier_automation import metrics
from carrier_automation.errors import ValidationError
from carrier_automation.models import QueuedTask, TaskPatch, TaskStatus, utc_now
from carrier_automation.store import TaskRecordStore
from carrier_automation.transitions import MergeResult
from core.errors import TransientError, classify_http_status
from core.logging import log_exception, log_with_context

logger = logging.getLogger(__name__)

DISPATCH_ACTION = "start_automation"


def make_task_id(carrier: str, submission_id: str, now: Optional[datetime] = None) -> str:
    """``<carrier>_<submission>_<epoch-ms>``, the id sent with a dispatch."""
    now = now or utc_now()
    return f"{carrier}_{submission_id}_{int(now.timestamp() * 1000)}"


class DispatchRecorder:
    """Records dispatches and worker pickups against the task store."""

    def __init__(self, store: TaskRecordStore, carriers: Iterable[str]):
        self._store = store
        self._carriers = frozenset(c.lower() for c in carriers)

    def check_carrier(self, carrier: str) -> str:
        """Normalized carrier name; raises InvalidCarrier for unsupported ones."""
        carrier = carrier.strip().lower()
        if carrier not in self._carriers:
            raise ValidationError(
                f"Invalid carrier. Must be one of: {', '.join(sorted(self._carriers))}",
                code=ValidationError.INVALID_CARRIER,
                context={"carrier": carrier},
            )
        return carrier

    async def record_dispatch(
        self,
        submission_id: str,
        carrier: str,
        task_id: str,
        submitted_at: Optional[datetime] = None,
    ) -> QueuedTask:
        """Mark the carrier queued under a fresh task, replacing any prior one."""
        carrier = self.check_carrier(carrier)
        task = await self._store.set_queued(submission_id, carrier, task_id, submitted_at)
        log_with_context(
            logger,
            logging.INFO,
            "Recorded dispatch",
            submission_id=submission_id,
            carrier=carrier,
            task_id=task_id,
            status=task.status,
        )
        return task

    async def record_processing(
        self,
        submission_id: str,
        carrier: str,
        task_id: str,
        started_at: Optional[datetime] = None,
    ) -> MergeResult:
        """Mark a non-terminal task as picked up by its worker."""
        carrier = self.check_carrier(carrier)
        result = await self._store.set_processing(submission_id, carrier, task_id, started_at)
        log_with_context(
            logger,
            logging.INFO,
            "Recorded processing",
            submission_id=submission_id,
            carrier=carrier,
            task_id=task_id,
            status=result.task.status,
            outcome=result.outcome.value,
        )
        return result

    async def record_handoff_failure(
        self, submission_id: str, carrier: str, task_id: str, error: str
    ) -> MergeResult:
        patch = TaskPatch(
            task_id=task_id,
            status=TaskStatus.FAILED,
            at=utc_now(),
            error=error,
            error_details={"stage": "dispatch"},
        )
        return await self._store.merge(submission_id, carrier, patch)

    async def record_worker_task_id(
        self, submission_id: str, carrier: str, task_id: str, worker_task_id: str
    ) -> bool:
        """Track the task under the id the worker assigned, if still pending."""
        task = await self._store.adopt_task_id(submission_id, carrier, task_id, worker_task_id)
        log_with_context(
            logger,
            logging.INFO if task is not None else logging.DEBUG,
            "Adopted worker task id" if task is not None else "Worker task id not adopted",
            submission_id=submission_id,
            carrier=carrier,
            task_id=worker_task_id,
            dispatch_task_id=task_id,
        )
        return task is not None


@dataclass
class CarrierDispatchResult:
    """Outcome of one carrier handoff."""

    carrier: str
    success: bool
    task_id: str
    message: str
    worker_task_id: Optional[str] = None
    http_status: Optional[int] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "success": self.success,
            "message": self.message,
            "task_id": self.worker_task_id or self.task_id,
        }
        if self.http_status is not None:
            out["http_status"] = self.http_status
        for key in ("status", "policy_code", "quote_url", "quotation_url", "account_number"):
            if self.data.get(key) is not None:
                out[key] = self.data[key]
        return out


@dataclass
class DispatchSummary:
    """Aggregate result across all carriers of one dispatch request."""

    submission_id: str
    results: Dict[str, CarrierDispatchResult] = field(default_factory=dict)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results.values() if r.success)

    @property
    def success(self) -> bool:
        return bool(self.results) and self.success_count == len(self.results)

    @property
    def partial(self) -> bool:
        return 0 < self.success_count < len(self.results)

    @property
    def http_status(self) -> int:
        if self.success:
            return 200
        return 207 if self.partial else 500

    @property
    def message(self) -> str:
        total = len(self.results)
        if self.success:
            return f"Successfully submitted to {total} carrier{'s' if total > 1 else ''}"
        if self.partial:
            return f"Partial success: {self.success_count}/{total} carriers"
        return "All submissions failed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "submission_id": self.submission_id,
            "results": {name: r.to_dict() for name, r in self.results.items()},
        }


class CarrierDispatcher:
    """
    Sends start_automation requests to carrier workers.

    The per-submission store lock is only taken inside the recorder calls,
    never while a worker request is in flight.
    """

    def __init__(
        self,
        recorder: DispatchRecorder,
        endpoints: Mapping[str, str],
        timeout_seconds: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self._recorder = recorder
        self._endpoints = {k.lower(): v for k, v in endpoints.items()}
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "CarrierDispatcher":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def dispatch(
        self, submission_id: str, payloads: Mapping[str, Mapping[str, Any]]
    ) -> DispatchSummary:
        """Dispatch to every carrier in ``payloads`` concurrently."""
        if not payloads:
            raise ValidationError(
                "At least one carrier is required",
                code=ValidationError.MISSING_FIELD,
                context={"missing": ["carriers"]},
            )

        # Reject the whole request before recording anything.
        payloads = {self._recorder.check_carrier(c): p for c, p in payloads.items()}
        now = utc_now()
        queued: Dict[str, str] = {}
        for carrier in payloads:
            task_id = make_task_id(carrier, submission_id, now)
            await self._recorder.record_dispatch(submission_id, carrier, task_id, now)
            queued[carrier] = task_id

        results = await asyncio.gather(
            *(
                self._send(submission_id, carrier, queued[carrier], payload)
                for carrier, payload in payloads.items()
            )
        )

        summary = DispatchSummary(submission_id=submission_id)
        for result in results:
            summary.results[result.carrier] = result
            metrics.record_dispatch(result.carrier, "accepted" if result.success else "rejected")
            if not result.success:
                await self._recorder.record_handoff_failure(
                    submission_id, result.carrier, result.task_id, result.message
                )
            elif result.worker_task_id and result.worker_task_id != result.task_id:
                await self._recorder.record_worker_task_id(
                    submission_id, result.carrier, result.task_id, result.worker_task_id
                )

        log_with_context(
            logger,
            logging.INFO if summary.success else logging.WARNING,
            summary.message,
            submission_id=submission_id,
            carriers=sorted(summary.results),
            http_status=summary.http_status,
        )
        return summary

    async def _send(
        self,
        submission_id: str,
        carrier: str,
        task_id: str,
        payload: Mapping[str, Any],
    ) -> CarrierDispatchResult:
        carrier = carrier.lower()
        url = self._endpoints.get(carrier)
        if not url:
            return CarrierDispatchResult(
                carrier=carrier,
                success=False,
                task_id=task_id,
                message=f"No dispatch endpoint configured for {carrier}",
            )

        body = {"action": DISPATCH_ACTION, "task_id": task_id, **payload}
        started = time.perf_counter()
        session = await self._get_session()
        try:
            async with session.post(url, json=body) as response:
                try:
                    data = await response.json(content_type=None)
                except ValueError:
                    data = {}
                if not isinstance(data, dict):
                    data = {}
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            error = TransientError(f"Dispatch to {carrier} failed: {e}", cause=e)
            log_exception(
                logger,
                error,
                "Carrier dispatch failed",
                level=logging.WARNING,
                include_traceback=False,
                submission_id=submission_id,
                carrier=carrier,
                task_id=task_id,
            )
            return CarrierDispatchResult(
                carrier=carrier,
                success=False,
                task_id=task_id,
                message=str(e) or "Network error",
            )

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        if status >= 400:
            message = data.get("message") or data.get("error") or f"HTTP {status}"
            log_with_context(
                logger,
                logging.WARNING,
                "Carrier rejected dispatch",
                submission_id=submission_id,
                carrier=carrier,
                task_id=task_id,
                http_status=status,
                error_category=classify_http_status(status).value,
                duration_ms=duration_ms,
            )
            return CarrierDispatchResult(
                carrier=carrier,
                success=False,
                task_id=task_id,
                message=str(message),
                http_status=status,
                data=data,
            )

        log_with_context(
            logger,
            logging.INFO,
            "Carrier accepted dispatch",
            submission_id=submission_id,
            carrier=carrier,
            task_id=task_id,
            http_status=status,
            duration_ms=duration_ms,
        )
        worker_task_id = data.get("task_id")
        return CarrierDispatchResult(
            carrier=carrier,
            success=True,
            task_id=task_id,
            message=str(data.get("message") or "Submitted successfully"),
            worker_task_id=str(worker_task_id) if worker_task_id else None,
            http_status=status,
            data=data,
        )


__all__ = [
    "CarrierDispatchResult",
    "CarrierDispatcher",
    "DispatchRecorder",
    "DispatchSummary",
    "make_task_id",
]
