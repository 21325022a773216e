"""
Client poller: keeps a local view of a submission's carrier tasks fresh.

States:

    idle      nothing tracked, or polling stopped before settling
    polling   at least one carrier is queued/processing; a fetch is scheduled
    settled   every tracked carrier is completed/failed; no fetch scheduled

Each successful fetch replaces the local view wholesale. Failed fetches keep
the last known-good view and are retried with exponential backoff (with
jitter) up to ``max_backoff_seconds``; a throttled (429) fetch waits its
``Retry-After`` instead. A success resets to the base interval.
``stop()`` cancels the scheduled fetch immediately and any response that
arrives afterwards is discarded.
"""

import asyncio
import contextlib
import logging
from enum import Enum
from typing import Awaitable, Callable, Mapping, Optional
from urllib.parse import quote

import aiohttp

from carrier_automation import metrics
from carrier_automation.errors import NotFoundError
from carrier_automation.models import CarrierTask, TaskMap, has_active_tasks, parse_task_map
from core.errors import (
    ErrorCategory,
    PermanentError,
    ThrottlingError,
    TransientError,
    classify_http_status,
    is_retryable_error,
)
from core.logging import log_exception, log_with_context
from core.resilience import RetryConfig

logger = logging.getLogger(__name__)

StatusSource = Callable[[str], Awaitable[Mapping[str, CarrierTask]]]


class PollState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    SETTLED = "settled"


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds from a delta-seconds ``Retry-After`` header; HTTP dates are ignored."""
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds > 0 else None


class HttpStatusSource:
    """Fetches task maps from ``GET {base_url}/submissions/{id}``."""

    def __init__(
        self,
        base_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        timeout_seconds: float = 10.0,
    ):
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "HttpStatusSource":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def __call__(self, submission_id: str) -> TaskMap:
        session = await self._get_session()
        url = f"{self._base_url}/submissions/{quote(submission_id, safe='')}"
        async with session.get(url, headers={"Cache-Control": "no-cache"}) as response:
            if response.status == 404:
                raise NotFoundError(f"Submission not found: {submission_id}")
            if response.status == 429:
                raise ThrottlingError(
                    f"Status fetch throttled for {submission_id}",
                    retry_after=parse_retry_after(response.headers.get("Retry-After")),
                    context={"http_status": response.status},
                )
            if response.status >= 400:
                text = await response.text()
                error_cls = (
                    TransientError
                    if classify_http_status(response.status) == ErrorCategory.TRANSIENT
                    else PermanentError
                )
                raise error_cls(
                    f"Status fetch failed with HTTP {response.status}: {text[:200]}",
                    context={"http_status": response.status},
                )
            data = await response.json()
        return parse_task_map((data or {}).get("rpa_tasks"))


class ClientPoller:
    """
    Polls a status source while any carrier task is still active.

    Args:
        submission_id: Submission to track
        source: Coroutine function returning the current task map
        interval_seconds: Delay between fetches while healthy
        max_backoff_seconds: Ceiling for the delay after consecutive failures
        timeout_seconds: Optional overall deadline; polling stops with
            ``timed_out`` set and the last view retained
        on_update: Called with the new view after every applied response

    Usage:
        async with ClientPoller(sub_id, HttpStatusSource(url)) as poller:
            tasks = await poller.wait()
    """

    def __init__(
        self,
        submission_id: str,
        source: StatusSource,
        interval_seconds: float = 5.0,
        max_backoff_seconds: float = 30.0,
        timeout_seconds: Optional[float] = None,
        on_update: Optional[Callable[[TaskMap], None]] = None,
        initial_tasks: Optional[Mapping[str, CarrierTask]] = None,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.submission_id = submission_id
        self.interval_seconds = interval_seconds
        self.timeout_seconds = timeout_seconds
        self._source = source
        self._on_update = on_update
        self._backoff = RetryConfig(
            base_delay=interval_seconds,
            max_delay=max(max_backoff_seconds, interval_seconds),
        )

        self._tasks: TaskMap = dict(initial_tasks or {})
        self._state = PollState.IDLE
        self._runner: Optional[asyncio.Task] = None
        self._generation = 0
        self._deadline: Optional[float] = None

        self.poll_count = 0
        self.consecutive_failures = 0
        self.last_error: Optional[Exception] = None
        self.timed_out = False

    # -- inspection --

    @property
    def state(self) -> PollState:
        return self._state

    @property
    def tasks(self) -> TaskMap:
        return dict(self._tasks)

    @property
    def is_running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    # -- control --

    def start(self) -> None:
        """Fetch immediately, then keep polling while anything is active."""
        if self.is_running:
            return
        self._launch(fetch_first=True)

    def observe(self, tasks: Mapping[str, CarrierTask]) -> None:
        """Replace the local view from outside (e.g. after a new dispatch).

        Seeing an active task while idle or settled resumes polling; seeing
        none while polling settles immediately.
        """
        self._tasks = dict(tasks)
        self._notify()
        if has_active_tasks(self._tasks):
            if not self.is_running:
                self._launch(fetch_first=False)
            return
        if self.is_running:
            self._generation += 1
            self._runner.cancel()
            self._runner = None
        self._settle()

    async def stop(self) -> None:
        """Cancel any scheduled fetch; late responses are discarded."""
        self._generation += 1
        runner, self._runner = self._runner, None
        if runner is not None and not runner.done():
            runner.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await runner
        if self._state == PollState.POLLING:
            self._set_state(PollState.IDLE)

    async def wait(self, timeout: Optional[float] = None) -> TaskMap:
        """Wait until polling ends (settled, stopped or timed out)."""
        runner = self._runner
        if runner is not None:
            await asyncio.wait({runner}, timeout=timeout)
        return self.tasks

    async def __aenter__(self) -> "ClientPoller":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    # -- internals --

    def _launch(self, fetch_first: bool) -> None:
        loop = asyncio.get_running_loop()
        self._generation += 1
        self.timed_out = False
        self._deadline = loop.time() + self.timeout_seconds if self.timeout_seconds else None
        if has_active_tasks(self._tasks):
            self._set_state(PollState.POLLING)
        self._runner = loop.create_task(self._run(self._generation, fetch_first))

    def _set_state(self, state: PollState) -> None:
        if state == self._state:
            return
        if state == PollState.POLLING:
            metrics.active_pollers.inc()
        elif self._state == PollState.POLLING:
            metrics.active_pollers.dec()
        log_with_context(
            logger,
            logging.DEBUG,
            "Poller state changed",
            submission_id=self.submission_id,
            poll_state=state.value,
            previous_status=self._state.value,
            poll_count=self.poll_count,
        )
        self._state = state

    def _settle(self) -> None:
        self._set_state(PollState.SETTLED if self._tasks else PollState.IDLE)

    def _notify(self) -> None:
        if self._on_update is None:
            return
        try:
            self._on_update(self.tasks)
        except Exception as e:
            log_exception(
                logger,
                e,
                "Error in poller update callback",
                level=logging.WARNING,
                submission_id=self.submission_id,
            )

    def _next_delay(self, loop: asyncio.AbstractEventLoop, delay: float) -> float:
        if self._deadline is None:
            return delay
        return max(0.0, min(delay, self._deadline - loop.time()))

    async def _run(self, generation: int, fetch_first: bool) -> None:
        loop = asyncio.get_running_loop()
        delay = 0.0 if fetch_first else self.interval_seconds

        while True:
            await asyncio.sleep(self._next_delay(loop, delay))
            if generation != self._generation:
                return
            if self._deadline is not None and loop.time() >= self._deadline:
                self.timed_out = True
                self._set_state(PollState.IDLE)
                log_with_context(
                    logger,
                    logging.WARNING,
                    "Poller timed out",
                    submission_id=self.submission_id,
                    poll_count=self.poll_count,
                )
                return

            try:
                tasks = await self._source(self.submission_id)
            except Exception as e:
                if generation != self._generation:
                    return
                self.consecutive_failures += 1
                self.last_error = e
                metrics.poller_fetch_failures_total.inc()
                delay = self._backoff.get_delay(self.consecutive_failures, e)
                log_with_context(
                    logger,
                    logging.WARNING,
                    "Status fetch failed, keeping last known state",
                    submission_id=self.submission_id,
                    consecutive_failures=self.consecutive_failures,
                    delay_seconds=round(delay, 2),
                    error_type=type(e).__name__,
                    retryable=is_retryable_error(e),
                    error_message=str(e)[:200],
                )
                continue

            if generation != self._generation:
                return

            self.poll_count += 1
            self.consecutive_failures = 0
            self.last_error = None
            self._tasks = dict(tasks)
            self._notify()

            if not has_active_tasks(self._tasks):
                self._settle()
                return
            self._set_state(PollState.POLLING)
            delay = self.interval_seconds


__all__ = [
    "ClientPoller",
    "HttpStatusSource",
    "PollState",
    "StatusSource",
    "parse_retry_after",
]
