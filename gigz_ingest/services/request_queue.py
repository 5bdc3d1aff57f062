"""Per-source request queue: interval cap, bounded concurrency, timeout, retry.

Every outbound call a connector makes goes through
:meth:`RequestQueue.submit`.  For each attempt the queue:

1. waits while the queue is paused;
2. takes one of ``max_concurrency`` semaphore slots;
3. waits for room under the ``requests_per_second`` interval cap (a
   rolling one-second window of request start times);
4. optionally waits for the shared token bucket in the
   :class:`DistributedRateLimiter`, so the quota also holds across workers.
   If the shared limiter has blocked the source, the attempt fails with
   :class:`RateLimitError` instead, and backs off like any retryable error;
5. runs the operation under a hard ``timeout``.

Failures are classified by the :class:`ErrorClassifier`.  Non-retryable
ones (authentication, validation, non-429 4xx) propagate at once.  Others
are retried up to ``max_retries`` times with ``retry_delay * 2**(attempt-1)``
backoff, unless the provider supplied its own hint.  Backoff sleeps happen
outside the concurrency slot.

Every attempt is recorded in the :class:`MetricsService` (duration and
outcome), as are quota hits and queue depth.

:meth:`RequestQueue.shutdown` stops accepting new work and waits for
in-flight and queued requests to drain.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Awaitable, Callable, TypeVar

import structlog

from gigz_ingest.models.errors import ErrorContext
from gigz_ingest.models.rate_limit import RateLimitAlgorithm, RateLimitConfig
from gigz_ingest.models.source import QueueStats, SourceRateLimit
from gigz_ingest.services.error_classifier import ErrorClassifier
from gigz_ingest.services.metrics import MetricsService
from gigz_ingest.services.rate_limiter import DistributedRateLimiter
from gigz_ingest.utils.errors import (
    GigzIngestError,
    PipelineError,
    ProviderUnavailableError,
    RateLimitError,
)

logger = structlog.get_logger(logger_name=__name__)

_T = TypeVar("_T")

_INTERVAL = 1.0  # seconds covered by requests_per_second


class RequestQueue:
    """Rate-limited, bounded-concurrency executor for one source.

    Parameters
    ----------
    source:
        Source name, used in logs and as the shared-quota identity.
    limits:
        Interval cap, concurrency, timeout and retry settings.
    classifier:
        Decides retryability and extracts provider backoff hints.
    rate_limiter:
        Optional shared limiter.  When given, each attempt also debits a
        token bucket sized ``requests_per_second`` per second.
    key_prefix:
        Key prefix for the shared quota.
    metrics:
        Receives request timings, quota hits and queue depth.
    sleep, clock:
        Injected for tests.
    """

    def __init__(
        self,
        source: str,
        limits: SourceRateLimit,
        classifier: ErrorClassifier | None = None,
        rate_limiter: DistributedRateLimiter | None = None,
        key_prefix: str = "rate_limit",
        metrics: MetricsService | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._limits = limits
        self._classifier = classifier or ErrorClassifier()
        self._rate_limiter = rate_limiter
        self._quota = RateLimitConfig(
            key_prefix=f"{key_prefix}:source",
            window=1,
            limit=limits.requests_per_second,
        )
        self._metrics = metrics or MetricsService()
        self._sleep = sleep
        self._clock = clock

        self._semaphore = asyncio.Semaphore(limits.max_concurrency)
        self._interval_lock = asyncio.Lock()
        self._starts: deque[float] = deque()

        self._running = asyncio.Event()
        self._running.set()
        self._idle = asyncio.Event()
        self._idle.set()
        self._accepting = True

        self._active = 0
        self._in_flight = 0
        self._completed = 0
        self._failed = 0
        self._retries = 0

    @property
    def source(self) -> str:
        return self._source

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def submit(
        self,
        operation: Callable[[], Awaitable[_T]],
        operation_name: str = "request",
    ) -> _T:
        """Run *operation* under this source's limits, retrying on failure.

        Raises
        ------
        PipelineError
            If the queue is shutting down.
        GigzIngestError
            The last failure, once it is non-retryable or retries are spent.
        """
        if not self._accepting:
            raise PipelineError(
                f"Request queue for '{self._source}' is shutting down",
                provider_name=self._source,
            )

        self._active += 1
        self._idle.clear()
        self._report_depth()
        try:
            return await self._run_with_retry(operation, operation_name)
        finally:
            self._active -= 1
            if self._active == 0:
                self._idle.set()
            self._report_depth()

    def pause(self) -> None:
        """Hold new attempts until :meth:`resume`.  In-flight work continues."""
        self._running.clear()
        logger.info("request_queue_paused", source=self._source)

    def resume(self) -> None:
        self._running.set()
        logger.info("request_queue_resumed", source=self._source)

    def get_stats(self) -> QueueStats:
        return QueueStats(
            source=self._source,
            pending=self._active - self._in_flight,
            in_flight=self._in_flight,
            completed=self._completed,
            failed=self._failed,
            retries=self._retries,
            paused=not self._running.is_set(),
            accepting=self._accepting,
        )

    async def shutdown(self, timeout: float | None = None) -> None:
        """Stop accepting requests and wait for queued ones to finish.

        A paused queue is resumed so its backlog can drain.
        """
        self._accepting = False
        self._running.set()
        logger.info("request_queue_draining", source=self._source, active=self._active)
        try:
            await asyncio.wait_for(self._idle.wait(), timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "request_queue_drain_timeout", source=self._source, active=self._active
            )
            return
        logger.info("request_queue_drained", source=self._source)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _run_with_retry(
        self,
        operation: Callable[[], Awaitable[_T]],
        operation_name: str,
    ) -> _T:
        max_attempts = self._limits.max_retries + 1
        for attempt in range(1, max_attempts + 1):
            await self._running.wait()
            try:
                result = await self._attempt(operation, operation_name)
            except GigzIngestError as exc:
                processed = self._classifier.classify(
                    exc,
                    ErrorContext(
                        source=self._source,
                        operation=operation_name,
                        attempt=attempt,
                        max_attempts=max_attempts,
                    ),
                )
                if processed.is_rate_limited:
                    self._metrics.record_rate_limit_hit(self._source)
                if not processed.is_retryable or attempt >= max_attempts:
                    self._failed += 1
                    raise

                hint = self._classifier.extract_retry_hint(exc)
                delay = (
                    hint
                    if hint is not None
                    else self._limits.retry_delay * 2 ** (attempt - 1)
                )
                self._retries += 1
                logger.warning(
                    "request_retrying",
                    source=self._source,
                    operation=operation_name,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    category=processed.category.value,
                    backoff_s=delay,
                )
                await self._sleep(delay)
                continue

            if attempt > 1:
                logger.info(
                    "request_succeeded_after_retry",
                    source=self._source,
                    operation=operation_name,
                    attempt=attempt,
                )
            self._completed += 1
            return result

        # range() always returns or raises inside the loop.
        raise PipelineError(f"Retry loop exited for {operation_name}", self._source)

    async def _attempt(
        self, operation: Callable[[], Awaitable[_T]], operation_name: str
    ) -> _T:
        async with self._semaphore:
            await self._wait_for_interval_slot()
            await self._wait_for_shared_quota()
            self._in_flight += 1
            self._report_depth()
            started = self._clock()
            success = False
            try:
                result = await asyncio.wait_for(operation(), self._limits.timeout)
                success = True
                return result
            except asyncio.TimeoutError as exc:
                raise ProviderUnavailableError(
                    f"Request timeout after {self._limits.timeout}s",
                    provider_name=self._source,
                ) from exc
            finally:
                self._in_flight -= 1
                self._metrics.record_api_request(
                    self._source, operation_name, self._clock() - started, success
                )
                self._report_depth()

    async def _wait_for_interval_slot(self) -> None:
        async with self._interval_lock:
            while True:
                now = self._clock()
                while self._starts and now - self._starts[0] >= _INTERVAL:
                    self._starts.popleft()
                if len(self._starts) < self._limits.requests_per_second:
                    self._starts.append(now)
                    return
                await self._sleep(_INTERVAL - (now - self._starts[0]))

    async def _wait_for_shared_quota(self) -> None:
        if self._rate_limiter is None:
            return
        blocked_for = await self._rate_limiter.block_remaining(
            self._source, self._quota.key_prefix
        )
        if blocked_for:
            raise RateLimitError(
                f"Shared quota blocked for {blocked_for}s",
                provider_name=self._source,
                retry_after=float(blocked_for),
            )
        while True:
            result = await self._rate_limiter.check(
                self._source, self._quota, RateLimitAlgorithm.TOKEN_BUCKET
            )
            if result.allowed:
                return
            self._metrics.record_rate_limit_hit(self._source)
            logger.debug(
                "shared_quota_wait", source=self._source, retry_after=result.retry_after
            )
            await self._sleep(float(result.retry_after or _INTERVAL))

    def _report_depth(self) -> None:
        self._metrics.update_queue_metrics(
            self._source,
            size=self._active,
            pending=self._active - self._in_flight,
            active=self._in_flight,
        )
