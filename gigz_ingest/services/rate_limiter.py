"""Distributed rate limiter backed by a shared key-value store.

All state lives in an :class:`IRateLimitStore` shared by every worker, so a
quota holds across processes.  No permit decision is cached locally: each
:meth:`DistributedRateLimiter.check` is a fresh atomic round-trip.

Keys are laid out as::

    {key_prefix}:fixed:{identity}:{window_index}
    {key_prefix}:sliding:{identity}
    {key_prefix}:bucket:{identity}
    {key_prefix}:block:{identity}
    {key_prefix}:violations

When the store is unreachable the limiter **fails open**: the request is
allowed and a warning is logged.  A store outage therefore degrades quota
enforcement rather than halting ingestion.
"""

from __future__ import annotations

import json
import math
import time
from datetime import datetime, timezone
from typing import Callable
from uuid import uuid4

import structlog

from gigz_ingest.interfaces.rate_limit_store import IRateLimitStore
from gigz_ingest.models.rate_limit import (
    RateLimitAlgorithm,
    RateLimitConfig,
    RateLimitResult,
    RateLimitViolation,
)
from gigz_ingest.utils.errors import RateLimitStoreError

logger = structlog.get_logger(logger_name=__name__)

_VIOLATION_LOG_MAX = 1000
_VIOLATION_LOG_TTL = 24 * 3600


def _as_datetime(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


class DistributedRateLimiter:
    """Fixed-window, sliding-window and token-bucket quotas over a shared store.

    Parameters
    ----------
    store:
        Shared state backend (Redis in production).
    clock:
        Returns the current Unix time in seconds.  Every worker must use
        wall-clock time so sorted-set scores and bucket refill times agree.
    """

    def __init__(
        self,
        store: IRateLimitStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._clock = clock

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def check(
        self,
        identity: str,
        config: RateLimitConfig | None = None,
        algorithm: RateLimitAlgorithm = RateLimitAlgorithm.SLIDING_WINDOW,
        tokens_requested: int = 1,
    ) -> RateLimitResult:
        """Consume one unit (or *tokens_requested*) of *identity*'s quota.

        A disallowed check is recorded in the violation log and, when the
        config has ``block_duration > 0``, blocks the identity for that long.
        """
        config = config or RateLimitConfig()
        if tokens_requested < 1:
            msg = f"tokens_requested must be >= 1, got {tokens_requested}"
            raise ValueError(msg)

        try:
            if algorithm == RateLimitAlgorithm.FIXED_WINDOW:
                result = await self._fixed_window(identity, config)
            elif algorithm == RateLimitAlgorithm.SLIDING_WINDOW:
                result = await self._sliding_window(identity, config)
            else:
                result = await self._token_bucket(identity, config, tokens_requested)
        except RateLimitStoreError as exc:
            logger.warning(
                "rate_limit_store_unavailable_failing_open",
                identity=identity,
                algorithm=algorithm.value,
                error=str(exc),
            )
            return self._fail_open(config)

        if not result.allowed:
            try:
                await self._on_rejected(identity, config, algorithm, result)
            except RateLimitStoreError as exc:
                # The rejection stands even if it could not be logged.
                logger.warning(
                    "rate_limit_violation_not_recorded", identity=identity, error=str(exc)
                )
        return result

    async def is_blocked(self, identity: str, key_prefix: str = "rate_limit") -> bool:
        """Return whether *identity* is inside a block period.

        Callers should check this before attempting a request and avoid
        retrying while blocked.  Store errors count as "not blocked".
        """
        try:
            return await self._store.exists(self._key(key_prefix, "block", identity))
        except RateLimitStoreError as exc:
            logger.warning("rate_limit_block_check_failed", identity=identity, error=str(exc))
            return False

    async def block_remaining(self, identity: str, key_prefix: str = "rate_limit") -> int:
        """Return whole seconds left in *identity*'s block period, or 0.

        A block without an expiry counts as one second.  Store errors count
        as "not blocked".
        """
        try:
            remaining = await self._store.ttl(self._key(key_prefix, "block", identity))
        except RateLimitStoreError as exc:
            logger.warning("rate_limit_block_check_failed", identity=identity, error=str(exc))
            return 0
        if remaining == -1:
            return 1
        return max(0, remaining)

    async def get_status(
        self,
        identity: str,
        config: RateLimitConfig | None = None,
        algorithm: RateLimitAlgorithm = RateLimitAlgorithm.SLIDING_WINDOW,
    ) -> RateLimitResult:
        """Report current usage for *identity* without consuming quota."""
        config = config or RateLimitConfig()
        now = self._clock()
        try:
            if algorithm == RateLimitAlgorithm.FIXED_WINDOW:
                window_index = int(now // config.window)
                raw = await self._store.get(self._fixed_key(config, identity, window_index))
                count = int(raw) if raw else 0
                reset_at = (window_index + 1) * config.window
            elif algorithm == RateLimitAlgorithm.SLIDING_WINDOW:
                count = await self._store.zset_count(
                    self._key(config.key_prefix, "sliding", identity), now - config.window
                )
                reset_at = now + config.window
            else:
                state = await self._store.hash_get_all(
                    self._key(config.key_prefix, "bucket", identity)
                )
                tokens = self._refilled_tokens(state, config, now)
                count = config.limit - math.floor(tokens)
                reset_at = now + (config.limit - tokens) / self._refill_rate(config)
        except RateLimitStoreError as exc:
            logger.warning("rate_limit_status_unavailable", identity=identity, error=str(exc))
            return self._fail_open(config)

        remaining = max(0, config.limit - count)
        return RateLimitResult(
            allowed=remaining > 0,
            count=count,
            remaining=remaining,
            reset_time=_as_datetime(reset_at),
        )

    async def reset(self, identity: str, key_prefix: str = "rate_limit") -> None:
        """Clear all counters, buckets and block markers for *identity*."""
        try:
            fixed_keys = await self._store.scan_keys(
                f"{self._key(key_prefix, 'fixed', identity)}:*"
            )
            await self._store.delete(
                *fixed_keys,
                self._key(key_prefix, "sliding", identity),
                self._key(key_prefix, "bucket", identity),
                self._key(key_prefix, "block", identity),
            )
        except RateLimitStoreError as exc:
            logger.warning("rate_limit_reset_failed", identity=identity, error=str(exc))
            return
        logger.info("rate_limit_reset", identity=identity, key_prefix=key_prefix)

    async def cleanup(
        self, key_prefix: str = "rate_limit", older_than: float = 3600
    ) -> int:
        """Prune sliding-window entries older than *older_than* seconds.

        Returns the number of entries removed.
        """
        horizon = self._clock() - older_than
        removed = 0
        try:
            for key in await self._store.scan_keys(f"{key_prefix}:sliding:*"):
                removed += await self._store.zset_prune(key, horizon)
        except RateLimitStoreError as exc:
            logger.warning("rate_limit_cleanup_failed", key_prefix=key_prefix, error=str(exc))
            return removed
        logger.info("rate_limit_cleanup", key_prefix=key_prefix, removed=removed)
        return removed

    async def get_violations(
        self, key_prefix: str = "rate_limit", limit: int = 100
    ) -> list[RateLimitViolation]:
        """Return the newest *limit* violations, newest first."""
        try:
            raw = await self._store.list_range(
                f"{key_prefix}:violations", 0, max(0, limit - 1)
            )
        except RateLimitStoreError as exc:
            logger.warning("rate_limit_violations_unavailable", error=str(exc))
            return []
        return [RateLimitViolation.model_validate_json(item) for item in raw]

    # ------------------------------------------------------------------
    # Algorithms
    # ------------------------------------------------------------------

    async def _fixed_window(
        self, identity: str, config: RateLimitConfig
    ) -> RateLimitResult:
        now = self._clock()
        window_index = int(now // config.window)
        count, _ttl = await self._store.increment_with_expiry(
            self._fixed_key(config, identity, window_index), config.window
        )
        reset_at = (window_index + 1) * config.window
        allowed = count <= config.limit
        return RateLimitResult(
            allowed=allowed,
            count=count,
            remaining=max(0, config.limit - count),
            reset_time=_as_datetime(reset_at),
            retry_after=None if allowed else max(1, math.ceil(reset_at - now)),
        )

    async def _sliding_window(
        self, identity: str, config: RateLimitConfig
    ) -> RateLimitResult:
        now = self._clock()
        key = self._key(config.key_prefix, "sliding", identity)
        member = f"{now!r}:{uuid4().hex}"
        count = await self._store.sliding_window_add(key, now, config.window, member)

        allowed = count <= config.limit
        if not allowed:
            # The rejected request must not occupy a slot.
            await self._store.zset_remove(key, member)
            count -= 1
        return RateLimitResult(
            allowed=allowed,
            count=count,
            remaining=max(0, config.limit - count),
            reset_time=_as_datetime(now + config.window),
            retry_after=None if allowed else config.window,
        )

    async def _token_bucket(
        self, identity: str, config: RateLimitConfig, tokens_requested: int
    ) -> RateLimitResult:
        now = self._clock()
        rate = self._refill_rate(config)
        allowed, tokens = await self._store.token_bucket_consume(
            self._key(config.key_prefix, "bucket", identity),
            capacity=float(config.limit),
            refill_rate=rate,
            requested=tokens_requested,
            now=now,
            ttl=config.window,
        )

        retry_after = None
        if not allowed:
            retry_after = max(1, math.ceil((tokens_requested - tokens) / rate))
        return RateLimitResult(
            allowed=allowed,
            count=config.limit - math.floor(tokens),
            remaining=math.floor(tokens),
            reset_time=_as_datetime(now + (config.limit - tokens) / rate),
            retry_after=retry_after,
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _key(prefix: str, kind: str, identity: str) -> str:
        return f"{prefix}:{kind}:{identity}"

    def _fixed_key(self, config: RateLimitConfig, identity: str, window_index: int) -> str:
        return f"{self._key(config.key_prefix, 'fixed', identity)}:{window_index}"

    @staticmethod
    def _refill_rate(config: RateLimitConfig) -> float:
        return config.limit / config.window

    def _refilled_tokens(
        self, state: dict[str, str], config: RateLimitConfig, now: float
    ) -> float:
        if not state:
            return float(config.limit)
        tokens = float(state.get("tokens", config.limit))
        last_refill = float(state.get("last_refill", now))
        elapsed = max(0.0, now - last_refill)
        return min(float(config.limit), tokens + elapsed * self._refill_rate(config))

    def _fail_open(self, config: RateLimitConfig) -> RateLimitResult:
        return RateLimitResult(
            allowed=True,
            count=0,
            remaining=config.limit,
            reset_time=_as_datetime(self._clock() + config.window),
        )

    async def _on_rejected(
        self,
        identity: str,
        config: RateLimitConfig,
        algorithm: RateLimitAlgorithm,
        result: RateLimitResult,
    ) -> None:
        if config.block_duration > 0:
            await self._store.set(
                self._key(config.key_prefix, "block", identity),
                "1",
                ttl=config.block_duration,
            )

        violation = RateLimitViolation(
            identity=identity,
            algorithm=algorithm,
            limit=config.limit,
            window=config.window,
            count=result.count,
            timestamp=_as_datetime(self._clock()),
        )
        await self._store.list_push_trim(
            f"{config.key_prefix}:violations",
            json.dumps(violation.model_dump(mode="json")),
            max_length=_VIOLATION_LOG_MAX,
            ttl=_VIOLATION_LOG_TTL,
        )
        logger.info(
            "rate_limit_exceeded",
            identity=identity,
            algorithm=algorithm.value,
            count=result.count,
            limit=config.limit,
            retry_after=result.retry_after,
            blocked_for=config.block_duration or None,
        )
