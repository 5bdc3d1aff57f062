"""In-memory rate-limit store using cachetools.TLRUCache.

Suitable for a single worker process and for tests.  Each key carries its
own expiry (``TLRUCache`` evaluates a per-item time-to-use), and the cache
timer is injectable so tests can move time forward without sleeping.

Every operation runs under one ``asyncio.Lock``, which gives the same
all-or-nothing semantics the Redis store gets from MULTI pipelines and Lua.
Quotas enforced through this store are **not** shared between processes;
use :class:`RedisRateLimitStore` for that.
"""

from __future__ import annotations

import asyncio
import fnmatch
import math
import time
from dataclasses import dataclass
from typing import Any, Callable

import structlog
from cachetools import TLRUCache

from gigz_ingest.interfaces.rate_limit_store import IRateLimitStore

logger = structlog.get_logger(logger_name=__name__)


@dataclass
class _Entry:
    value: Any
    expires_at: float = math.inf


def _time_to_use(_key: str, entry: _Entry, _now: float) -> float:
    return entry.expires_at


class MemoryRateLimitStore(IRateLimitStore):
    """In-process implementation of :class:`IRateLimitStore`.

    Parameters
    ----------
    max_keys:
        Upper bound on stored keys; the least recently used is evicted.
    clock:
        Returns the current Unix time in seconds.  Defaults to
        ``time.time``.
    """

    def __init__(
        self,
        max_keys: int = 100_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._clock = clock
        self._data: TLRUCache[str, _Entry] = TLRUCache(
            maxsize=max_keys, ttu=_time_to_use, timer=clock
        )
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _entry(self, key: str) -> _Entry | None:
        return self._data.get(key)

    def _put(self, key: str, value: Any, ttl: float | None) -> None:
        expires_at = self._clock() + ttl if ttl is not None else math.inf
        self._data[key] = _Entry(value=value, expires_at=expires_at)

    def _remaining_ttl(self, entry: _Entry) -> int:
        if entry.expires_at == math.inf:
            return -1
        return max(0, math.ceil(entry.expires_at - self._clock()))

    # ------------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------------

    async def increment_with_expiry(self, key: str, ttl: int) -> tuple[int, int]:
        async with self._lock:
            entry = self._entry(key)
            if entry is None:
                self._put(key, 1, ttl)
                return 1, ttl
            entry.value = int(entry.value) + 1
            return entry.value, self._remaining_ttl(entry)

    # ------------------------------------------------------------------
    # Sorted sets (stored as member -> score dicts)
    # ------------------------------------------------------------------

    async def sliding_window_add(
        self, key: str, now: float, window: int, member: str
    ) -> int:
        async with self._lock:
            entry = self._entry(key)
            members: dict[str, float] = dict(entry.value) if entry else {}
            cutoff = now - window
            members = {m: s for m, s in members.items() if s > cutoff}
            members[member] = now
            self._put(key, members, window)
            return len(members)

    async def zset_remove(self, key: str, member: str) -> None:
        async with self._lock:
            entry = self._entry(key)
            if entry is not None:
                entry.value.pop(member, None)

    async def zset_count(self, key: str, min_score: float) -> int:
        async with self._lock:
            entry = self._entry(key)
            if entry is None:
                return 0
            return sum(1 for score in entry.value.values() if score > min_score)

    async def zset_prune(self, key: str, max_score: float) -> int:
        async with self._lock:
            entry = self._entry(key)
            if entry is None:
                return 0
            stale = [m for m, s in entry.value.items() if s <= max_score]
            for member in stale:
                del entry.value[member]
            return len(stale)

    # ------------------------------------------------------------------
    # Token bucket (stored as a hash of strings, like Redis)
    # ------------------------------------------------------------------

    async def token_bucket_consume(
        self,
        key: str,
        capacity: float,
        refill_rate: float,
        requested: int,
        now: float,
        ttl: int,
    ) -> tuple[bool, float]:
        async with self._lock:
            entry = self._entry(key)
            state: dict[str, str] = entry.value if entry else {}
            tokens = float(state.get("tokens", capacity))
            last_refill = float(state.get("last_refill", now))

            elapsed = max(0.0, now - last_refill)
            tokens = min(capacity, tokens + elapsed * refill_rate)

            allowed = tokens >= requested
            if allowed:
                tokens -= requested

            self._put(key, {"tokens": repr(tokens), "last_refill": repr(now)}, ttl)
            return allowed, tokens

    async def hash_get_all(self, key: str) -> dict[str, str]:
        async with self._lock:
            entry = self._entry(key)
            return dict(entry.value) if entry else {}

    # ------------------------------------------------------------------
    # Plain keys
    # ------------------------------------------------------------------

    async def get(self, key: str) -> str | None:
        async with self._lock:
            entry = self._entry(key)
            return None if entry is None else str(entry.value)

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        async with self._lock:
            self._put(key, value, ttl)

    async def delete(self, *keys: str) -> int:
        async with self._lock:
            removed = 0
            for key in keys:
                if self._data.pop(key, None) is not None:
                    removed += 1
            return removed

    async def exists(self, key: str) -> bool:
        async with self._lock:
            return self._entry(key) is not None

    async def expire(self, key: str, ttl: int) -> None:
        async with self._lock:
            entry = self._entry(key)
            if entry is not None:
                # TLRUCache fixes expiry at insertion, so re-insert.
                self._put(key, entry.value, ttl)

    async def ttl(self, key: str) -> int:
        async with self._lock:
            entry = self._entry(key)
            return -2 if entry is None else self._remaining_ttl(entry)

    # ------------------------------------------------------------------
    # Lists
    # ------------------------------------------------------------------

    async def list_push_trim(
        self, key: str, value: str, max_length: int, ttl: int
    ) -> None:
        async with self._lock:
            entry = self._entry(key)
            items: list[str] = list(entry.value) if entry else []
            items.insert(0, value)
            self._put(key, items[:max_length], ttl)

    async def list_range(self, key: str, start: int, stop: int) -> list[str]:
        async with self._lock:
            entry = self._entry(key)
            if entry is None:
                return []
            items: list[str] = entry.value
            end = None if stop == -1 else stop + 1
            return list(items[start:end])

    # ------------------------------------------------------------------
    # Keyspace
    # ------------------------------------------------------------------

    async def scan_keys(self, pattern: str) -> list[str]:
        async with self._lock:
            self._data.expire()
            return [k for k in list(self._data.keys()) if fnmatch.fnmatchcase(k, pattern)]

    async def close(self) -> None:
        async with self._lock:
            self._data.clear()
        logger.debug("memory_rate_limit_store_closed")
