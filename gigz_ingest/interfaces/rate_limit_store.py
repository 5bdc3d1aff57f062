"""Abstract base class for the shared rate-limit store.

The distributed rate limiter keeps all counters, sorted sets and token
buckets in a store shared by every worker process.  Each method here is a
single atomic round-trip, so two workers refilling and debiting the same
bucket can never lose an update.  Implementations may use Redis (shared
across processes) or an in-process dict (single worker, tests).

Every method raises :class:`~gigz_ingest.utils.errors.RateLimitStoreError`
when the backend cannot be reached; the limiter turns that into a
fail-open decision.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class IRateLimitStore(ABC):
    """Contract for the key-value store behind :class:`DistributedRateLimiter`.

    Timestamps passed in (``now``) are Unix seconds from the limiter's clock,
    so sorted-set scores and bucket refill times agree across workers.
    TTLs are whole seconds.
    """

    # -- Counters --------------------------------------------------------

    @abstractmethod
    async def increment_with_expiry(self, key: str, ttl: int) -> tuple[int, int]:
        """Atomically increment *key*, setting its TTL if the key is new.

        Returns
        -------
        tuple[int, int]
            The counter value after incrementing and the key's remaining
            TTL in seconds.
        """

    # -- Sorted sets -----------------------------------------------------

    @abstractmethod
    async def sliding_window_add(
        self, key: str, now: float, window: int, member: str
    ) -> int:
        """Prune, add and count in one atomic step.

        Removes members scored at or before ``now - window``, adds *member*
        scored ``now``, refreshes the key TTL to *window*, and returns the
        member count including the one just added.
        """

    @abstractmethod
    async def zset_remove(self, key: str, member: str) -> None:
        """Remove *member* from the sorted set at *key*."""

    @abstractmethod
    async def zset_count(self, key: str, min_score: float) -> int:
        """Count members scored strictly above *min_score*."""

    @abstractmethod
    async def zset_prune(self, key: str, max_score: float) -> int:
        """Remove members scored at or below *max_score*; return how many."""

    # -- Token bucket ----------------------------------------------------

    @abstractmethod
    async def token_bucket_consume(
        self,
        key: str,
        capacity: float,
        refill_rate: float,
        requested: int,
        now: float,
        ttl: int,
    ) -> tuple[bool, float]:
        """Refill then try to debit *requested* tokens, atomically.

        A missing bucket starts full.  Tokens refill at *refill_rate* per
        second since the stored refill time, capped at *capacity*.  The
        bucket state is written back whether or not the debit succeeds.

        Returns
        -------
        tuple[bool, float]
            Whether the debit happened, and the tokens left afterwards.
        """

    @abstractmethod
    async def hash_get_all(self, key: str) -> dict[str, str]:
        """Return all fields of the hash at *key* (empty when missing)."""

    # -- Plain keys ------------------------------------------------------

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the string at *key*, or ``None``."""

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        """Store *value* under *key*, optionally expiring after *ttl* seconds."""

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """Delete *keys*; return how many existed."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Return whether *key* exists (and has not expired)."""

    @abstractmethod
    async def expire(self, key: str, ttl: int) -> None:
        """Set *key* to expire after *ttl* seconds."""

    @abstractmethod
    async def ttl(self, key: str) -> int:
        """Remaining TTL in seconds; ``-1`` without expiry, ``-2`` if missing."""

    # -- Lists -----------------------------------------------------------

    @abstractmethod
    async def list_push_trim(
        self, key: str, value: str, max_length: int, ttl: int
    ) -> None:
        """Prepend *value*, keep the newest *max_length* entries, reset TTL."""

    @abstractmethod
    async def list_range(self, key: str, start: int, stop: int) -> list[str]:
        """Return entries *start*..*stop* inclusive (newest first)."""

    # -- Keyspace --------------------------------------------------------

    @abstractmethod
    async def scan_keys(self, pattern: str) -> list[str]:
        """Return keys matching a glob *pattern* (``*`` wildcard)."""

    @abstractmethod
    async def close(self) -> None:
        """Release connections held by the store."""
