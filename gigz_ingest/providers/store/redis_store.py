"""Redis-backed rate-limit store shared by every ingestion worker.

Uses ``redis.asyncio`` with an injected client.  Each interface method maps
to exactly one atomic round-trip:

- counters: a Lua script (``INCR`` + first-hit ``EXPIRE`` + ``TTL``)
- sliding windows: a MULTI pipeline (``ZREMRANGEBYSCORE``/``ZADD``/``ZCARD``/``EXPIRE``)
- token buckets: a Lua script that reads, refills, debits and writes back

Redis and socket errors are translated into
:class:`~gigz_ingest.utils.errors.RateLimitStoreError` so the limiter can
fail open without knowing about redis-py.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from gigz_ingest.interfaces.rate_limit_store import IRateLimitStore
from gigz_ingest.utils.errors import RateLimitStoreError

logger = structlog.get_logger(logger_name=__name__)

_INCREMENT_LUA = """\
local count = redis.call('INCR', KEYS[1])
if count == 1 then
  redis.call('EXPIRE', KEYS[1], tonumber(ARGV[1]))
end
return {count, redis.call('TTL', KEYS[1])}
"""

# Token counts are fractional; Lua numbers returned to Redis are truncated to
# integers, so the remaining balance travels back as a string.
_TOKEN_BUCKET_LUA = """\
local capacity = tonumber(ARGV[1])
local refill_rate = tonumber(ARGV[2])
local requested = tonumber(ARGV[3])
local now = tonumber(ARGV[4])
local ttl = tonumber(ARGV[5])

local state = redis.call('HMGET', KEYS[1], 'tokens', 'last_refill')
local tokens = tonumber(state[1]) or capacity
local last_refill = tonumber(state[2]) or now

local elapsed = math.max(0, now - last_refill)
tokens = math.min(capacity, tokens + elapsed * refill_rate)

local allowed = 0
if tokens >= requested then
  tokens = tokens - requested
  allowed = 1
end

redis.call('HSET', KEYS[1], 'tokens', tostring(tokens), 'last_refill', tostring(now))
redis.call('EXPIRE', KEYS[1], ttl)
return {allowed, tostring(tokens)}
"""


def _to_str(value: Any) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)


@contextmanager
def _translate_errors(operation: str, key: str | None = None) -> Iterator[None]:
    try:
        yield
    except (RedisError, OSError) as exc:
        logger.warning("redis_store_error", operation=operation, key=key, error=str(exc))
        raise RateLimitStoreError(
            f"Redis {operation} failed: {exc}", provider_name="redis"
        ) from exc


class RedisRateLimitStore(IRateLimitStore):
    """:class:`IRateLimitStore` on top of a shared Redis instance.

    Parameters
    ----------
    client:
        A ``redis.asyncio.Redis`` client.  The store does not own the
        connection pool's configuration but does close it on :meth:`close`.
    """

    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client
        self._increment = client.register_script(_INCREMENT_LUA)
        self._token_bucket = client.register_script(_TOKEN_BUCKET_LUA)

    @classmethod
    def from_url(cls, url: str) -> RedisRateLimitStore:
        """Build a store from a ``redis://`` URL."""
        return cls(aioredis.from_url(url, decode_responses=True))

    # ------------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------------

    async def increment_with_expiry(self, key: str, ttl: int) -> tuple[int, int]:
        with _translate_errors("increment", key):
            count, remaining = await self._increment(keys=[key], args=[ttl])
        return int(count), int(remaining)

    # ------------------------------------------------------------------
    # Sorted sets
    # ------------------------------------------------------------------

    async def sliding_window_add(
        self, key: str, now: float, window: int, member: str
    ) -> int:
        with _translate_errors("sliding_window_add", key):
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(key, "-inf", now - window)
                pipe.zadd(key, {member: now})
                pipe.zcard(key)
                pipe.expire(key, window)
                results = await pipe.execute()
        return int(results[2])

    async def zset_remove(self, key: str, member: str) -> None:
        with _translate_errors("zrem", key):
            await self._client.zrem(key, member)

    async def zset_count(self, key: str, min_score: float) -> int:
        with _translate_errors("zcount", key):
            return int(await self._client.zcount(key, f"({min_score}", "+inf"))

    async def zset_prune(self, key: str, max_score: float) -> int:
        with _translate_errors("zremrangebyscore", key):
            return int(await self._client.zremrangebyscore(key, "-inf", max_score))

    # ------------------------------------------------------------------
    # Token bucket
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
        with _translate_errors("token_bucket", key):
            allowed, tokens = await self._token_bucket(
                keys=[key], args=[capacity, refill_rate, requested, now, ttl]
            )
        return int(allowed) == 1, float(_to_str(tokens))

    async def hash_get_all(self, key: str) -> dict[str, str]:
        with _translate_errors("hgetall", key):
            raw = await self._client.hgetall(key)
        return {_to_str(k): _to_str(v) for k, v in raw.items()}

    # ------------------------------------------------------------------
    # Plain keys
    # ------------------------------------------------------------------

    async def get(self, key: str) -> str | None:
        with _translate_errors("get", key):
            value = await self._client.get(key)
        return None if value is None else _to_str(value)

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        with _translate_errors("set", key):
            await self._client.set(key, value, ex=ttl)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        with _translate_errors("delete"):
            return int(await self._client.delete(*keys))

    async def exists(self, key: str) -> bool:
        with _translate_errors("exists", key):
            return bool(await self._client.exists(key))

    async def expire(self, key: str, ttl: int) -> None:
        with _translate_errors("expire", key):
            await self._client.expire(key, ttl)

    async def ttl(self, key: str) -> int:
        with _translate_errors("ttl", key):
            return int(await self._client.ttl(key))

    # ------------------------------------------------------------------
    # Lists
    # ------------------------------------------------------------------

    async def list_push_trim(
        self, key: str, value: str, max_length: int, ttl: int
    ) -> None:
        with _translate_errors("list_push_trim", key):
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.lpush(key, value)
                pipe.ltrim(key, 0, max_length - 1)
                pipe.expire(key, ttl)
                await pipe.execute()

    async def list_range(self, key: str, start: int, stop: int) -> list[str]:
        with _translate_errors("lrange", key):
            values = await self._client.lrange(key, start, stop)
        return [_to_str(v) for v in values]

    # ------------------------------------------------------------------
    # Keyspace
    # ------------------------------------------------------------------

    async def scan_keys(self, pattern: str) -> list[str]:
        keys: list[str] = []
        with _translate_errors("scan", pattern):
            async for key in self._client.scan_iter(match=pattern, count=500):
                keys.append(_to_str(key))
        return keys

    async def close(self) -> None:
        with _translate_errors("close"):
            await self._client.aclose()
        logger.debug("redis_rate_limit_store_closed")
