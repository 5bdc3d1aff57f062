"""Rate-limit store backends (Redis for shared quotas, memory for one process)."""

from gigz_ingest.providers.store.memory_store import MemoryRateLimitStore
from gigz_ingest.providers.store.redis_store import RedisRateLimitStore

__all__ = ["MemoryRateLimitStore", "RedisRateLimitStore"]
