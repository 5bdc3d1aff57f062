"""Unit tests for MemoryRateLimitStore.

Time is driven by the shared FakeClock so expiry can be tested without
sleeping.
"""

from __future__ import annotations

import pytest

from gigz_ingest.providers.store.memory_store import MemoryRateLimitStore


# ─── Counters ─────────────────────────────────────────────────────────


class TestIncrementWithExpiry:
    @pytest.mark.asyncio
    async def test_first_increment_sets_ttl(self, memory_store: MemoryRateLimitStore) -> None:
        count, ttl = await memory_store.increment_with_expiry("k", 60)
        assert (count, ttl) == (1, 60)

    @pytest.mark.asyncio
    async def test_later_increments_keep_original_expiry(
        self, memory_store: MemoryRateLimitStore, clock
    ) -> None:
        await memory_store.increment_with_expiry("k", 60)
        clock.advance(20)
        count, ttl = await memory_store.increment_with_expiry("k", 60)
        assert count == 2
        assert ttl == 40

    @pytest.mark.asyncio
    async def test_counter_resets_after_expiry(
        self, memory_store: MemoryRateLimitStore, clock
    ) -> None:
        await memory_store.increment_with_expiry("k", 10)
        await memory_store.increment_with_expiry("k", 10)
        clock.advance(11)
        count, _ = await memory_store.increment_with_expiry("k", 10)
        assert count == 1


# ─── Sorted sets ──────────────────────────────────────────────────────


class TestSlidingWindow:
    @pytest.mark.asyncio
    async def test_add_counts_entries_inside_window(
        self, memory_store: MemoryRateLimitStore, clock
    ) -> None:
        now = clock()
        assert await memory_store.sliding_window_add("z", now, 10, "a") == 1
        assert await memory_store.sliding_window_add("z", now + 1, 10, "b") == 2

    @pytest.mark.asyncio
    async def test_add_trims_entries_older_than_window(
        self, memory_store: MemoryRateLimitStore, clock
    ) -> None:
        now = clock()
        await memory_store.sliding_window_add("z", now, 10, "a")
        clock.advance(5)
        await memory_store.sliding_window_add("z", now + 5, 10, "b")
        clock.advance(6)
        assert await memory_store.sliding_window_add("z", now + 11, 10, "c") == 2

    @pytest.mark.asyncio
    async def test_remove_and_count(self, memory_store: MemoryRateLimitStore, clock) -> None:
        now = clock()
        await memory_store.sliding_window_add("z", now, 10, "a")
        await memory_store.sliding_window_add("z", now, 10, "b")
        await memory_store.zset_remove("z", "a")
        assert await memory_store.zset_count("z", now - 10) == 1

    @pytest.mark.asyncio
    async def test_prune_removes_old_scores(
        self, memory_store: MemoryRateLimitStore, clock
    ) -> None:
        now = clock()
        await memory_store.sliding_window_add("z", now - 5, 100, "old")
        await memory_store.sliding_window_add("z", now, 100, "new")
        assert await memory_store.zset_prune("z", now - 1) == 1
        assert await memory_store.zset_count("z", 0) == 1

    @pytest.mark.asyncio
    async def test_missing_key_counts_zero(self, memory_store: MemoryRateLimitStore) -> None:
        assert await memory_store.zset_count("missing", 0) == 0
        assert await memory_store.zset_prune("missing", 0) == 0


# ─── Token bucket ─────────────────────────────────────────────────────


class TestTokenBucket:
    @pytest.mark.asyncio
    async def test_starts_full_and_drains(self, memory_store: MemoryRateLimitStore, clock) -> None:
        now = clock()
        allowed, tokens = await memory_store.token_bucket_consume("b", 2.0, 1.0, 1, now, 10)
        assert allowed and tokens == pytest.approx(1.0)
        allowed, tokens = await memory_store.token_bucket_consume("b", 2.0, 1.0, 1, now, 10)
        assert allowed and tokens == pytest.approx(0.0)
        allowed, _ = await memory_store.token_bucket_consume("b", 2.0, 1.0, 1, now, 10)
        assert not allowed

    @pytest.mark.asyncio
    async def test_refills_over_time_up_to_capacity(
        self, memory_store: MemoryRateLimitStore, clock
    ) -> None:
        now = clock()
        await memory_store.token_bucket_consume("b", 2.0, 1.0, 2, now, 100)
        allowed, tokens = await memory_store.token_bucket_consume("b", 2.0, 1.0, 1, now + 50, 100)
        assert allowed
        assert tokens == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_state_is_readable_as_hash(
        self, memory_store: MemoryRateLimitStore, clock
    ) -> None:
        await memory_store.token_bucket_consume("b", 5.0, 1.0, 1, clock(), 10)
        state = await memory_store.hash_get_all("b")
        assert float(state["tokens"]) == pytest.approx(4.0)
        assert float(state["last_refill"]) == pytest.approx(clock())


# ─── Plain keys, lists, keyspace ──────────────────────────────────────


class TestKeysAndLists:
    @pytest.mark.asyncio
    async def test_set_get_exists_delete(self, memory_store: MemoryRateLimitStore) -> None:
        await memory_store.set("a", "1")
        assert await memory_store.get("a") == "1"
        assert await memory_store.exists("a")
        assert await memory_store.delete("a", "missing") == 1
        assert await memory_store.get("a") is None

    @pytest.mark.asyncio
    async def test_ttl_semantics(self, memory_store: MemoryRateLimitStore, clock) -> None:
        await memory_store.set("forever", "1")
        await memory_store.set("short", "1", ttl=5)
        assert await memory_store.ttl("forever") == -1
        assert await memory_store.ttl("short") == 5
        assert await memory_store.ttl("missing") == -2
        clock.advance(6)
        assert not await memory_store.exists("short")

    @pytest.mark.asyncio
    async def test_expire_resets_ttl(self, memory_store: MemoryRateLimitStore, clock) -> None:
        await memory_store.set("k", "v", ttl=5)
        await memory_store.expire("k", 30)
        clock.advance(10)
        assert await memory_store.get("k") == "v"

    @pytest.mark.asyncio
    async def test_list_push_trim_is_newest_first_and_capped(
        self, memory_store: MemoryRateLimitStore
    ) -> None:
        for n in range(5):
            await memory_store.list_push_trim("log", str(n), max_length=3, ttl=60)
        assert await memory_store.list_range("log", 0, -1) == ["4", "3", "2"]
        assert await memory_store.list_range("log", 0, 0) == ["4"]

    @pytest.mark.asyncio
    async def test_scan_keys_matches_glob(self, memory_store: MemoryRateLimitStore) -> None:
        await memory_store.set("rl:fixed:a:1", "1")
        await memory_store.set("rl:fixed:a:2", "1")
        await memory_store.set("rl:sliding:a", "1")
        assert sorted(await memory_store.scan_keys("rl:fixed:a:*")) == [
            "rl:fixed:a:1",
            "rl:fixed:a:2",
        ]

    @pytest.mark.asyncio
    async def test_close_clears_everything(self, memory_store: MemoryRateLimitStore) -> None:
        await memory_store.set("a", "1")
        await memory_store.close()
        assert not await memory_store.exists("a")
