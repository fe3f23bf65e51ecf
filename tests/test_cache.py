"""
缓存层单元测试

覆盖范围：
  - 内存层（TTL、FIFO 容量淘汰）
  - 持久层（文件 / Redis / 禁用，条目布局、损坏条目、配额）
  - 两级缓存（读回填、删除、清理、定期清理任务）
"""

import asyncio
import json
import os
import sys

import pytest

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from quote_service.layers.cache import MemoryTier, PersistentTier, TieredCache, make_key
from quote_service.layers.storage import FileStore, NullStore, RedisStore, build_store
from quote_service.models.quote import Quote, QuoteSource

PREFIX = "stock_app_cache_"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """redis.asyncio.Redis 的最小替身（decode_responses=True）"""

    def __init__(self, healthy: bool = True):
        self.data = {}
        self.expiry = {}
        self.healthy = healthy

    async def ping(self):
        if not self.healthy:
            raise ConnectionError("redis down")
        return True

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.expiry[key] = ex

    async def delete(self, key):
        return 1 if self.data.pop(key, None) is not None else 0

    async def scan_iter(self, match="*"):
        prefix = match.rstrip("*")
        for key in list(self.data):
            if key.startswith(prefix):
                yield key

    async def strlen(self, key):
        return len(self.data.get(key, ""))


def _tiered(store, clock, max_size: int = 100, ttl: float = 300) -> TieredCache:
    return TieredCache(
        MemoryTier(max_size=max_size, default_ttl=ttl, clock=clock),
        PersistentTier(store, prefix=PREFIX, default_ttl=ttl, clock=clock),
    )


def _quotes():
    return [
        Quote(code="2330", name="台積電", closing_price="1,055.00", source=QuoteSource.TWSE),
        Quote(code="8069", name="元太", closing_price="250.00", source=QuoteSource.TPEX),
    ]


# ─────────────────────────────────────────────────────────
# 1. 缓存键
# ─────────────────────────────────────────────────────────

class TestCacheKeys:
    def test_key_format(self):
        assert make_key("quote", "2330") == "quote_2330"

    def test_long_key_hashed(self):
        assert len(make_key("ns", *["part"] * 50)) <= 250

    def test_key_consistency(self):
        assert make_key("a", "b", "c") == make_key("a", "b", "c")


# ─────────────────────────────────────────────────────────
# 2. 内存层
# ─────────────────────────────────────────────────────────

class TestMemoryTier:
    def setup_method(self):
        self.clock = FakeClock()
        self.mem = MemoryTier(max_size=3, default_ttl=60, clock=self.clock)

    def test_round_trip(self):
        quotes = _quotes()
        self.mem.set("all", quotes)
        assert self.mem.get("all") == quotes

    def test_valid_until_ttl_inclusive(self):
        self.mem.set("k", "v", ttl=10)
        self.clock.advance(10)
        assert self.mem.get("k") == "v"

    def test_expired_entry_removed_on_read(self):
        self.mem.set("k", "v", ttl=10)
        self.clock.advance(10.5)
        assert self.mem.get("k") is None
        assert "k" not in self.mem.keys()

    def test_capacity_evicts_oldest_only(self):
        for key in ["a", "b", "c"]:
            self.mem.set(key, key)
        self.mem.set("d", "d")
        assert self.mem.keys() == ["b", "c", "d"]
        assert self.mem.stats["evictions"] == 1

    def test_reads_do_not_change_eviction_order(self):
        for key in ["a", "b", "c"]:
            self.mem.set(key, key)
        assert self.mem.get("a") == "a"
        self.mem.set("d", "d")
        assert not self.mem.has("a")
        assert self.mem.has("b")

    def test_overwrite_at_capacity_does_not_evict(self):
        for key in ["a", "b", "c"]:
            self.mem.set(key, key)
        self.mem.set("b", "b2")
        assert sorted(self.mem.keys()) == ["a", "b", "c"]
        assert self.mem.get("b") == "b2"

    def test_has_does_not_count_hits_or_misses(self):
        self.mem.set("k", "v", ttl=10)
        assert self.mem.has("k") is True
        assert self.mem.has("absent") is False
        self.clock.advance(11)
        assert self.mem.has("k") is False
        assert "k" not in self.mem.keys()
        stats = self.mem.stats
        assert stats["hits"] == 0 and stats["misses"] == 0

    def test_cleanup(self):
        self.mem.set("short", 1, ttl=5)
        self.mem.set("long", 2, ttl=100)
        self.clock.advance(6)
        assert self.mem.cleanup() == 1
        assert self.mem.keys() == ["long"]

    def test_delete_and_clear(self):
        self.mem.set("k", "v")
        assert self.mem.delete("k") is True
        assert self.mem.delete("k") is False
        self.mem.set("k", "v")
        self.mem.clear()
        assert len(self.mem) == 0


# ─────────────────────────────────────────────────────────
# 3. 持久层
# ─────────────────────────────────────────────────────────

class TestPersistentTier:
    @pytest.mark.asyncio
    async def test_entry_layout(self, tmp_path):
        clock = FakeClock()
        store = FileStore(directory=str(tmp_path))
        tier = PersistentTier(store, prefix=PREFIX, default_ttl=300, clock=clock)
        assert await tier.set("all_quotes", _quotes()) is True

        raw = await store.read(PREFIX + "all_quotes")
        doc = json.loads(raw)
        assert set(doc) == {"data", "timestamp", "ttl"}
        assert doc["timestamp"] == clock.now and doc["ttl"] == 300
        assert doc["data"][0]["code"] == "2330"
        assert doc["data"][1]["source"] == "tpex"

    @pytest.mark.asyncio
    async def test_expired_entry_deleted(self, tmp_path):
        clock = FakeClock()
        store = FileStore(directory=str(tmp_path))
        tier = PersistentTier(store, prefix=PREFIX, clock=clock)
        await tier.set("k", "v", ttl=10)
        clock.advance(11)
        assert await tier.get("k") is None
        assert await store.keys(PREFIX) == []

    @pytest.mark.asyncio
    async def test_corrupt_entry_is_miss_and_removed(self, tmp_path):
        store = FileStore(directory=str(tmp_path))
        await store.write(PREFIX + "k", "{not json")
        tier = PersistentTier(store, prefix=PREFIX)
        assert await tier.get("k") is None
        assert await store.read(PREFIX + "k") is None

    @pytest.mark.asyncio
    async def test_quota_exceeded_is_swallowed(self, tmp_path):
        tier = PersistentTier(FileStore(directory=str(tmp_path), max_bytes=64), prefix=PREFIX)
        assert await tier.set("big", "x" * 1000) is False
        assert await tier.get("big") is None

    @pytest.mark.asyncio
    async def test_entry_size_limit(self, tmp_path):
        tier = PersistentTier(FileStore(directory=str(tmp_path)), prefix=PREFIX, max_entry_bytes=32)
        assert await tier.set("big", "x" * 100) is False

    @pytest.mark.asyncio
    async def test_unavailable_directory_degrades(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        tier = PersistentTier(FileStore(directory=str(blocker / "cache")), prefix=PREFIX)
        assert await tier.set("k", "v") is False
        assert await tier.get("k") is None
        assert await tier.delete("k") is False
        assert await tier.cleanup() == 0
        assert (await tier.stats())["status"] == "unavailable"

    @pytest.mark.asyncio
    async def test_null_store(self):
        tier = PersistentTier(NullStore(), prefix=PREFIX)
        assert await tier.set("k", "v") is False
        assert await tier.get("k") is None
        await tier.clear()

    @pytest.mark.asyncio
    async def test_clear_only_touches_prefixed_keys(self, tmp_path):
        store = FileStore(directory=str(tmp_path))
        await store.write("other_app_key", "{}")
        tier = PersistentTier(store, prefix=PREFIX)
        await tier.set("a", 1)
        await tier.set("b", 2)
        await tier.clear()
        assert await store.keys() == ["other_app_key"]

    @pytest.mark.asyncio
    async def test_cleanup_removes_expired_and_corrupt(self, tmp_path):
        clock = FakeClock()
        store = FileStore(directory=str(tmp_path))
        tier = PersistentTier(store, prefix=PREFIX, clock=clock)
        await tier.set("short", 1, ttl=5)
        await tier.set("long", 2, ttl=100)
        await store.write(PREFIX + "broken", "[]")
        clock.advance(6)
        assert await tier.cleanup() == 2
        assert await store.keys(PREFIX) == [PREFIX + "long"]

    @pytest.mark.asyncio
    async def test_redis_backend(self):
        clock = FakeClock()
        redis = FakeRedis()
        tier = PersistentTier(RedisStore(client=redis), prefix=PREFIX, clock=clock)
        await tier.set("k", {"a": 1}, ttl=12.5)
        assert redis.expiry[PREFIX + "k"] == 13
        assert await tier.get("k") == {"a": 1}
        stats = await tier.stats()
        assert stats["backend"] == "redis" and stats["entries"] == 1

    @pytest.mark.asyncio
    async def test_redis_usage_counts_own_prefix_only(self):
        redis = FakeRedis()
        redis.data[PREFIX + "other"] = "x" * 500
        tier = PersistentTier(RedisStore(client=redis), prefix="custom_", clock=FakeClock())
        await tier.set("k", "v")
        stats = await tier.stats()
        assert stats["entries"] == 1
        assert stats["bytes"] == len(redis.data["custom_k"])

    @pytest.mark.asyncio
    async def test_file_usage_counts_own_prefix_only(self, tmp_path):
        store = FileStore(directory=str(tmp_path))
        await store.write("other_app_key", "x" * 500)
        tier = PersistentTier(store, prefix=PREFIX, clock=FakeClock())
        await tier.set("k", "v")
        stats = await tier.stats()
        assert stats["bytes"] == len((await store.read(PREFIX + "k")).encode("utf-8"))

    @pytest.mark.asyncio
    async def test_redis_down_degrades(self):
        tier = PersistentTier(RedisStore(client=FakeRedis(healthy=False)), prefix=PREFIX)
        assert await tier.set("k", "v") is False
        assert await tier.get("k") is None

    def test_build_store(self):
        assert build_store("file").name == "file"
        assert build_store("redis").name == "redis"
        assert build_store("none").name == "none"
        with pytest.raises(ValueError):
            build_store("memcached")


# ─────────────────────────────────────────────────────────
# 4. 两级缓存
# ─────────────────────────────────────────────────────────

class TestTieredCache:
    @pytest.mark.asyncio
    async def test_round_trip(self, tmp_path):
        cache = _tiered(FileStore(directory=str(tmp_path)), FakeClock())
        await cache.set("all_quotes", _quotes())
        assert await cache.get("all_quotes") == _quotes()

    @pytest.mark.asyncio
    async def test_fallback_and_backfill(self, tmp_path):
        clock = FakeClock()
        cache = _tiered(FileStore(directory=str(tmp_path)), clock)
        await cache.set("k", {"v": 1}, ttl=60)
        cache.memory.clear()

        assert await cache.get("k") == {"v": 1}
        assert cache.memory.has("k")

        # 回填保留原写入时间，两级同时过期
        clock.advance(61)
        assert cache.memory.get("k") is None

    @pytest.mark.asyncio
    async def test_ttl_expiry_across_tiers(self, tmp_path):
        clock = FakeClock()
        cache = _tiered(FileStore(directory=str(tmp_path)), clock)
        await cache.set("k", "v", ttl=30)
        clock.advance(30)
        assert await cache.get("k") == "v"
        clock.advance(1)
        assert await cache.get("k") is None
        assert await cache.has("k") is False

    @pytest.mark.asyncio
    async def test_persistent_failure_keeps_memory_working(self, tmp_path):
        cache = _tiered(FileStore(directory=str(tmp_path), max_bytes=10), FakeClock())
        await cache.set("k", "a fairly long value")
        assert await cache.get("k") == "a fairly long value"

    @pytest.mark.asyncio
    async def test_delete(self, tmp_path):
        cache = _tiered(FileStore(directory=str(tmp_path)), FakeClock())
        await cache.set("k", "v")
        assert await cache.delete("k") is True
        assert await cache.get("k") is None
        assert await cache.delete("k") is False

    @pytest.mark.asyncio
    async def test_clear(self, tmp_path):
        cache = _tiered(FileStore(directory=str(tmp_path)), FakeClock())
        await cache.set("a", 1)
        await cache.set("b", 2)
        await cache.clear()
        assert await cache.get("a") is None and await cache.get("b") is None

    @pytest.mark.asyncio
    async def test_cleanup(self, tmp_path):
        clock = FakeClock()
        cache = _tiered(FileStore(directory=str(tmp_path)), clock)
        await cache.set("short", 1, ttl=5)
        await cache.set("long", 2, ttl=100)
        clock.advance(6)
        assert await cache.cleanup() == {"memory": 1, "persistent": 1}

    @pytest.mark.asyncio
    async def test_periodic_cleanup_task(self, tmp_path):
        clock = FakeClock()
        cache = _tiered(NullStore(), clock)
        await cache.set("k", "v", ttl=1)
        clock.advance(2)
        cache.start_periodic_cleanup(0.01)
        await asyncio.sleep(0.05)
        assert "k" not in cache.memory.keys()
        await cache.stop_periodic_cleanup()

    @pytest.mark.asyncio
    async def test_stats(self, tmp_path):
        cache = _tiered(FileStore(directory=str(tmp_path)), FakeClock(), max_size=5)
        await cache.set("k", "v")
        stats = await cache.stats()
        assert stats["memory"]["size"] == 1 and stats["memory"]["max_size"] == 5
        assert stats["persistent"]["backend"] == "file"
        assert stats["persistent"]["entries"] == 1
