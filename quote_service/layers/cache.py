"""
Layer 4 – 缓存层
两级缓存：内存（快、易失、条目数受限） → 持久化键值存储（慢、可跨进程）

  - set    : 同时写入两级；持久层写入失败只记录日志
  - get    : 先读内存，未命中再读持久层，命中后回填内存
  - 过期   : now - written_at > ttl 视为不存在，读取时顺手删除
  - 容量   : 内存层满时淘汰最早插入的一条（FIFO）
  - 清理   : cleanup() 主动清除两级中的全部过期条目，由后台任务定期调用
"""

import asyncio
import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel

from quote_service.config import settings
from quote_service.layers.storage import KeyValueStore, QuotaExceededError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def make_key(namespace: str, *parts: str) -> str:
    """生成规范化缓存键"""
    raw = "_".join([namespace] + list(parts))
    if len(raw) > 200:
        raw = namespace + "_" + hashlib.md5(raw.encode()).hexdigest()
    return raw


def _encode(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return str(value)


@dataclass
class CacheEntry:
    """缓存条目：值 + 写入时间 + TTL（秒）"""

    value: Any
    written_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.written_at > self.ttl

    def remaining(self, now: float) -> float:
        return self.ttl - (now - self.written_at)


# ── L1: 内存 ──────────────────────────────────────────────

class MemoryTier:
    """
    线程安全的内存缓存

    按插入顺序淘汰（FIFO），读取不会改变顺序。
    """

    def __init__(
        self,
        max_size: Optional[int] = None,
        default_ttl: Optional[float] = None,
        clock: Clock = time.time,
    ):
        self._cache: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._max_size = settings.MEMORY_CACHE_MAX_SIZE if max_size is None else max_size
        self._default_ttl = settings.QUOTE_CACHE_TTL if default_ttl is None else default_ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._stats = {"hits": 0, "misses": 0, "evictions": 0}

    def __len__(self) -> int:
        return len(self._cache)

    def keys(self):
        with self._lock:
            return list(self._cache.keys())

    def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[float] = None,
        written_at: Optional[float] = None,
    ) -> None:
        with self._lock:
            if key in self._cache:
                del self._cache[key]
            elif self._cache and len(self._cache) >= self._max_size:
                oldest_key, _ = self._cache.popitem(last=False)
                self._stats["evictions"] += 1
                logger.debug(f"内存缓存已满，淘汰最早条目: {oldest_key}")
            self._cache[key] = CacheEntry(
                value=value,
                written_at=self._clock() if written_at is None else written_at,
                ttl=self._default_ttl if ttl is None else ttl,
            )

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return None
            if entry.is_expired(self._clock()):
                del self._cache[key]
                self._stats["misses"] += 1
                return None
            self._stats["hits"] += 1
            return entry.value

    def has(self, key: str) -> bool:
        """不计入命中统计；过期条目同样顺手删除"""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                del self._cache[key]
                return False
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._cache.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def cleanup(self) -> int:
        """清除全部过期条目，返回清除数量"""
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._cache.items() if e.is_expired(now)]
            for key in expired:
                del self._cache[key]
            return len(expired)

    @property
    def stats(self) -> Dict[str, int]:
        return {**self._stats, "size": len(self._cache), "max_size": self._max_size}


# ── L2: 持久化 ────────────────────────────────────────────

class PersistentTier:
    """
    持久化缓存层

    每个条目以 <prefix><key> 为键，保存 JSON 编码的 {data, timestamp, ttl}。
    存储不可用、配额不足或条目损坏时一律降级为未命中 / 空操作。
    """

    def __init__(
        self,
        store: KeyValueStore,
        prefix: Optional[str] = None,
        default_ttl: Optional[float] = None,
        max_entry_bytes: Optional[int] = None,
        clock: Clock = time.time,
    ):
        self.store = store
        self.prefix = settings.CACHE_PREFIX if prefix is None else prefix
        self._default_ttl = settings.QUOTE_CACHE_TTL if default_ttl is None else default_ttl
        self._max_entry_bytes = (
            settings.PERSISTENT_MAX_ENTRY_BYTES if max_entry_bytes is None else max_entry_bytes
        )
        self._clock = clock

    def _key(self, key: str) -> str:
        return self.prefix + key

    @staticmethod
    def _decode(raw: str) -> CacheEntry:
        doc = json.loads(raw)
        if not isinstance(doc, dict) or "data" not in doc:
            raise ValueError("缓存条目结构不正确")
        return CacheEntry(
            value=doc["data"],
            written_at=float(doc["timestamp"]),
            ttl=float(doc["ttl"]),
        )

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        ttl = self._default_ttl if ttl is None else ttl
        try:
            if not await self.store.available():
                return False
            raw = json.dumps(
                {"data": value, "timestamp": self._clock(), "ttl": ttl},
                ensure_ascii=False,
                default=_encode,
            )
            size = len(raw.encode("utf-8"))
            if size > self._max_entry_bytes:
                raise QuotaExceededError(f"条目过大：{size} > {self._max_entry_bytes} 字节")
            await self.store.write(self._key(key), raw, ttl)
            logger.debug(f"缓存写入（{self.store.name}）: {key}")
            return True
        except Exception as exc:
            logger.warning(f"无法将数据存入持久层（{self.store.name}）: {key} - {exc}")
            return False

    async def get_entry(self, key: str) -> Optional[CacheEntry]:
        try:
            if not await self.store.available():
                return None
            raw = await self.store.read(self._key(key))
        except Exception as exc:
            logger.warning(f"无法从持久层读取数据（{self.store.name}）: {key} - {exc}")
            return None
        if raw is None:
            return None

        try:
            entry = self._decode(raw)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning(f"持久层条目损坏，已删除: {key} - {exc}")
            await self.delete(key)
            return None

        if entry.is_expired(self._clock()):
            await self.delete(key)
            return None
        return entry

    async def get(self, key: str) -> Optional[Any]:
        entry = await self.get_entry(key)
        return None if entry is None else entry.value

    async def has(self, key: str) -> bool:
        return await self.get_entry(key) is not None

    async def delete(self, key: str) -> bool:
        try:
            if not await self.store.available():
                return False
            return await self.store.remove(self._key(key))
        except Exception as exc:
            logger.warning(f"无法从持久层删除数据（{self.store.name}）: {key} - {exc}")
            return False

    async def clear(self) -> None:
        try:
            if not await self.store.available():
                return
            for full_key in await self.store.keys(self.prefix):
                await self.store.remove(full_key)
        except Exception as exc:
            logger.warning(f"无法清除持久层缓存（{self.store.name}）: {exc}")

    async def cleanup(self) -> int:
        """清除过期或损坏的条目，返回清除数量"""
        removed = 0
        try:
            if not await self.store.available():
                return 0
            now = self._clock()
            for full_key in await self.store.keys(self.prefix):
                raw = await self.store.read(full_key)
                if raw is None:
                    continue
                try:
                    expired = self._decode(raw).is_expired(now)
                except (ValueError, KeyError, TypeError):
                    expired = True
                if expired:
                    await self.store.remove(full_key)
                    removed += 1
        except Exception as exc:
            logger.warning(f"无法清除过期的持久层条目（{self.store.name}）: {exc}")
        return removed

    async def stats(self) -> dict:
        try:
            if not await self.store.available():
                return {"backend": self.store.name, "status": "unavailable"}
            return {
                "backend": self.store.name,
                "status": "healthy",
                "entries": len(await self.store.keys(self.prefix)),
                "bytes": await self.store.usage(self.prefix),
            }
        except Exception as exc:
            return {"backend": self.store.name, "status": "error", "error": str(exc)}


# ── 两级缓存管理器 ────────────────────────────────────────

class TieredCache:
    """多级缓存管理器，启动时创建一次，以引用方式传给各使用方"""

    def __init__(self, memory: MemoryTier, persistent: PersistentTier):
        self.memory = memory
        self.persistent = persistent
        self._cleanup_task: Optional[asyncio.Task] = None

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        self.memory.set(key, value, ttl)
        await self.persistent.set(key, value, ttl)

    async def get(self, key: str) -> Optional[Any]:
        value = self.memory.get(key)
        if value is not None:
            logger.debug(f"缓存命中（内存）: {key}")
            return value

        entry = await self.persistent.get_entry(key)
        if entry is None:
            return None

        logger.debug(f"缓存命中（{self.persistent.store.name}），回填内存: {key}")
        self.memory.set(key, entry.value, ttl=entry.ttl, written_at=entry.written_at)
        return entry.value

    async def has(self, key: str) -> bool:
        return self.memory.has(key) or await self.persistent.has(key)

    async def delete(self, key: str) -> bool:
        memory_deleted = self.memory.delete(key)
        persistent_deleted = await self.persistent.delete(key)
        return memory_deleted or persistent_deleted

    async def clear(self) -> None:
        self.memory.clear()
        await self.persistent.clear()

    async def cleanup(self) -> Dict[str, int]:
        result = {
            "memory": self.memory.cleanup(),
            "persistent": await self.persistent.cleanup(),
        }
        if result["memory"] or result["persistent"]:
            logger.info(f"缓存清理完成: 内存 {result['memory']} 条，持久层 {result['persistent']} 条")
        return result

    async def stats(self) -> dict:
        return {"memory": self.memory.stats, "persistent": await self.persistent.stats()}

    # ── 定期清理 ──────────────────────────────────────────

    def start_periodic_cleanup(self, interval: Optional[float] = None) -> asyncio.Task:
        interval = settings.CACHE_CLEANUP_INTERVAL if interval is None else interval
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop(interval))
        return self._cleanup_task

    async def stop_periodic_cleanup(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _cleanup_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.cleanup()
            except Exception as exc:
                logger.warning(f"定期缓存清理失败: {exc}")


def build_tiered_cache(store: KeyValueStore, clock: Clock = time.time) -> TieredCache:
    return TieredCache(MemoryTier(clock=clock), PersistentTier(store, clock=clock))
