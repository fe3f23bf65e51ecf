"""
持久化键值存储后端
  FileStore  : 本地目录，每个键一个 JSON 文件，受总字节配额限制
  RedisStore : Redis（可选），连接由 quote_service.db 管理
  NullStore  : 禁用持久层时使用，任何操作都视为不可用

后端只负责原始字符串的读写，过期判断与序列化由 PersistentTier 处理。
后端可以抛出异常，调用方负责降级。
"""

import logging
import math
import os
from typing import List, Optional
from urllib.parse import quote, unquote

from quote_service.config import settings
from quote_service.db import get_redis

logger = logging.getLogger(__name__)

_PROBE_KEY = "__storage_test__"


class StorageError(Exception):
    """持久层不可用"""


class QuotaExceededError(StorageError):
    """写入会超出存储配额"""


class KeyValueStore:
    name = "base"

    async def available(self) -> bool:
        raise NotImplementedError

    async def read(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def write(self, key: str, raw: str, ttl: Optional[float] = None) -> None:
        raise NotImplementedError

    async def remove(self, key: str) -> bool:
        raise NotImplementedError

    async def keys(self, prefix: str = "") -> List[str]:
        raise NotImplementedError

    async def usage(self, prefix: str = "") -> int:
        """以 prefix 开头的条目占用的字节数"""
        raise NotImplementedError


class NullStore(KeyValueStore):
    name = "none"

    async def available(self) -> bool:
        return False

    async def read(self, key: str) -> Optional[str]:
        return None

    async def write(self, key: str, raw: str, ttl: Optional[float] = None) -> None:
        raise StorageError("持久层已禁用")

    async def remove(self, key: str) -> bool:
        return False

    async def keys(self, prefix: str = "") -> List[str]:
        return []

    async def usage(self, prefix: str = "") -> int:
        return 0


class FileStore(KeyValueStore):
    """本地文件键值存储"""

    name = "file"

    def __init__(self, directory: Optional[str] = None, max_bytes: Optional[int] = None):
        self.directory = directory or settings.CACHE_DIR
        self.max_bytes = settings.PERSISTENT_MAX_BYTES if max_bytes is None else max_bytes

    def _path(self, key: str) -> str:
        return os.path.join(self.directory, f"{quote(key, safe='')}.json")

    def _files(self) -> List[str]:
        if not os.path.isdir(self.directory):
            return []
        return [f for f in os.listdir(self.directory) if f.endswith(".json")]

    async def available(self) -> bool:
        try:
            os.makedirs(self.directory, exist_ok=True)
            path = self._path(_PROBE_KEY)
            with open(path, "w", encoding="utf-8") as fh:
                fh.write(_PROBE_KEY)
            os.remove(path)
            return True
        except OSError as exc:
            logger.debug(f"文件存储不可用（{self.directory}）: {exc}")
            return False

    async def read(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as fh:
            return fh.read()

    async def write(self, key: str, raw: str, ttl: Optional[float] = None) -> None:
        path = self._path(key)
        size = len(raw.encode("utf-8"))
        used = await self.usage()
        if os.path.exists(path):
            used -= os.path.getsize(path)
        if used + size > self.max_bytes:
            raise QuotaExceededError(
                f"超出存储配额：已用 {used} + 写入 {size} > 上限 {self.max_bytes} 字节"
            )
        os.makedirs(self.directory, exist_ok=True)
        with open(path, "w", encoding="utf-8") as fh:
            fh.write(raw)

    async def remove(self, key: str) -> bool:
        path = self._path(key)
        if not os.path.exists(path):
            return False
        os.remove(path)
        return True

    async def keys(self, prefix: str = "") -> List[str]:
        names = [unquote(f[: -len(".json")]) for f in self._files()]
        return [k for k in names if k.startswith(prefix) and k != _PROBE_KEY]

    async def usage(self, prefix: str = "") -> int:
        return sum(
            os.path.getsize(os.path.join(self.directory, f))
            for f in self._files()
            if unquote(f[: -len(".json")]).startswith(prefix)
        )


class RedisStore(KeyValueStore):
    """Redis 键值存储，条目同时设置 Redis 原生过期时间"""

    name = "redis"

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        return self._client if self._client is not None else get_redis()

    async def available(self) -> bool:
        client = self.client
        if client is None:
            return False
        try:
            await client.ping()
            return True
        except Exception as exc:
            logger.debug(f"Redis 不可用: {exc}")
            return False

    async def read(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def write(self, key: str, raw: str, ttl: Optional[float] = None) -> None:
        if ttl:
            await self.client.set(key, raw, ex=max(1, math.ceil(ttl)))
        else:
            await self.client.set(key, raw)

    async def remove(self, key: str) -> bool:
        return bool(await self.client.delete(key))

    async def keys(self, prefix: str = "") -> List[str]:
        return [k async for k in self.client.scan_iter(match=f"{prefix}*")]

    async def usage(self, prefix: str = "") -> int:
        total = 0
        for key in await self.keys(prefix):
            total += await self.client.strlen(key)
        return total


def build_store(backend: Optional[str] = None) -> KeyValueStore:
    """根据配置创建持久化后端"""
    backend = (backend or settings.PERSISTENT_BACKEND).lower()
    if backend == "file":
        return FileStore()
    if backend == "redis":
        return RedisStore()
    if backend == "none":
        return NullStore()
    raise ValueError(f"未知的持久化后端: {backend}")
