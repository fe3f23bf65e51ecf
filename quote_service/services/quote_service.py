"""
行情数据服务
整合获取、缓存、搜索、处理各层，对外提供统一的行情访问接口
"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

from pydantic import TypeAdapter, ValidationError

from quote_service.config import settings
from quote_service.layers.acquisition import AcquisitionLayer
from quote_service.layers.cache import TieredCache, make_key
from quote_service.layers.processing import ProcessingLayer, TopKind
from quote_service.layers.search import SearchEngine
from quote_service.models.quote import Quote
from quote_service.models.result import Err, FetchError, Ok, Result

logger = logging.getLogger(__name__)

ALL_QUOTES_KEY = "all_quotes"
TIMESTAMP_KEY = f"{ALL_QUOTES_KEY}_timestamp"

_QUOTES = TypeAdapter(List[Quote])
_QUOTE = TypeAdapter(Quote)


class QuoteService:
    """行情业务服务"""

    def __init__(
        self,
        acquisition: AcquisitionLayer,
        cache: TieredCache,
        search_engine: Optional[SearchEngine] = None,
        processor: Optional[ProcessingLayer] = None,
        ttl: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._acq = acquisition
        self._cache = cache
        self._search = search_engine or SearchEngine()
        self._proc = processor or ProcessingLayer()
        self._ttl = settings.QUOTE_CACHE_TTL if ttl is None else ttl
        self._clock = clock

        self._quotes: List[Quote] = []
        self._last_updated: Optional[float] = None
        self._from_cache = False
        self._error: Optional[FetchError] = None
        self._generation = 0

    @property
    def cache(self) -> TieredCache:
        return self._cache

    @property
    def search_engine(self) -> SearchEngine:
        return self._search

    # ── 全量行情 ──────────────────────────────────────────

    async def get_all_quotes(self, force_refresh: bool = False) -> Result[List[Quote]]:
        """
        获取全部行情

        Args:
            force_refresh: 跳过缓存直接请求上游
        """
        self._generation += 1
        generation = self._generation
        self._error = None

        if not force_refresh:
            cached = await self._load_cached()
            if cached is not None:
                timestamp = await self._cache.get(TIMESTAMP_KEY)
                if generation == self._generation:
                    self._apply(cached, timestamp, from_cache=True)
                return Ok(list(cached))

        outcome = await self._acq.get_all_quotes()
        if generation != self._generation:
            # 已有更新的请求发出，本次结果不再写入
            logger.debug("行情请求已被后续请求取代，丢弃结果")
            return outcome

        if isinstance(outcome, Err):
            self._error = outcome.error
            return outcome

        quotes = outcome.value
        now = self._clock()
        await self._cache.set(ALL_QUOTES_KEY, quotes, self._ttl)
        await self._cache.set(TIMESTAMP_KEY, now, self._ttl)
        self._apply(quotes, now, from_cache=False)
        return Ok(list(quotes))

    async def refresh(self) -> Result[List[Quote]]:
        """清除缓存并重新请求上游"""
        await self._cache.delete(ALL_QUOTES_KEY)
        await self._cache.delete(TIMESTAMP_KEY)
        self._search.clear_cache()
        return await self.get_all_quotes(force_refresh=True)

    async def ensure_loaded(self) -> Result[List[Quote]]:
        """已有数据时直接返回，否则按缓存优先的方式加载"""
        if self._quotes:
            return Ok(list(self._quotes))
        return await self.get_all_quotes()

    async def _load_cached(self) -> Optional[List[Quote]]:
        cached = await self._cache.get(ALL_QUOTES_KEY)
        if cached is None:
            return None
        try:
            return _QUOTES.validate_python(cached)
        except ValidationError as exc:
            logger.warning(f"缓存中的行情数据格式不正确，已丢弃: {exc.error_count()} 处错误")
            await self._cache.delete(ALL_QUOTES_KEY)
            return None

    def _apply(self, quotes: List[Quote], timestamp, from_cache: bool) -> None:
        # 数据集替换后，按长度缓存的搜索结果不再可信
        self._search.clear_cache()
        self._quotes = list(quotes)
        self._last_updated = float(timestamp) if isinstance(timestamp, (int, float)) else None
        self._from_cache = from_cache

    # ── 搜索 / 查询 ───────────────────────────────────────

    async def search(self, query: str) -> Result[List[Quote]]:
        """按代码 / 名称搜索，空查询返回空结果"""
        if not query.strip():
            return Ok([])
        loaded = await self.ensure_loaded()
        if isinstance(loaded, Err):
            return loaded
        return Ok(self._search.search(loaded.value, query))

    async def get_quote(self, code: str) -> Result[Optional[Quote]]:
        """按代码精确查找单只证券，多个来源同代码时取第一条"""
        loaded = await self.ensure_loaded()
        if isinstance(loaded, Err):
            return loaded

        key = make_key("quote", code, str(int(self._last_updated or 0)))
        cached = await self._cache.get(key)
        if cached is not None:
            try:
                return Ok(_QUOTE.validate_python(cached))
            except ValidationError:
                await self._cache.delete(key)

        found = next((q for q in loaded.value if q.code == code), None)
        if found is not None:
            await self._cache.set(key, found, self._ttl)
        return Ok(found)

    async def top_quotes(self, kind: TopKind, limit: int = 10) -> Result[List[Quote]]:
        loaded = await self.ensure_loaded()
        if isinstance(loaded, Err):
            return loaded
        return Ok(self._proc.top_quotes(loaded.value, kind, limit))

    async def summary(self) -> Result[dict]:
        loaded = await self.ensure_loaded()
        if isinstance(loaded, Err):
            return loaded
        return Ok(self._proc.summary(loaded.value))

    # ── 状态 ──────────────────────────────────────────────

    @property
    def quotes(self) -> List[Quote]:
        return list(self._quotes)

    def is_from_cache(self) -> bool:
        return self._from_cache

    def last_updated(self) -> Optional[datetime]:
        if self._last_updated is None:
            return None
        return datetime.fromtimestamp(self._last_updated, tz=timezone.utc)

    @property
    def last_error(self) -> Optional[FetchError]:
        return self._error

    def clear_error(self) -> None:
        self._error = None

    def status(self) -> dict:
        updated = self.last_updated()
        return {
            "count": len(self._quotes),
            "is_from_cache": self._from_cache,
            "last_updated": updated.isoformat() if updated else None,
            "error": self._error.to_dict() if self._error else None,
        }
