"""
Layer 5 – 搜索层
在全量行情上做分级子串匹配，结果数量有上限，并按 (查询, 数据集大小) 缓存结果。

匹配优先级（互斥，先命中者生效）：
  1. 代码完全相同   → 插到结果最前面
  2. 代码以查询开头 → 按扫描顺序追加
  3. 代码包含查询   → 按扫描顺序追加
  4. 名称包含查询   → 按扫描顺序追加
"""

import logging
from collections import OrderedDict
from typing import List, Optional, Sequence, Tuple

from quote_service.config import settings
from quote_service.models.quote import Quote

logger = logging.getLogger(__name__)

SearchKey = Tuple[str, int]


def normalize_query(query: str) -> str:
    return query.strip().lower()


class SearchEngine:
    """行情搜索引擎"""

    def __init__(self, max_results: Optional[int] = None, cache_size: Optional[int] = None):
        self.max_results = settings.SEARCH_MAX_RESULTS if max_results is None else max_results
        self.cache_size = settings.SEARCH_CACHE_SIZE if cache_size is None else cache_size
        self._cache: "OrderedDict[SearchKey, List[Quote]]" = OrderedDict()

    def search(self, quotes: Sequence[Quote], query: str) -> List[Quote]:
        q = normalize_query(query)
        if not q:
            return []

        # 以数据集长度作为一致性依据，长度相同的不同数据集会误命中，
        # 因此刷新数据时需调用 clear_cache()
        key = (q, len(quotes))
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug(f"搜索缓存命中: {q!r}")
            return list(cached)

        results = self._scan(quotes, q)

        if self._cache and len(self._cache) >= self.cache_size:
            self._cache.popitem(last=False)
        self._cache[key] = results
        return list(results)

    def _scan(self, quotes: Sequence[Quote], q: str) -> List[Quote]:
        results: List[Quote] = []
        for quote in quotes:
            if len(results) >= self.max_results:
                break
            code = quote.code.lower()
            if code == q:
                results.insert(0, quote)
            elif code.startswith(q):
                results.append(quote)
            elif q in code:
                results.append(quote)
            elif q in quote.name.lower():
                results.append(quote)
        return results

    def clear_cache(self) -> None:
        self._cache.clear()

    @property
    def cache_info(self) -> dict:
        return {"size": len(self._cache), "max_size": self.cache_size}
