"""
Layer 3 – 数据获取层（聚合）
并发调用全部数据源适配器，合并成功的结果；仅当全部失败时才返回失败。
"""

import asyncio
import logging
from typing import List, Optional, Sequence

from quote_service.layers.sources import SourceAdapter, TpexAdapter, TwseAdapter
from quote_service.layers.transport import NetworkProbe, Transport
from quote_service.models.quote import Quote
from quote_service.models.result import Err, ErrorKind, FetchError, Ok, Result, err

logger = logging.getLogger(__name__)


class AcquisitionLayer:
    """数据获取层：封装多数据源，提供统一的行情拉取接口"""

    def __init__(
        self,
        adapters: Sequence[SourceAdapter],
        probe: Optional[NetworkProbe] = None,
    ):
        self._adapters = list(adapters)
        self._probe = probe or NetworkProbe()

    @property
    def adapters(self) -> List[SourceAdapter]:
        return list(self._adapters)

    async def get_all_quotes(self) -> Result[List[Quote]]:
        """
        获取全部数据源的当日行情

        结果顺序固定为：适配器声明顺序，其次为各适配器内部的原始顺序，
        与网络请求完成先后无关。
        """
        if not await self._probe.is_online():
            return err(ErrorKind.NO_NETWORK, "无网络连接，请检查网络设置")

        outcomes = await asyncio.gather(*(a.fetch_quotes() for a in self._adapters))

        quotes: List[Quote] = []
        failures: List[FetchError] = []
        for adapter, outcome in zip(self._adapters, outcomes):
            if isinstance(outcome, Err):
                logger.warning(f"数据源 {adapter.name} 获取失败: {outcome.error}")
                failures.append(outcome.error)
            else:
                quotes.extend(outcome.value)

        if failures and len(failures) == len(self._adapters):
            return Err(FetchError(
                kind=ErrorKind.ALL_SOURCES_FAILED,
                message="所有数据源都无法使用，请稍后再试",
                causes=tuple(failures),
            ))

        logger.info(
            f"行情获取完成，共 {len(quotes)} 条"
            f"（成功 {len(self._adapters) - len(failures)}/{len(self._adapters)} 个数据源）"
        )
        return Ok(quotes)


def build_acquisition_layer(transport: Transport, probe: Optional[NetworkProbe] = None) -> AcquisitionLayer:
    """按默认顺序（上市 → 上柜）组装获取层"""
    return AcquisitionLayer([TwseAdapter(transport), TpexAdapter(transport)], probe=probe)
