"""
Layer 2 – 数据源适配层
每个适配器封装一个上游端点：
  1. 依次尝试直连与代理路由
  2. 解码 JSON（必要时拆开代理的 contents 信封）
  3. 用各自的记录模型校验，并映射为统一的 Quote
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Type
from urllib.parse import quote as urlquote

import httpx
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from quote_service.config import ProxyConfig, settings
from quote_service.layers.transport import Transport
from quote_service.models.quote import Quote, QuoteSource
from quote_service.models.result import Err, ErrorKind, Ok, Result, err

logger = logging.getLogger(__name__)


# ── 上游原始记录 ──────────────────────────────────────────

class _UpstreamRecord(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )

    @field_validator("*", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value


class TwseRecord(_UpstreamRecord):
    """上市每日收盘行情（STOCK_DAY_ALL）"""

    code: str = Field(alias="Code", min_length=1)
    name: str = Field(default="", alias="Name")
    date: str = Field(default="", alias="Date")
    opening_price: str = Field(default="", alias="OpeningPrice")
    highest_price: str = Field(default="", alias="HighestPrice")
    lowest_price: str = Field(default="", alias="LowestPrice")
    closing_price: str = Field(default="", alias="ClosingPrice")
    change: str = Field(default="", alias="Change")
    trade_volume: str = Field(default="", alias="TradeVolume")
    trade_value: str = Field(default="", alias="TradeValue")
    transaction: str = Field(default="", alias="Transaction")


class TpexRecord(_UpstreamRecord):
    """上柜每日收盘行情（mainboard daily close quotes）"""

    code: str = Field(alias="SecuritiesCompanyCode", min_length=1)
    name: str = Field(default="", alias="CompanyName")
    date: str = Field(default="", alias="Date")
    open: str = Field(default="", alias="Open")
    high: str = Field(default="", alias="High")
    low: str = Field(default="", alias="Low")
    close: str = Field(default="", alias="Close")
    change: str = Field(default="", alias="Change")
    trading_shares: str = Field(default="", alias="TradingShares")
    transaction_amount: str = Field(default="", alias="TransactionAmount")
    transaction_number: str = Field(default="", alias="TransactionNumber")


# ── 路由 ──────────────────────────────────────────────────

@dataclass(frozen=True)
class Route:
    url: str
    envelope: bool = False
    label: str = "direct"


def build_routes(target_url: str, proxies: Sequence[ProxyConfig] = ()) -> List[Route]:
    """直连优先，其后按配置顺序排列代理路由"""
    routes = [Route(url=target_url)]
    for proxy in proxies:
        target = urlquote(target_url, safe="") if proxy.encode_target else target_url
        host = proxy.prefix.split("//")[-1].split("/")[0]
        routes.append(Route(url=f"{proxy.prefix}{target}", envelope=proxy.envelope, label=host))
    return routes


# ── 适配器 ────────────────────────────────────────────────

class SourceAdapter:
    """数据源适配器基类"""

    name: str = ""
    source: QuoteSource
    record_model: Type[_UpstreamRecord]

    def __init__(
        self,
        transport: Transport,
        url: str,
        proxies: Optional[Sequence[ProxyConfig]] = None,
    ):
        self._transport = transport
        self.url = url
        self.routes = build_routes(url, settings.QUOTE_PROXIES if proxies is None else proxies)
        self._records = TypeAdapter(List[self.record_model])

    async def fetch_quotes(self) -> Result[List[Quote]]:
        """
        拉取并规范化本数据源的全部行情

        任一路由失败（传输错误或返回格式不正确）都切换到下一条路由，
        同一路由不重复请求；全部失败时返回最后一条路由的错误。
        """
        last: Optional[Err] = None
        for i, route in enumerate(self.routes, start=1):
            fetched = await self._transport.fetch(route.url)
            if isinstance(fetched, Err):
                logger.warning(f"{self.name} 路由 {i}（{route.label}）失败: {fetched.error}")
                last = fetched
                continue

            parsed = self.parse(fetched.value, route)
            if isinstance(parsed, Err):
                logger.warning(f"{self.name} 路由 {i}（{route.label}）返回格式错误: {parsed.error}")
                last = parsed
                continue

            logger.info(f"{self.name} 路由 {i}（{route.label}）成功，共 {len(parsed.value)} 条")
            return parsed

        return last if last is not None else err(ErrorKind.UNKNOWN, f"{self.name} 没有可用路由")

    def parse(self, response: httpx.Response, route: Route) -> Result[List[Quote]]:
        try:
            payload = response.json()
        except ValueError as exc:
            return err(ErrorKind.INVALID_SHAPE, f"响应不是合法 JSON: {exc}")

        if route.envelope:
            contents = payload.get("contents") if isinstance(payload, dict) else None
            if not isinstance(contents, str):
                return err(ErrorKind.INVALID_SHAPE, "代理返回格式错误：缺少 contents")
            try:
                payload = json.loads(contents)
            except ValueError as exc:
                return err(ErrorKind.INVALID_SHAPE, f"代理 contents 不是合法 JSON: {exc}")

        return self.validate(payload)

    def validate(self, payload: Any) -> Result[List[Quote]]:
        if not isinstance(payload, list):
            return err(
                ErrorKind.INVALID_SHAPE,
                f"数据格式不正确：期望列表，实际为 {type(payload).__name__}",
            )
        try:
            records = self._records.validate_python(payload)
        except ValidationError as exc:
            return err(
                ErrorKind.INVALID_SHAPE,
                f"数据格式不正确：{exc.error_count()} 处字段校验失败",
            )
        return Ok([self.to_quote(r) for r in records])

    def to_quote(self, record: Any) -> Quote:
        raise NotImplementedError


class TwseAdapter(SourceAdapter):
    name = "TWSE"
    source = QuoteSource.TWSE
    record_model = TwseRecord

    def __init__(self, transport: Transport, url: Optional[str] = None, proxies=None):
        super().__init__(transport, url or settings.TWSE_URL, proxies)

    def to_quote(self, record: TwseRecord) -> Quote:
        return Quote(
            date=record.date,
            code=record.code,
            name=record.name,
            closing_price=record.closing_price,
            opening_price=record.opening_price,
            highest_price=record.highest_price,
            lowest_price=record.lowest_price,
            change=record.change,
            trade_volume=record.trade_volume,
            trade_value=record.trade_value,
            transaction_count=record.transaction,
            source=self.source,
        )


class TpexAdapter(SourceAdapter):
    name = "TPEX"
    source = QuoteSource.TPEX
    record_model = TpexRecord

    def __init__(self, transport: Transport, url: Optional[str] = None, proxies=None):
        super().__init__(transport, url or settings.TPEX_URL, proxies)

    def to_quote(self, record: TpexRecord) -> Quote:
        return Quote(
            date=record.date,
            code=record.code,
            name=record.name,
            closing_price=record.close,
            opening_price=record.open,
            highest_price=record.high,
            lowest_price=record.low,
            change=record.change,
            trade_volume=record.trading_shares,
            trade_value=record.transaction_amount,
            transaction_count=record.transaction_number,
            source=self.source,
        )
