"""
统一行情模型
上市（TWSE）与上柜（TPEX）两种原始格式统一映射为 Quote
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict


class QuoteSource(str, Enum):
    """行情来源市场"""

    TWSE = "twse"   # 上市（集中市场）
    TPEX = "tpex"   # 上柜（柜买市场）


class Quote(BaseModel):
    """
    单只证券的当日交易行情

    数值字段均保留上游返回的原始文本（可能带千分位），
    数值解析属于展示层职责，见 ProcessingLayer。
    """

    model_config = ConfigDict(frozen=True)

    date: str = ""
    code: str
    name: str = ""
    closing_price: str = ""
    opening_price: str = ""
    highest_price: str = ""
    lowest_price: str = ""
    change: str = ""
    trade_volume: str = ""
    trade_value: str = ""
    transaction_count: str = ""
    source: QuoteSource
