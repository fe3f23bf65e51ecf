"""
Layer 6 – 数据处理层
Quote 中的数值以原始文本保存，这里负责解析（去千分位、非数值置空）
并生成成交量 / 涨幅 / 跌幅排行。
"""

import logging
from enum import Enum
from typing import List, Optional, Sequence

import pandas as pd

from quote_service.models.quote import Quote

logger = logging.getLogger(__name__)

NUMERIC_FIELDS = [
    "closing_price",
    "opening_price",
    "highest_price",
    "lowest_price",
    "change",
    "trade_volume",
    "trade_value",
    "transaction_count",
]


class TopKind(str, Enum):
    VOLUME = "volume"
    GAINERS = "gainers"
    LOSERS = "losers"


def parse_numeric(series: pd.Series) -> pd.Series:
    """'1,234.50' → 1234.5，无法解析的值（'--'、'除息' 等）→ NaN"""
    cleaned = series.astype(str).str.replace(",", "", regex=False).str.strip()
    return pd.to_numeric(cleaned, errors="coerce")


class ProcessingLayer:
    """数据处理层：数值解析 + 排行"""

    def to_frame(self, quotes: Sequence[Quote]) -> pd.DataFrame:
        """
        Quote 列表转换为 DataFrame，数值列解析为 float

        行索引与输入列表下标一致。
        """
        if not quotes:
            return pd.DataFrame(columns=["code", "name", "source"] + NUMERIC_FIELDS)
        df = pd.DataFrame([q.model_dump(mode="json") for q in quotes])
        for col in NUMERIC_FIELDS:
            df[col] = parse_numeric(df[col])
        return df

    def top_quotes(
        self,
        quotes: Sequence[Quote],
        kind: TopKind,
        limit: Optional[int] = 10,
    ) -> List[Quote]:
        """
        排行榜

        Args:
            kind: volume 成交量降序 / gainers 涨跌降序 / losers 涨跌升序
            limit: 返回条数
        """
        df = self.to_frame(quotes)
        if df.empty:
            return []

        kind = TopKind(kind)
        column = "trade_volume" if kind == TopKind.VOLUME else "change"
        ascending = kind == TopKind.LOSERS

        ranked = df.dropna(subset=[column]).sort_values(
            column, ascending=ascending, kind="mergesort"
        )
        if limit is not None:
            ranked = ranked.head(limit)
        return [quotes[i] for i in ranked.index]

    def summary(self, quotes: Sequence[Quote]) -> dict:
        """涨跌家数与总成交值"""
        df = self.to_frame(quotes)
        if df.empty:
            return {"count": 0, "advancers": 0, "decliners": 0, "unchanged": 0, "trade_value": 0.0}
        change = df["change"].dropna()
        return {
            "count": int(len(df)),
            "advancers": int((change > 0).sum()),
            "decliners": int((change < 0).sum()),
            "unchanged": int((change == 0).sum()),
            "trade_value": float(df["trade_value"].fillna(0).sum()),
        }
