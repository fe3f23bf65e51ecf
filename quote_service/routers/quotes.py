"""
行情路由
GET    /api/quotes             - 获取全部行情（缓存优先）
POST   /api/quotes/refresh     - 跳过缓存重新获取
GET    /api/quotes/search      - 按代码 / 名称搜索
GET    /api/quotes/top         - 成交量 / 涨幅 / 跌幅排行
GET    /api/quotes/summary     - 涨跌家数统计
GET    /api/quotes/status      - 数据状态（是否来自缓存、更新时间、最近错误）
DELETE /api/quotes/error       - 清除最近错误
GET    /api/quotes/{code}      - 单只证券行情
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status

from quote_service.layers.processing import TopKind
from quote_service.models.quote import Quote
from quote_service.models.response import ApiResponse
from quote_service.models.result import Err
from quote_service.routers.deps import get_quote_service, raise_for_error
from quote_service.services.quote_service import QuoteService

router = APIRouter(prefix="/api/quotes", tags=["行情"])


def _dump(quotes: List[Quote]) -> list:
    return [q.model_dump(mode="json") for q in quotes]


@router.get("", response_model=ApiResponse)
async def list_quotes(
    force_refresh: bool = Query(default=False),
    svc: QuoteService = Depends(get_quote_service),
):
    """获取上市 + 上柜全部行情"""
    outcome = await svc.get_all_quotes(force_refresh=force_refresh)
    if isinstance(outcome, Err):
        raise_for_error(outcome.error)
    return ApiResponse.ok(
        data={**svc.status(), "quotes": _dump(outcome.value)},
        message=f"获取行情成功，共 {len(outcome.value)} 条",
    )


@router.post("/refresh", response_model=ApiResponse)
async def refresh_quotes(svc: QuoteService = Depends(get_quote_service)):
    """清除缓存并重新获取"""
    outcome = await svc.refresh()
    if isinstance(outcome, Err):
        raise_for_error(outcome.error)
    return ApiResponse.ok(data=svc.status(), message="行情已刷新")


@router.get("/search", response_model=ApiResponse)
async def search_quotes(
    q: str = Query(default="", description="搜索关键词（证券代码或名称）"),
    svc: QuoteService = Depends(get_quote_service),
):
    outcome = await svc.search(q)
    if isinstance(outcome, Err):
        raise_for_error(outcome.error)
    return ApiResponse.ok(
        data={"query": q, "count": len(outcome.value), "quotes": _dump(outcome.value)},
    )


@router.get("/top", response_model=ApiResponse)
async def top_quotes(
    kind: TopKind = Query(default=TopKind.VOLUME),
    limit: int = Query(default=10, ge=1, le=100),
    svc: QuoteService = Depends(get_quote_service),
):
    outcome = await svc.top_quotes(kind, limit)
    if isinstance(outcome, Err):
        raise_for_error(outcome.error)
    return ApiResponse.ok(data={"kind": kind.value, "quotes": _dump(outcome.value)})


@router.get("/summary", response_model=ApiResponse)
async def market_summary(svc: QuoteService = Depends(get_quote_service)):
    outcome = await svc.summary()
    if isinstance(outcome, Err):
        raise_for_error(outcome.error)
    return ApiResponse.ok(data=outcome.value)


@router.get("/status", response_model=ApiResponse)
async def quote_status(svc: QuoteService = Depends(get_quote_service)):
    return ApiResponse.ok(data=svc.status())


@router.delete("/error", response_model=ApiResponse)
async def clear_error(svc: QuoteService = Depends(get_quote_service)):
    svc.clear_error()
    return ApiResponse.ok(message="错误已清除")


@router.get("/{code}", response_model=ApiResponse)
async def get_quote(code: str, svc: QuoteService = Depends(get_quote_service)):
    """按代码获取单只证券行情"""
    outcome = await svc.get_quote(code)
    if isinstance(outcome, Err):
        raise_for_error(outcome.error)
    if outcome.value is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"找不到证券代码 {code}",
        )
    return ApiResponse.ok(data=outcome.value.model_dump(mode="json"))
