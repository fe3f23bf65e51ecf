"""
缓存管理路由
GET  /api/cache/stats     - 缓存统计
POST /api/cache/cleanup   - 立即清除过期条目
POST /api/cache/clear     - 删除指定键，或清空全部缓存
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from quote_service.models.response import ApiResponse
from quote_service.routers.deps import get_quote_service
from quote_service.services.quote_service import QuoteService

router = APIRouter(prefix="/api/cache", tags=["缓存管理"])


class ClearRequest(BaseModel):
    key: Optional[str] = None


@router.get("/stats", response_model=ApiResponse)
async def cache_stats(svc: QuoteService = Depends(get_quote_service)):
    """获取两级缓存及搜索缓存的统计信息"""
    stats = await svc.cache.stats()
    stats["search"] = svc.search_engine.cache_info
    return ApiResponse.ok(data=stats)


@router.post("/cleanup", response_model=ApiResponse)
async def cleanup_cache(svc: QuoteService = Depends(get_quote_service)):
    removed = await svc.cache.cleanup()
    return ApiResponse.ok(data=removed, message="过期缓存已清除")


@router.post("/clear", response_model=ApiResponse)
async def clear_cache(body: ClearRequest, svc: QuoteService = Depends(get_quote_service)):
    """未指定 key 时清空全部缓存"""
    if body.key:
        deleted = await svc.cache.delete(body.key)
        return ApiResponse.ok(data={"deleted": deleted}, message=f"缓存已清理: {body.key}")
    await svc.cache.clear()
    svc.search_engine.clear_cache()
    return ApiResponse.ok(message="缓存已全部清空")
