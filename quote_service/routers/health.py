"""健康检查路由"""

import time

from fastapi import APIRouter, Depends

from quote_service import __version__
from quote_service.db import check_health
from quote_service.routers.deps import get_quote_service
from quote_service.services.quote_service import QuoteService

router = APIRouter(tags=["健康检查"])


@router.get("/health")
async def health(svc: QuoteService = Depends(get_quote_service)):
    """服务健康检查"""
    db_health = await check_health()
    return {
        "success": True,
        "data": {
            "status": "ok",
            "version": __version__,
            "timestamp": int(time.time()),
            "service": "TW Quote Service",
            "databases": db_health,
            "quotes": svc.status(),
        },
        "message": "服务运行正常",
    }


@router.get("/healthz")
async def healthz():
    """Kubernetes liveness probe"""
    return {"status": "ok"}


@router.get("/readyz")
async def readyz():
    """Kubernetes readiness probe"""
    return {"ready": True}
