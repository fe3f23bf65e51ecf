"""
台股行情服务
独立 FastAPI 应用程序入口

启动方式:
    uvicorn quote_service.main:app --host 0.0.0.0 --port 8001
    python -m quote_service.main
"""

import logging
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from quote_service import __version__
from quote_service.config import settings
from quote_service.db import init_redis, close_connections
from quote_service.layers.acquisition import build_acquisition_layer
from quote_service.layers.cache import build_tiered_cache
from quote_service.layers.search import SearchEngine
from quote_service.layers.storage import build_store
from quote_service.layers.transport import NetworkProbe, Transport
from quote_service.routers import health, quotes, cache
from quote_service.services.quote_service import QuoteService

# ── 日志配置 ──────────────────────────────────────────────
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ── 生命周期管理 ──────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用启动/关闭生命周期钩子"""
    logger.info("=" * 60)
    logger.info(f"🚀 TW Quote Service v{__version__} 启动中")
    logger.info(f"   TWSE      : {settings.TWSE_URL}")
    logger.info(f"   TPEX      : {settings.TPEX_URL}")
    logger.info(f"   代理路由  : {len(settings.QUOTE_PROXIES)} 条")
    logger.info(f"   持久层    : {settings.PERSISTENT_BACKEND}")
    logger.info("=" * 60)

    # 持久层不可用不阻断启动，降级为仅内存缓存
    if settings.PERSISTENT_BACKEND.lower() == "redis":
        if not await init_redis():
            logger.warning("⚠️ Redis 不可用，缓存降级为仅内存模式")

    transport = Transport()
    tiered_cache = build_tiered_cache(build_store())
    app.state.quote_service = QuoteService(
        acquisition=build_acquisition_layer(transport, NetworkProbe()),
        cache=tiered_cache,
        search_engine=SearchEngine(),
    )
    tiered_cache.start_periodic_cleanup(settings.CACHE_CLEANUP_INTERVAL)
    logger.info("✅ 行情服务就绪")

    yield

    logger.info("🔄 行情服务正在关闭...")
    await tiered_cache.stop_periodic_cleanup()
    await transport.aclose()
    await close_connections()
    logger.info("✅ 行情服务已关闭")


# ── 应用实例 ──────────────────────────────────────────────
app = FastAPI(
    title="台股行情服务",
    description=(
        "整合上市（TWSE）与上柜（TPEX）每日收盘行情的只读服务：\n"
        "- 🌐 双数据源并发获取，单一数据源故障时降级返回\n"
        "- 🔁 超时中止、网络错误重试、代理路由备援\n"
        "- 🗄️ 两级缓存（内存 → 文件 / Redis），TTL 过期与定期清理\n"
        "- 🔍 分级排序的代码 / 名称搜索\n\n"
        "**分层架构**\n"
        "```\n"
        "Transport Layer    ← 超时 / 重试 / 错误分类\n"
        "Source Adapters    ← 上游格式校验与统一映射\n"
        "Acquisition Layer  ← 并发聚合、部分失败降级\n"
        "Cache Layer        ← 内存 + 持久化两级缓存\n"
        "Search Layer       ← 分级子串匹配\n"
        "```"
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS 中间件 ───────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── 请求计时中间件 ─────────────────────────────────────────
@app.middleware("http")
async def add_process_time(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    response.headers["X-Process-Time"] = f"{(time.time() - start) * 1000:.1f}ms"
    return response


# ── 全局异常处理 ──────────────────────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"未处理的异常: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "内部服务错误", "message": str(exc)},
    )


# ── 注册路由 ──────────────────────────────────────────────
app.include_router(health.router)
app.include_router(quotes.router)
app.include_router(cache.router)


# ── 根路由 ───────────────────────────────────────────────
@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": "TW Quote Service",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


# ── 直接运行入口 ──────────────────────────────────────────
if __name__ == "__main__":
    uvicorn.run(
        "quote_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
