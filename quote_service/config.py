"""
行情服务配置模块
支持从环境变量读取配置，自动检测 Docker 容器环境并启用服务发现
"""

import os
from functools import lru_cache
from typing import List

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _is_docker() -> bool:
    """检测当前是否运行在 Docker 容器内"""
    return (
        os.path.exists("/.dockerenv")
        or os.environ.get("DOCKER_CONTAINER", "").lower() in ("1", "true", "yes")
    )


def _default_redis_host() -> str:
    """Docker 环境使用服务名 'redis'，本地使用 'localhost'"""
    return "redis" if _is_docker() else "localhost"


class ProxyConfig(BaseModel):
    """
    代理路由配置

    prefix        : 代理前缀，目标 URL 直接拼接在其后
    encode_target : 目标 URL 是否需要 urlencode 后再拼接
    envelope      : 代理是否以 {"contents": "<json 字符串>"} 形式包装响应
    """

    prefix: str
    encode_target: bool = False
    envelope: bool = False


class QuoteServiceSettings(BaseSettings):
    """行情服务配置"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── 基础配置 ──────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8001)
    DEBUG: bool = Field(default=False)
    ALLOWED_ORIGINS: List[str] = Field(
        default_factory=lambda: ["*"]
    )

    # ── 上游数据源 ────────────────────────────────────────
    TWSE_URL: str = Field(default="https://openapi.twse.com.tw/v1/exchangeReport/STOCK_DAY_ALL")
    TPEX_URL: str = Field(default="https://www.tpex.org.tw/openapi/v1/tpex_mainboard_daily_close_quotes")
    QUOTE_PROXIES: List[ProxyConfig] = Field(default_factory=list)

    # ── HTTP 传输 ─────────────────────────────────────────
    HTTP_TIMEOUT: float = Field(default=15.0)        # 秒，代理较慢时需要放宽
    HTTP_RETRY_ATTEMPTS: int = Field(default=2)
    HTTP_RETRY_DELAY: float = Field(default=2.0)     # 秒，固定间隔
    HTTP_USER_AGENT: str = Field(default="tw-quote-service/1.0")

    # ── 网络连通性检测 ────────────────────────────────────
    NETWORK_CHECK_ENABLED: bool = Field(default=True)
    # 公共 DNS 而非上游主机，任意一个可达即视为在线
    NETWORK_CHECK_TARGETS: List[str] = Field(
        default_factory=lambda: ["1.1.1.1:53", "8.8.8.8:53"]
    )
    NETWORK_CHECK_TIMEOUT: float = Field(default=3.0)

    # ── 缓存配置 ──────────────────────────────────────────
    QUOTE_CACHE_TTL: int = Field(default=300)            # 行情缓存 TTL（秒）
    MEMORY_CACHE_MAX_SIZE: int = Field(default=100)      # 内存层最大条目数
    CACHE_CLEANUP_INTERVAL: int = Field(default=600)     # 定期清理间隔（秒）
    CACHE_PREFIX: str = Field(default="stock_app_cache_")
    PERSISTENT_BACKEND: str = Field(default="file")      # file / redis / none
    CACHE_DIR: str = Field(default="./cache")
    PERSISTENT_MAX_BYTES: int = Field(default=5 * 1024 * 1024)
    PERSISTENT_MAX_ENTRY_BYTES: int = Field(default=2 * 1024 * 1024)

    # ── Redis 配置（支持服务发现） ─────────────────────────
    REDIS_HOST: str = Field(default_factory=_default_redis_host)
    REDIS_PORT: int = Field(default=6379)
    REDIS_PASSWORD: str = Field(default="")
    REDIS_DB: int = Field(default=0)
    REDIS_MAX_CONNECTIONS: int = Field(default=20)

    @property
    def REDIS_URL(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # ── 搜索配置 ──────────────────────────────────────────
    SEARCH_MAX_RESULTS: int = Field(default=100)
    SEARCH_CACHE_SIZE: int = Field(default=50)

    # ── 日志配置 ──────────────────────────────────────────
    LOG_LEVEL: str = Field(default="INFO")
    TZ: str = Field(default="Asia/Taipei")


@lru_cache
def get_settings() -> QuoteServiceSettings:
    """获取全局配置（单例）"""
    return QuoteServiceSettings()


settings = get_settings()
