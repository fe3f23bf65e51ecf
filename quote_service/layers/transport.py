"""
Layer 1 – 传输层
带硬超时、固定间隔重试的 HTTP GET，并把失败归类为 FetchError。
本层不了解任何行情语义。
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from quote_service.config import settings
from quote_service.models.result import ErrorKind, Ok, Result, err

logger = logging.getLogger(__name__)


class Transport:
    """HTTP 传输：超时即中止，仅网络层错误会重试"""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        retry_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        self.timeout = settings.HTTP_TIMEOUT if timeout is None else float(timeout)
        self.retry_attempts = (
            settings.HTTP_RETRY_ATTEMPTS if retry_attempts is None else int(retry_attempts)
        )
        self.retry_delay = settings.HTTP_RETRY_DELAY if retry_delay is None else float(retry_delay)
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout, connect=min(10.0, self.timeout)),
            follow_redirects=True,
            headers={"User-Agent": settings.HTTP_USER_AGENT},
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
        )

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch(
        self,
        url: str,
        options: Optional[Dict[str, Any]] = None,
        retries_remaining: Optional[int] = None,
    ) -> Result[httpx.Response]:
        """
        发起 GET 请求

        Args:
            url: 目标地址
            options: 可选 {"headers": {...}, "params": {...}}
            retries_remaining: 剩余重试次数，默认取配置值
        """
        if retries_remaining is None:
            retries_remaining = self.retry_attempts
        options = options or {}
        headers = {"Accept": "application/json", **options.get("headers", {})}

        try:
            response = await asyncio.wait_for(
                self._client.get(url, headers=headers, params=options.get("params")),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.debug(f"请求超时（{self.timeout:.1f}s）: {url}")
            return err(ErrorKind.TIMEOUT, "请求超时，请检查网络连接", 408)
        except httpx.TransportError as exc:
            if retries_remaining > 0:
                logger.debug(
                    f"网络错误，{self.retry_delay:.1f}s 后重试（剩余 {retries_remaining} 次）: "
                    f"{url} - {exc.__class__.__name__}: {exc}"
                )
                await asyncio.sleep(self.retry_delay)
                return await self.fetch(url, options, retries_remaining - 1)
            return err(ErrorKind.UNKNOWN, str(exc) or exc.__class__.__name__)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            return err(ErrorKind.UNKNOWN, str(exc) or exc.__class__.__name__)

        if not response.is_success:
            return err(
                ErrorKind.HTTP_STATUS,
                f"HTTP Error: {response.status_code} {response.reason_phrase}",
                response.status_code,
            )
        return Ok(response)


class NetworkProbe:
    """
    网络连通性检测

    对一组中立目标（默认公共 DNS）并发做 TCP 握手，任意一个成功即视为在线。
    目标不应是上游主机，否则单一数据源宕机会被误判为断网。
    """

    def __init__(
        self,
        targets: Optional[Sequence[str]] = None,
        timeout: Optional[float] = None,
        enabled: Optional[bool] = None,
    ):
        raw = settings.NETWORK_CHECK_TARGETS if targets is None else targets
        self.targets: List[Tuple[str, int]] = [parse_target(t) for t in raw]
        self.timeout = settings.NETWORK_CHECK_TIMEOUT if timeout is None else timeout
        self.enabled = settings.NETWORK_CHECK_ENABLED if enabled is None else enabled

    async def is_online(self) -> bool:
        if not self.enabled or not self.targets:
            return True
        results = await asyncio.gather(*(self._reach(host, port) for host, port in self.targets))
        if any(results):
            return True
        logger.warning(f"网络不可达：{len(self.targets)} 个检测目标均无法连接")
        return False

    async def _reach(self, host: str, port: int) -> bool:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), timeout=self.timeout
            )
        except (OSError, asyncio.TimeoutError) as exc:
            logger.debug(f"检测目标不可达（{host}:{port}）: {exc}")
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True


def parse_target(target: str) -> Tuple[str, int]:
    """'1.1.1.1:53' → ('1.1.1.1', 53)，未写端口时默认 443"""
    host, sep, port = target.rpartition(":")
    if not sep or not port.isdigit():
        return target, 443
    return host, int(port)
