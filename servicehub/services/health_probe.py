"""
服务健康探测模块。

对单个服务执行一次有时限的 HTTP(S) GET 检查，并将结果归类为状态值。
探测从不抛出异常：超时、连接失败、非 2xx/3xx 响应都会转换为对应的状态。

证书校验被有意关闭（由调用方创建 verify=False 的客户端），用于支持内网自签名证书的服务。
"""
import asyncio
import errno
import logging
import socket
import time

import httpx

from servicehub.core.config import settings
from servicehub.models.enums import StatusValue
from servicehub.models.service import Service
from servicehub.schemas.health import HealthCheckResult

logger = logging.getLogger(__name__)

ECONNREFUSED = "ECONNREFUSED"
ENOTFOUND = "ENOTFOUND"


def build_probe_client(user_agent: str | None = None, **kwargs) -> httpx.AsyncClient:
    """创建探测用 HTTP 客户端：关闭证书校验、不跟随重定向、固定请求头。"""
    return httpx.AsyncClient(
        verify=False,
        follow_redirects=False,
        headers={
            "User-Agent": user_agent or settings.probe_user_agent,
            "Accept": "*/*",
        },
        **kwargs,
    )


def _network_error_code(exc: BaseException) -> str | None:
    """沿异常链查找底层网络错误，返回 ECONNREFUSED / ENOTFOUND，无法识别时返回 None。"""
    seen = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, ConnectionRefusedError):
            return ECONNREFUSED
        if isinstance(current, socket.gaierror):
            return ENOTFOUND
        if isinstance(current, OSError) and current.errno == errno.ECONNREFUSED:
            return ECONNREFUSED
        current = current.__cause__ or current.__context__
    return None


class HealthProbe:
    """单服务健康探测器。HTTP 客户端由外部注入，生命周期由调用方管理。"""

    def __init__(self, client: httpx.AsyncClient, default_timeout: int | None = None):
        self._client = client
        self._default_timeout = default_timeout or settings.probe_default_timeout

    def timeout_for(self, service: Service) -> int:
        return service.timeout_seconds or self._default_timeout

    async def check(self, service: Service) -> HealthCheckResult:
        """执行一次健康检查。

        分类规则：
        - HTTP 状态码 [200, 400) → ONLINE
        - 其他状态码 → ERROR，信息为 ``HTTP <code>: <reason>``
        - 超过截止时间 → TIMEOUT
        - 连接被拒绝 / 域名解析失败 → OFFLINE，信息包含底层错误码
        - 其他传输错误 → OFFLINE，信息为原始错误
        """
        timeout = self.timeout_for(service)
        url = service.check_url
        start = time.monotonic()

        def elapsed() -> int:
            return int(round((time.monotonic() - start) * 1000))

        try:
            resp = await asyncio.wait_for(self._client.get(url, timeout=timeout), timeout=timeout)
        except (httpx.TimeoutException, asyncio.TimeoutError):
            return HealthCheckResult(
                status=StatusValue.TIMEOUT,
                response_time_ms=elapsed(),
                error_message=f"Request timed out after {timeout}s",
            )
        except Exception as e:
            code = _network_error_code(e)
            if code:
                message = f"Connection failed: {code}"
            else:
                message = (str(e) or type(e).__name__)[:500]
            logger.debug(f"Probe {service.name} ({url}) failed: {message}")
            return HealthCheckResult(
                status=StatusValue.OFFLINE,
                response_time_ms=elapsed(),
                error_message=message,
            )

        if 200 <= resp.status_code < 400:
            return HealthCheckResult(
                status=StatusValue.ONLINE,
                response_time_ms=elapsed(),
                status_code=resp.status_code,
            )
        return HealthCheckResult(
            status=StatusValue.ERROR,
            response_time_ms=elapsed(),
            status_code=resp.status_code,
            error_message=f"HTTP {resp.status_code}: {resp.reason_phrase}",
        )
