"""网关 HTTP 公共工具

所有外部调用都是有界重试：只对网络错误和 5xx 重试，
4xx 直接失败，超过重试次数后抛出 UpstreamError。
"""

import logging

import httpx
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from app.core.config import settings
from app.core.errors import UpstreamError

logger = logging.getLogger(__name__)


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return False


gateway_retry = retry(
    stop=stop_after_attempt(settings.GATEWAY_MAX_ATTEMPTS),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
    retry=retry_if_exception(_is_retryable),
    reraise=True,
)


class HttpGatewayClient:
    """带鉴权头与重试的同步 httpx 客户端封装"""

    def __init__(self, base_url: str, api_key: str = "", timeout: float = None,
                 client: httpx.Client = None):
        self.base_url = base_url.rstrip("/")
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.client = client or httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout or settings.GATEWAY_TIMEOUT_SECONDS,
        )

    @gateway_retry
    def request(self, method: str, path: str, **kwargs) -> httpx.Response:
        response = self.client.request(method, path, **kwargs)
        if response.status_code >= 500:
            logger.warning(f"网关返回 {response.status_code}: {method} {path}")
        response.raise_for_status()
        return response

    def request_json(self, method: str, path: str, **kwargs) -> dict:
        """请求并解析 JSON 对象；2xx 但响应体不是 JSON 对象时视为网关失败"""
        response = self.request(method, path, **kwargs)
        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"网关响应无法解析: {method} {path}, body={response.text[:200]!r}")
            raise UpstreamError(f"网关响应无法解析: {method} {path}") from e
        if not isinstance(data, dict):
            raise UpstreamError(f"网关响应格式异常: {method} {path}")
        return data

    def close(self):
        self.client.close()
