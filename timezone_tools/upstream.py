"""
上游 HTTP 客户端

封装 httpx.AsyncClient：统一 User-Agent、超时和错误类型。
每次调用只请求一次，不做重试和缓存。

Copyright (c) 2025 Miyang Tech (Zhuhai Hengqin) Co., Ltd.
MIT License
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, Generic, Iterable, List, Optional, TypeVar

import httpx

logger = logging.getLogger(__name__)

USER_AGENT = "timezone-intel/1.0"
DEFAULT_TIMEOUT_SECONDS = 20.0

T = TypeVar("T")


class UpstreamError(Exception):
    """上游调用失败"""


class UpstreamHTTPError(UpstreamError):
    """上游返回非 2xx 状态码"""

    def __init__(self, status_code: int, url: str = ""):
        super().__init__(f"API error: {status_code}")
        self.status_code = status_code
        self.url = url


class UpstreamUnavailableError(UpstreamError):
    """网络错误，上游不可达"""

    def __init__(self, url: str, reason: str):
        super().__init__(f"API unreachable: {reason}")
        self.url = url


def build_async_client(config: Optional[dict] = None) -> httpx.AsyncClient:
    """按配置创建共享的 AsyncClient"""
    upstream_config = (config or {}).get("upstream", {})
    timeout = upstream_config.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout),
        follow_redirects=True,
        headers={"Accept": "application/json"},
    )


class UpstreamClient:
    """JSON 接口客户端"""

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def get_json(self, url: str, params: Optional[Dict[str, str]] = None) -> Any:
        return await self._request("GET", url, params=params)

    async def post_json(self, url: str, payload: Dict[str, Any]) -> Any:
        return await self._request("POST", url, json=payload)

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        try:
            response = await self.client.request(
                method, url, headers={"User-Agent": USER_AGENT}, **kwargs
            )
        except httpx.RequestError as e:
            logger.warning(f"上游请求失败 {method} {url}: {e}")
            raise UpstreamUnavailableError(url, str(e) or type(e).__name__) from e

        if not response.is_success:
            logger.warning(f"上游返回错误 {method} {url}: {response.status_code}")
            raise UpstreamHTTPError(response.status_code, url)

        return response.json()


# ==================== 并发工具 ====================

@dataclass
class Settled(Generic[T]):
    """单个并发任务的结果：要么有值，要么有错误"""
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def _settle(aw: Awaitable[T]) -> Settled[T]:
    try:
        return Settled(value=await aw)
    except Exception as e:
        return Settled(error=e)


async def gather_settled(awaitables: Iterable[Awaitable[T]]) -> List[Settled[T]]:
    """
    并发执行，容忍部分失败

    每个任务的结果先包装为 Settled 再汇合，汇合本身不会失败。
    返回顺序与输入顺序一致。
    """
    return list(await asyncio.gather(*(_settle(aw) for aw in awaitables)))
