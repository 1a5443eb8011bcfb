from __future__ import annotations

from typing import Any

import httpx


def create_async_http_client(
    *,
    timeout: float | httpx.Timeout | None = None,
    proxy: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    **client_kwargs: Any,
) -> httpx.AsyncClient:
    """
    创建访问上游 API 使用的 httpx.AsyncClient。

    - timeout 必须显式给出，避免刷新令牌时无限期阻塞
    - proxy 为空时直连
    - transport 便于测试注入 httpx.MockTransport
    """
    if proxy:
        client_kwargs["proxy"] = proxy

    return httpx.AsyncClient(
        timeout=timeout,
        transport=transport,
        **client_kwargs,
    )
