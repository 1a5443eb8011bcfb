"""
访问网关中间件（纯 ASGI）

- 排除路径（静态资源、接口文档）直接放行，不审计
- 解析真实 IP 与通行令牌，交给 AccessGateway 判定
- 端点通过 @public_endpoint 声明跳过网关
- 拒绝时返回统一的 403 JSON
- 放行的请求若处理中抛出异常或返回 5xx，直接把本次审计记录回写为失败
- 错误转发路径（/error）不单独记录，只用于关联回写同一客户端最近的记录

请求体只读取一次（BufferedRequestBody），审计摘要、表单令牌与下游处理函数共用；
超过审计上限的部分不缓存，直接透传给下游。
"""
from __future__ import annotations

from urllib.parse import parse_qsl

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Match
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.core.container import ServiceContainer
from app.core.logging import logger
from app.services.access.audit import BINARY_CONTENT_TYPES, BODY_METHODS, describe_request
from app.services.access.gateway import (
    DENY_MESSAGE,
    bypass_reason,
    extract_pass_token,
    resolve_client_ip,
)

REQUEST_FAILED_HEADER = "X-Request-Failed"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


class BufferedRequestBody:
    """
    读取请求体并提供可回放的 receive 供下游使用

    累计超过 max_bytes 后停止缓存：已读部分回放给下游，其余消息直接透传。
    """

    def __init__(self, receive: Receive, max_bytes: int | None = None):
        self._receive = receive
        self._max_bytes = max_bytes
        self.body: bytes = b""
        self.read_error = False
        self.overflowed = False
        self._disconnected = False

    async def read(self) -> bytes | None:
        chunks: list[bytes] = []
        size = 0
        try:
            while True:
                message = await self._receive()
                if message["type"] == "http.disconnect":
                    self._disconnected = True
                    break
                chunk = message.get("body", b"")
                chunks.append(chunk)
                size += len(chunk)
                if not message.get("more_body", False):
                    break
                if self._max_bytes is not None and size > self._max_bytes:
                    self.overflowed = True
                    break
        except Exception as exc:
            logger.warning(f"access_gate_body_read_failed: {exc}")
            self.read_error = True
            return None
        self.body = b"".join(chunks)
        return self.body

    def replay(self) -> Receive:
        delivered = False

        async def receive() -> Message:
            nonlocal delivered
            if not delivered:
                delivered = True
                return {"type": "http.request", "body": self.body, "more_body": self.overflowed}
            if self._disconnected:
                return {"type": "http.disconnect"}
            return await self._receive()

        return receive


def _content_length(request: Request) -> int | None:
    raw = request.headers.get("content-length")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _match_endpoint(routes, scope: Scope):
    for route in routes:
        match, child_scope = route.matches(scope)
        if match != Match.FULL:
            continue
        endpoint = getattr(route, "endpoint", None)
        if endpoint is not None:
            return endpoint
        # 子路由器 / Mount：用匹配得到的子 scope 继续向下找
        children = getattr(route, "routes", None)
        if children:
            found = _match_endpoint(children, {**scope, **child_scope})
            if found is not None:
                return found
    return None


def _find_endpoint(scope: Scope):
    router = getattr(scope.get("app"), "router", None)
    return _match_endpoint(getattr(router, "routes", []), scope)


class AccessGateMiddleware:
    def __init__(self, app: ASGIApp, container: ServiceContainer):
        self.app = app
        self.container = container
        settings = container.settings
        self.excluded_prefixes = tuple(settings.ACCESS_GATE_EXCLUDED_PATHS)
        self.body_max_bytes = settings.ACCESS_AUDIT_BODY_MAX_BYTES
        self.body_preview_chars = settings.ACCESS_AUDIT_BODY_PREVIEW_CHARS
        self.trusted_proxies = frozenset(settings.ACCESS_GATE_TRUSTED_PROXIES)

    def _is_excluded(self, path: str) -> bool:
        return any(path.startswith(prefix) for prefix in self.excluded_prefixes)

    def _should_buffer(self, request: Request, content_length: int | None) -> bool:
        if request.method.upper() not in BODY_METHODS:
            return False
        content_type = (request.headers.get("content-type") or "").lower()
        if any(content_type.startswith(prefix) for prefix in BINARY_CONTENT_TYPES):
            return False
        return content_length is None or content_length <= self.body_max_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        path = scope.get("path", "")
        gateway = self.container.gateway
        if self._is_excluded(path) or not gateway.rule_source.current().enabled:
            await self.app(scope, receive, send)
            return

        auditor = self.container.auditor
        request = Request(scope)
        peer = request.client.host if request.client else None
        client_ip = resolve_client_ip(request.headers, peer)
        scope.setdefault("state", {})["client_ip"] = client_ip

        content_length = _content_length(request)
        buffered: BufferedRequestBody | None = None
        body: bytes | None = b""
        if self._should_buffer(request, content_length):
            buffered = BufferedRequestBody(receive, self.body_max_bytes)
            body = await buffered.read()
            receive = buffered.replay()

        form = None
        content_type = request.headers.get("content-type")
        overflowed = buffered is not None and buffered.overflowed
        if body and not overflowed and (content_type or "").lower().startswith(FORM_CONTENT_TYPE):
            form = dict(parse_qsl(body.decode("utf-8", errors="replace"), keep_blank_values=True))

        pass_token = extract_pass_token(request.headers, request.query_params, form)
        endpoint = _find_endpoint(scope)
        reason = bypass_reason(endpoint) if endpoint is not None else None
        decision = gateway.evaluate(client_ip, pass_token, bypass=reason is not None)

        summary = describe_request(
            request.method,
            path,
            scope.get("query_string", b"").decode("latin-1"),
            content_type=content_type,
            content_length=content_length,
            body=body,
            max_bytes=self.body_max_bytes,
            preview_chars=self.body_preview_chars,
        )

        if auditor.is_error_dispatch(path):
            # 外部可伪造该请求头，只接受受信代理转发过来的
            triggered = bool(scope["state"].get("request_failed")) or (
                peer in self.trusted_proxies
                and request.headers.get(REQUEST_FAILED_HEADER, "").lower() in {"1", "true", "yes"}
            )
            await auditor.correlate_error_dispatch(client_ip, triggered)
            record_id = None
        else:
            record_id = await auditor.record(client_ip, path, summary, decision.allowed)

        if not decision.allowed:
            logger.warning(
                f"access_denied ip={client_ip} method={request.method} path={path} reason={decision.reason}"
            )
            response = JSONResponse({"error": DENY_MESSAGE}, status_code=403)
            await response(scope, receive, send)
            return

        if reason is not None:
            logger.debug(f"access_public_endpoint ip={client_ip} path={path} reason={reason}")
        else:
            logger.debug(f"access_allowed ip={client_ip} path={path} reason={decision.reason}")

        status_holder: dict[str, int] = {}

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                status_holder["status"] = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception:
            await auditor.mark_failed(client_ip, record_id)
            raise

        if status_holder.get("status", 200) >= 500:
            await auditor.mark_failed(client_ip, record_id)
