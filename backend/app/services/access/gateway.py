"""
访问网关：IP 白名单 + 通行令牌

放行规则：
1. 网关未启用 -> 放行
2. 端点声明了 @public_endpoint -> 放行
3. 客户端 IP（原值或规范化后）在白名单中 -> 放行
4. 启用了通行令牌且请求携带的令牌在令牌集合中 -> 放行
5. 其他情况一律拒绝，对外返回统一的 403 响应，不暴露具体原因
"""
from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, TypeVar

from app.services.access.rules import AccessRuleSource

# 依次检查的代理头，取第一个有效值
IP_HEADER_CANDIDATES = (
    "X-Forwarded-For",
    "X-Real-IP",
    "Proxy-Client-IP",
    "WL-Proxy-Client-IP",
    "HTTP_CLIENT_IP",
    "HTTP_X_FORWARDED_FOR",
)

PASS_TOKEN_HEADER = "X-Pass-Token"
PASS_TOKEN_PARAM = "pass_token"
DENY_MESSAGE = "Access denied: Your IP is not whitelisted and token is invalid"

_IPV6_LOOPBACK_FORMS = {"0:0:0:0:0:0:0:1", "::1"}
_BYPASS_ATTR = "__access_gate_bypass__"

F = TypeVar("F", bound=Callable[..., Any])


def public_endpoint(reason: str) -> Callable[[F], F]:
    """标记端点跳过访问网关（例如 OAuth 回调需要被第三方平台访问）"""

    def decorator(func: F) -> F:
        setattr(func, _BYPASS_ATTR, reason or "public")
        return func

    return decorator


def bypass_reason(endpoint: Any) -> str | None:
    return getattr(endpoint, _BYPASS_ATTR, None)


def normalize_ip(ip: str) -> str:
    ip = (ip or "").strip()
    if ip in _IPV6_LOOPBACK_FORMS:
        return "::1"
    return ip


def resolve_client_ip(headers: Mapping[str, str], peer: str | None) -> str:
    """
    获取客户端真实 IP

    headers 需为大小写不敏感的映射（starlette Headers）。
    """
    for name in IP_HEADER_CANDIDATES:
        value = headers.get(name)
        if not value:
            continue
        value = value.strip()
        if not value or value.lower() == "unknown":
            continue
        # 多级代理时取第一个
        first = value.split(",")[0].strip()
        if first:
            return first
    return peer or "unknown"


def extract_pass_token(
    headers: Mapping[str, str],
    query_params: Mapping[str, str],
    form: Mapping[str, str] | None = None,
) -> str | None:
    """依次从 Authorization: Bearer、X-Pass-Token、查询参数、表单参数中提取通行令牌"""
    authorization = headers.get("Authorization") or ""
    if authorization[:7].lower() == "bearer ":
        token = authorization[7:].strip()
        if token:
            return token

    token = (headers.get(PASS_TOKEN_HEADER) or "").strip()
    if token:
        return token

    token = (query_params.get(PASS_TOKEN_PARAM) or "").strip()
    if token:
        return token

    if form is not None:
        token = (form.get(PASS_TOKEN_PARAM) or "").strip()
        if token:
            return token
    return None


class _HashedSetCache:
    """
    由列表派生的查找集合缓存

    以源列表的哈希作为版本号，哈希不变直接复用；变化时重建集合，
    并以 (hash, frozenset) 元组整体替换，读方不会看到半更新状态。
    """

    def __init__(self, project: Callable[[Iterable[str]], frozenset[str]]):
        self._project = project
        self._snapshot: tuple[int, frozenset[str]] | None = None

    def get(self, items: tuple[str, ...]) -> frozenset[str]:
        digest = hash(items)
        snapshot = self._snapshot
        if snapshot is not None and snapshot[0] == digest:
            return snapshot[1]
        values = self._project(items)
        self._snapshot = (digest, values)
        return values


def _project_ips(items: Iterable[str]) -> frozenset[str]:
    values: set[str] = set()
    for item in items:
        item = item.strip()
        if item:
            values.add(item)
            values.add(normalize_ip(item))
    return frozenset(values)


def _project_tokens(items: Iterable[str]) -> frozenset[str]:
    return frozenset(item.strip() for item in items if item and item.strip())


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: str
    client_ip: str


class AccessGateway:
    def __init__(self, rule_source: AccessRuleSource):
        self.rule_source = rule_source
        self._ip_cache = _HashedSetCache(_project_ips)
        self._token_cache = _HashedSetCache(_project_tokens)

    def evaluate(
        self,
        client_ip: str,
        pass_token: str | None = None,
        *,
        bypass: bool = False,
    ) -> AccessDecision:
        rules = self.rule_source.current()
        if not rules.enabled:
            return AccessDecision(True, "gate_disabled", client_ip)
        if bypass:
            return AccessDecision(True, "endpoint_bypass", client_ip)

        allowlist = self._ip_cache.get(rules.ip_allowlist)
        if client_ip in allowlist or normalize_ip(client_ip) in allowlist:
            return AccessDecision(True, "ip_allowlisted", client_ip)

        if rules.pass_token_enabled and pass_token:
            if pass_token in self._token_cache.get(rules.pass_tokens):
                return AccessDecision(True, "pass_token", client_ip)
            return AccessDecision(False, "pass_token_invalid", client_ip)

        return AccessDecision(False, "ip_not_allowlisted", client_ip)
