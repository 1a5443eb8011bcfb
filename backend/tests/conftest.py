"""
测试全局配置

- 禁用真实 Redis / Celery 连接，需要 Redis 的用例使用内存 DummyRedis
- 每个用例使用 tmp_path 下独立的 SQLite (aiosqlite) 数据库
- 上游 X API 通过 httpx.MockTransport 模拟
"""
from __future__ import annotations

import os
import sys
from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs

# 确保 backend/ 在 sys.path，便于导入 app.* 与 main
BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

# 测试环境不读取外部 Redis/Celery，日志不使用多进程队列
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("CELERY_BROKER_URL", "")
os.environ.setdefault("CELERY_RESULT_BACKEND", "")
os.environ.setdefault("LOG_ASYNC", "false")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import Settings
from app.core.container import ServiceContainer, build_container
from app.core.database import build_session_factory
from app.models import Base

TOKEN_ENDPOINT = "https://api.x.test/2/oauth2/token"
USERINFO_ENDPOINT = "https://api.x.test/2/users/me"
AUTHORIZE_ENDPOINT = "https://x.test/i/oauth2/authorize"


class DummyRedis:
    """
    轻量内存 Redis 替身，覆盖 CacheService 使用到的方法：
    get/set(ex, nx)/getdel/exists/delete/keys
    """

    def __init__(self):
        self.store: dict[str, Any] = {}
        self.ttl: dict[str, Any] = {}

    async def get(self, key: str):
        return self.store.get(key)

    async def set(self, key: str, value, ex=None, nx: bool | None = None):
        if nx and key in self.store:
            return False
        self.store[key] = value
        self.ttl[key] = ex
        return True

    async def getdel(self, key: str):
        self.ttl.pop(key, None)
        return self.store.pop(key, None)

    async def exists(self, *keys):
        return sum(1 for k in keys if k in self.store)

    async def delete(self, *keys):
        removed = 0
        for k in keys:
            removed += 1 if self.store.pop(k, None) is not None else 0
            self.ttl.pop(k, None)
        return removed

    async def keys(self, pattern: str):
        if pattern.endswith("*"):
            prefix = pattern[:-1]
            return [k for k in self.store if k.startswith(prefix)]
        return [k for k in self.store if k == pattern]

    async def aclose(self):
        return None


class FakeXProvider:
    """
    模拟 X 授权服务器与用户信息接口

    - token_responses: 依次返回的 token 接口响应 (status, json)
    - requests: 记录收到的所有请求，便于断言
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.token_responses: list[tuple[int, Any]] = []
        self.profile = {
            "data": {
                "id": "1001",
                "username": "relay_bot",
                "name": "Relay Bot",
                "profile_image_url": "https://pbs.x.test/avatar.png",
            }
        }
        self.profile_status = 200

    def queue_token(self, status_code: int = 200, **payload: Any) -> None:
        body = {
            "token_type": "bearer",
            "expires_in": 7200,
            "access_token": "access-token-0001",
            "refresh_token": "refresh-token-0001",
            "scope": "tweet.read tweet.write users.read offline.access",
        }
        body.update(payload)
        self.token_responses.append((status_code, body))

    def form_of(self, request: httpx.Request) -> dict[str, str]:
        return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}

    def token_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == TOKEN_ENDPOINT]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if str(request.url) == TOKEN_ENDPOINT:
            if not self.token_responses:
                return httpx.Response(400, json={"error": "invalid_request"})
            status_code, body = self.token_responses.pop(0)
            return httpx.Response(status_code, json=body)
        if str(request.url).split("?")[0] == USERINFO_ENDPOINT:
            return httpx.Response(self.profile_status, json=self.profile)
        return httpx.Response(404, json={"error": "not_found"})


@pytest.fixture
def dummy_redis() -> DummyRedis:
    return DummyRedis()


@pytest.fixture
def fake_provider() -> FakeXProvider:
    return FakeXProvider()


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., Settings]:
    def _make(**overrides: Any) -> Settings:
        values: dict[str, Any] = {
            "DATABASE_URL": f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
            "REDIS_URL": "",
            "LOG_ASYNC": False,
            "X_OAUTH_CLIENT_ID": "test-client-id",
            "X_OAUTH_CLIENT_SECRET": "test-client-secret",
            "X_OAUTH_REDIRECT_URI": "http://testserver/api/v1/oauth/x/callback",
            "X_OAUTH_AUTHORIZE_ENDPOINT": AUTHORIZE_ENDPOINT,
            "X_OAUTH_TOKEN_ENDPOINT": TOKEN_ENDPOINT,
            "X_OAUTH_USERINFO_ENDPOINT": USERINFO_ENDPOINT,
            "CREDENTIAL_REFRESH_MODE": "disabled",
            "ACCESS_GATE_ENABLED": False,
            "ACCESS_GATE_IP_ALLOWLIST": ["127.0.0.1"],
            "ACCESS_GATE_RULES_FILE": None,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def settings(make_settings) -> Settings:
    return make_settings()


@pytest_asyncio.fixture
async def engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(settings.DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def build_test_container(
    engine: AsyncEngine, fake_provider: FakeXProvider
) -> AsyncGenerator[Callable[[Settings], ServiceContainer], None]:
    """按给定配置装配容器，共享同一个测试数据库与模拟上游"""
    http_clients: list[httpx.AsyncClient] = []

    def _build(settings: Settings) -> ServiceContainer:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake_provider.handler))
        http_clients.append(http_client)
        return build_container(settings, engine=engine, http_client=http_client)

    yield _build
    for client in http_clients:
        await client.aclose()


@pytest.fixture
def container(settings: Settings, build_test_container) -> ServiceContainer:
    return build_test_container(settings)


@pytest.fixture
def build_client():
    """创建指向给定 app 的 AsyncClient，可指定客户端 IP"""

    def _build(app, client_ip: str = "127.0.0.1") -> AsyncClient:
        transport = ASGITransport(app=app, client=(client_ip, 50000))
        return AsyncClient(transport=transport, base_url="http://testserver")

    return _build
