"""
进程级服务装配

由 main.create_app / Celery 任务根据 Settings 构建一次，挂到 app.state.container，
路由通过 app.deps.services 中的依赖获取，组件之间只通过构造参数传递配置。
"""
from __future__ import annotations

from dataclasses import dataclass, field

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.core.cache import CacheService
from app.core.config import Settings
from app.core.database import build_engine, build_session_factory
from app.core.http_client import create_async_http_client
from app.core.logging import logger
from app.core.scheduler import PeriodicJob
from app.services.access.audit import AccessAuditor
from app.services.access.gateway import AccessGateway
from app.services.access.rules import AccessRuleSource
from app.services.credentials.credential_service import CredentialService
from app.services.oauth.authorization_service import AuthorizationService
from app.services.oauth.handshake_store import (
    HandshakeStore,
    MemoryHandshakeStore,
    RedisHandshakeStore,
)
from app.services.oauth.x_client import XOAuthClient


@dataclass
class ServiceContainer:
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    cache: CacheService
    http_client: httpx.AsyncClient
    handshakes: HandshakeStore
    x_client: XOAuthClient
    credentials: CredentialService
    authorization: AuthorizationService
    access_rules: AccessRuleSource
    gateway: AccessGateway
    auditor: AccessAuditor
    jobs: list[PeriodicJob] = field(default_factory=list)

    async def start(self) -> None:
        self.cache.init()
        if self.settings.OAUTH_HANDSHAKE_STORE == "redis" and not self.cache.enabled:
            logger.warning("OAUTH_HANDSHAKE_STORE=redis but Redis is unavailable")
        self.jobs = self._build_jobs()
        for job in self.jobs:
            job.start()

    async def close(self) -> None:
        for job in self.jobs:
            await job.stop()
        self.jobs = []
        await self.http_client.aclose()
        await self.cache.close()
        await self.engine.dispose()

    def _build_jobs(self) -> list[PeriodicJob]:
        settings = self.settings
        jobs = [
            PeriodicJob(
                "oauth-handshake-sweep",
                self.handshakes.purge_expired,
                interval=settings.OAUTH_HANDSHAKE_SWEEP_INTERVAL_SECONDS,
                initial_delay=settings.OAUTH_HANDSHAKE_SWEEP_INTERVAL_SECONDS,
            )
        ]
        if settings.CREDENTIAL_REFRESH_MODE == "inprocess":
            jobs.append(
                PeriodicJob(
                    "credential-refresh",
                    self.credentials.refresh_expiring_credentials,
                    interval=settings.CREDENTIAL_REFRESH_INTERVAL_SECONDS,
                    initial_delay=settings.CREDENTIAL_REFRESH_INITIAL_DELAY_SECONDS,
                )
            )
        return jobs


def build_container(
    settings: Settings,
    *,
    engine: AsyncEngine | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> ServiceContainer:
    engine = engine or build_engine(settings)
    session_factory = build_session_factory(engine)
    cache = CacheService(
        url=settings.REDIS_URL,
        prefix=settings.CACHE_PREFIX,
        encoding=settings.REDIS_ENCODING,
    )
    http_client = http_client or create_async_http_client(
        timeout=settings.X_OAUTH_HTTP_TIMEOUT_SECONDS,
        proxy=settings.UPSTREAM_PROXY_URL,
    )

    handshakes: HandshakeStore
    if settings.OAUTH_HANDSHAKE_STORE == "redis":
        handshakes = RedisHandshakeStore(cache)
    else:
        handshakes = MemoryHandshakeStore()

    x_client = XOAuthClient(settings, http_client)
    credentials = CredentialService(
        session_factory,
        x_client,
        refresh_threshold_seconds=settings.CREDENTIAL_REFRESH_THRESHOLD_SECONDS,
        default_subject_id=settings.DEFAULT_SUBJECT_ID,
    )
    authorization = AuthorizationService(
        client=x_client,
        handshakes=handshakes,
        credentials=credentials,
        handshake_ttl_seconds=settings.OAUTH_HANDSHAKE_TTL_SECONDS,
    )
    access_rules = AccessRuleSource.from_settings(settings)
    auditor = AccessAuditor(
        session_factory,
        enabled=settings.ACCESS_AUDIT_ENABLED,
        correlation_window_seconds=settings.ACCESS_AUDIT_CORRELATION_WINDOW_SECONDS,
        noise_paths=tuple(settings.ACCESS_GATE_NOISE_PATHS),
        error_path=settings.ACCESS_GATE_ERROR_PATH,
    )

    return ServiceContainer(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        cache=cache,
        http_client=http_client,
        handshakes=handshakes,
        x_client=x_client,
        credentials=credentials,
        authorization=authorization,
        access_rules=access_rules,
        gateway=AccessGateway(access_rules),
        auditor=auditor,
    )
