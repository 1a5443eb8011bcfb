"""
OAuth 凭证生命周期管理

职责：
- 持久化凭证（按 subject 唯一，重新授权时先删后插）
- 判断访问令牌是否仍在安全窗口内（默认距过期 30 分钟以上）
- 必要时使用 refresh_token 向授权服务器刷新，并回写数据库
- 周期性批量刷新即将过期的凭证

同一 subject 的刷新通过进程内 KeyedLock 串行化：拿到锁后重新读取并判断，
并发调用方复用第一次刷新的结果，不会重复请求上游（refresh_token 可能是一次性的）。
"""
from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.keyed_lock import KeyedLock
from app.core.logging import logger
from app.models.oauth_credential import OAuthCredential
from app.repositories.oauth_credential_repository import OAuthCredentialRepository
from app.utils.security import mask_secret
from app.utils.time_utils import Datetime

if TYPE_CHECKING:
    from app.services.oauth.x_client import TokenGrant

DEFAULT_REFRESH_THRESHOLD_SECONDS = 30 * 60


class CredentialError(Exception):
    """凭证相关错误基类"""


class CredentialNotFoundError(CredentialError):
    def __init__(self, subject_id: str | None):
        self.subject_id = subject_id
        super().__init__(f"未找到用户 {subject_id} 的凭证，请先完成授权")


class CredentialRefreshError(CredentialError):
    def __init__(self, subject_id: str, reason: str):
        self.subject_id = subject_id
        self.reason = reason
        super().__init__(f"刷新用户 {subject_id} 的访问令牌失败: {reason}")


class TokenRefresher(Protocol):
    async def refresh_access_token(self, refresh_token: str) -> TokenGrant: ...


@dataclass
class RefreshSummary:
    refreshed: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def total(self) -> int:
        return self.refreshed + self.failed + self.skipped


class CredentialService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        refresher: TokenRefresher,
        *,
        refresh_threshold_seconds: float = DEFAULT_REFRESH_THRESHOLD_SECONDS,
        default_subject_id: str | None = None,
        clock: Callable[[], datetime] = Datetime.now,
    ):
        self._session_factory = session_factory
        self._refresher = refresher
        self.refresh_threshold = timedelta(seconds=refresh_threshold_seconds)
        self._default_subject_id = default_subject_id
        self._clock = clock
        self._locks = KeyedLock()
        self._started_at = time.monotonic()

    # ---- 持久化 ----

    async def save(
        self,
        *,
        subject_id: str,
        access_token: str,
        refresh_token: str | None = None,
        scope: str | None = None,
        token_type: str = "bearer",
        expires_at: datetime | None = None,
    ) -> OAuthCredential:
        """按 subject 插入或更新凭证"""
        async with self._session_factory() as session:
            credential = await OAuthCredentialRepository(session).upsert(
                {
                    "subject_id": subject_id,
                    "access_token": access_token,
                    "refresh_token": refresh_token,
                    "scope": scope,
                    "token_type": token_type,
                    "expires_at": expires_at,
                }
            )
        logger.info(
            f"credential_saved subject={subject_id} expires_at={expires_at} "
            f"access_token={mask_secret(access_token)}"
        )
        return credential

    async def replace(
        self,
        *,
        subject_id: str,
        access_token: str,
        refresh_token: str | None = None,
        scope: str | None = None,
        token_type: str = "bearer",
        expires_at: datetime | None = None,
    ) -> OAuthCredential:
        """重新授权：删除旧凭证并写入新凭证（同一事务）"""
        async with self._session_factory() as session:
            credential = await OAuthCredentialRepository(session).replace(
                {
                    "subject_id": subject_id,
                    "access_token": access_token,
                    "refresh_token": refresh_token,
                    "scope": scope,
                    "token_type": token_type,
                    "expires_at": expires_at,
                }
            )
        logger.info(f"credential_replaced subject={subject_id} expires_at={expires_at}")
        return credential

    async def get_by_subject(self, subject_id: str) -> OAuthCredential | None:
        async with self._session_factory() as session:
            return await OAuthCredentialRepository(session).get_by_subject(subject_id)

    async def list_credentials(self) -> list[OAuthCredential]:
        async with self._session_factory() as session:
            return await OAuthCredentialRepository(session).list_all()

    async def delete_by_subject(self, subject_id: str) -> bool:
        """删除凭证；不存在时返回 False，不抛异常"""
        async with self._session_factory() as session:
            deleted = await OAuthCredentialRepository(session).delete_by_subject(subject_id)
        logger.info(f"credential_deleted subject={subject_id} existed={deleted}")
        return deleted

    async def resolve_subject_id(self, subject_id: str | None = None) -> str:
        """
        确定要使用的 subject：显式参数 > 配置的默认用户 > 最近更新的凭证
        """
        if subject_id:
            return subject_id
        if self._default_subject_id:
            return self._default_subject_id
        async with self._session_factory() as session:
            latest = await OAuthCredentialRepository(session).latest()
        if latest is None:
            raise CredentialNotFoundError(None)
        return latest.subject_id

    # ---- 有效性判断与刷新 ----

    def needs_refresh(self, credential: OAuthCredential, now: datetime | None = None) -> bool:
        """expires_at 为空视为不过期；否则剩余时间不超过阈值即需要刷新"""
        if credential.expires_at is None:
            return False
        now = now or self._clock()
        return Datetime.ensure_utc(credential.expires_at) <= now + self.refresh_threshold

    async def get_valid_access_token(self, subject_id: str) -> str:
        credential = await self.get_by_subject(subject_id)
        if credential is None:
            raise CredentialNotFoundError(subject_id)

        if not (credential.refresh_token or "").strip():
            logger.warning(
                f"credential_without_refresh_token subject={subject_id}, returning stored access token"
            )
            return credential.access_token

        if not self.needs_refresh(credential):
            return credential.access_token

        credential = await self._refresh_serialized(subject_id, force=False)
        return credential.access_token

    async def refresh(self, subject_id: str) -> OAuthCredential:
        """忽略安全窗口，强制刷新一次"""
        return await self._refresh_serialized(subject_id, force=True)

    async def _refresh_serialized(self, subject_id: str, *, force: bool) -> OAuthCredential:
        async with self._locks.hold(subject_id):
            # 锁内重新读取：等待期间可能已有其他协程完成了刷新
            current = await self.get_by_subject(subject_id)
            if current is None:
                raise CredentialNotFoundError(subject_id)

            refresh_token = (current.refresh_token or "").strip()
            if not refresh_token:
                if force:
                    raise CredentialRefreshError(subject_id, "缺少 refresh_token")
                logger.warning(f"credential_without_refresh_token subject={subject_id}")
                return current

            if not force and not self.needs_refresh(current):
                logger.debug(f"credential_refresh_skipped subject={subject_id}, already fresh")
                return current

            logger.info(
                f"credential_refreshing subject={subject_id} expires_at={current.expires_at}"
            )
            try:
                grant = await self._refresher.refresh_access_token(refresh_token)
            except Exception as exc:
                logger.error(f"credential_refresh_failed subject={subject_id}: {exc}")
                raise CredentialRefreshError(subject_id, str(exc)) from exc

            if not grant.access_token:
                raise CredentialRefreshError(subject_id, "授权服务器未返回 access_token")

            expires_at = current.expires_at
            if grant.expires_in and grant.expires_in > 0:
                expires_at = Datetime.after(grant.expires_in, self._clock())

            return await self.save(
                subject_id=subject_id,
                access_token=grant.access_token,
                # 上游未轮换 refresh_token 时沿用旧值
                refresh_token=grant.refresh_token or current.refresh_token,
                scope=grant.scope or current.scope,
                token_type=grant.token_type or current.token_type,
                expires_at=expires_at,
            )

    async def refresh_expiring_credentials(self) -> RefreshSummary:
        """
        批量刷新即将过期的凭证

        单个凭证失败只记录日志并计数，不影响其余凭证。
        """
        summary = RefreshSummary()
        credentials = await self.list_credentials()
        now = self._clock()
        logger.info(f"credential_sweep_started count={len(credentials)}")

        for credential in credentials:
            logger.debug(
                f"credential_inventory subject={credential.subject_id} "
                f"access_token={mask_secret(credential.access_token)} "
                f"refresh_token={mask_secret(credential.refresh_token)} "
                f"expires_at={credential.expires_at}"
            )
            if not (credential.refresh_token or "").strip() or not self.needs_refresh(credential, now):
                summary.skipped += 1
                continue
            try:
                await self.get_valid_access_token(credential.subject_id)
                summary.refreshed += 1
            except CredentialError as exc:
                summary.failed += 1
                logger.error(f"credential_sweep_item_failed subject={credential.subject_id}: {exc}")
            except Exception:
                summary.failed += 1
                logger.exception(f"credential_sweep_item_failed subject={credential.subject_id}")

        uptime = time.monotonic() - self._started_at
        logger.info(
            f"credential_sweep_finished refreshed={summary.refreshed} failed={summary.failed} "
            f"skipped={summary.skipped} uptime={uptime:.0f}s"
        )
        return summary
