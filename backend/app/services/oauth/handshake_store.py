"""
OAuth 授权握手状态存储

授权开始时生成一次性 state 令牌并与 PKCE code_verifier 绑定，
回调时通过 consume() 原子取出，保证：
- 每个 state 最多被成功消费一次（防重放）
- 超过 TTL 的 state 一律视为无效（防 CSRF 延迟利用）
- 过期条目由周期任务 purge_expired() 清理，或在被访问时惰性删除

提供两种实现：
- MemoryHandshakeStore：进程内字典 + 线程锁（默认，单实例部署）
- RedisHandshakeStore：基于 Redis GETDEL，多实例部署时共享状态
"""
from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from app.core.cache import CacheService
from app.core.logging import logger
from app.utils.security import generate_state_token

HANDSHAKE_KEY_PREFIX = "oauth:handshake:"


class HandshakeStore(Protocol):
    async def start(self, verifier: str, ttl_seconds: float) -> str: ...

    async def consume(self, token: str) -> str | None: ...

    async def exists(self, token: str) -> bool: ...

    async def remove(self, token: str) -> None: ...

    async def purge_expired(self) -> int: ...

    async def size(self) -> int: ...


@dataclass(frozen=True)
class HandshakeEntry:
    pkce_verifier: str
    expires_at: float

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


class MemoryHandshakeStore:
    """进程内握手状态存储，所有读写都在同一把锁内完成"""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: dict[str, HandshakeEntry] = {}
        self._lock = threading.Lock()
        self._clock = clock

    async def start(self, verifier: str, ttl_seconds: float) -> str:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        token = generate_state_token()
        entry = HandshakeEntry(pkce_verifier=verifier, expires_at=self._clock() + ttl_seconds)
        with self._lock:
            self._entries[token] = entry
        logger.debug(f"oauth_handshake_started ttl={ttl_seconds}s")
        return token

    async def consume(self, token: str) -> str | None:
        if not token:
            return None
        with self._lock:
            entry = self._entries.pop(token, None)
        if entry is None:
            return None
        if entry.expired(self._clock()):
            logger.info("oauth_handshake_expired_on_consume")
            return None
        return entry.pkce_verifier

    async def exists(self, token: str) -> bool:
        if not token:
            return False
        with self._lock:
            entry = self._entries.get(token)
            if entry is None:
                return False
            if entry.expired(self._clock()):
                # 仅删除同一个已过期条目，避免误删并发写入的新条目
                if self._entries.get(token) is entry:
                    del self._entries[token]
                return False
            return True

    async def remove(self, token: str) -> None:
        with self._lock:
            self._entries.pop(token, None)

    async def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [token for token, entry in self._entries.items() if entry.expired(now)]
            for token in expired:
                del self._entries[token]
        if expired:
            logger.info(f"oauth_handshake_purged count={len(expired)}")
        return len(expired)

    async def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RedisHandshakeStore:
    """基于 Redis 的握手状态存储，过期由 Redis TTL 负责"""

    def __init__(self, cache: CacheService) -> None:
        self._cache = cache

    @staticmethod
    def _key(token: str) -> str:
        return f"{HANDSHAKE_KEY_PREFIX}{token}"

    async def start(self, verifier: str, ttl_seconds: float) -> str:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        token = generate_state_token()
        stored = await self._cache.set(
            self._key(token),
            {"pkce_verifier": verifier},
            ttl=max(1, int(ttl_seconds)),
            nx=True,
        )
        if not stored:
            raise RuntimeError("failed to persist oauth handshake state")
        return token

    async def consume(self, token: str) -> str | None:
        if not token:
            return None
        payload = await self._cache.pop(self._key(token))
        if not isinstance(payload, dict):
            return None
        verifier = payload.get("pkce_verifier")
        return verifier if isinstance(verifier, str) else None

    async def exists(self, token: str) -> bool:
        if not token:
            return False
        return await self._cache.exists(self._key(token))

    async def remove(self, token: str) -> None:
        await self._cache.delete(self._key(token))

    async def purge_expired(self) -> int:
        return 0

    async def size(self) -> int:
        return await self._cache.count_prefix(HANDSHAKE_KEY_PREFIX)
