"""
访问审计

每个经过网关的请求写入一条 access_log，并按客户端 IP 缓存最近一条记录。
请求处理失败时有两条回写路径：
- 直接路径：网关中间件捕获到处理异常（或 5xx 响应），立即把该请求自己的记录标记为失败
- 关联路径：稍后出现同一客户端的错误转发请求（/error）时，若最近一条记录在
  关联窗口内（默认 10 秒），将其回写为失败；无论是否命中都移除缓存条目

审计为尽力而为：持久化失败只记日志，不影响放行结果。
"""
from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.logging import logger
from app.repositories.access_log_repository import AccessLogRepository

BODY_METHODS = {"POST", "PUT", "PATCH"}
BINARY_CONTENT_TYPES = ("multipart/", "application/octet-stream")
SUMMARY_MAX_LENGTH = 2048
# 最近记录缓存的上限，超过后清理窗口外的条目
RECENT_ENTRIES_SOFT_LIMIT = 10_000


def summarize_body(
    content_type: str | None,
    content_length: int | None,
    body: bytes | None,
    *,
    max_bytes: int = 2048,
    preview_chars: int = 1024,
) -> str:
    """body 为 None 表示读取失败"""
    content_type = (content_type or "").lower()
    if any(content_type.startswith(prefix) for prefix in BINARY_CONTENT_TYPES):
        return "[BINARY_DATA]"
    if content_length is not None and content_length > max_bytes:
        return f"[LARGE_BODY:{content_length}bytes]"
    if body is None:
        return "[READ_ERROR]"
    if len(body) > max_bytes:
        return f"[LARGE_BODY:{len(body)}bytes]"

    text = body.decode("utf-8", errors="replace")
    if len(text) > preview_chars:
        return f"{text[:preview_chars]}...[TRUNCATED]"
    return text


def describe_request(
    method: str,
    path: str,
    query: str = "",
    *,
    content_type: str | None = None,
    content_length: int | None = None,
    body: bytes | None = b"",
    max_bytes: int = 2048,
    preview_chars: int = 1024,
) -> str:
    """生成请求摘要：METHOD path?query | Body: ..."""
    method = method.upper()
    summary = f"{method} {path}"
    if query:
        summary = f"{summary}?{query}"

    if method in BODY_METHODS:
        body_summary = summarize_body(
            content_type,
            content_length,
            body,
            max_bytes=max_bytes,
            preview_chars=preview_chars,
        )
        if body_summary:
            summary = f"{summary} | Body: {body_summary}"

    return summary[:SUMMARY_MAX_LENGTH]


@dataclass
class AuditEntry:
    request_summary: str
    timestamp: float
    record_id: uuid.UUID


class AccessAuditor:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        enabled: bool = True,
        correlation_window_seconds: float = 10.0,
        noise_paths: tuple[str, ...] = ("/favicon.ico",),
        error_path: str = "/error",
        clock: Callable[[], float] = time.monotonic,
    ):
        self._session_factory = session_factory
        self.enabled = enabled
        self.correlation_window = correlation_window_seconds
        self._noise_paths = frozenset(noise_paths)
        self.error_path = error_path
        self._clock = clock
        self._recent: dict[str, AuditEntry] = {}

    def is_noise(self, path: str) -> bool:
        return path in self._noise_paths

    def is_error_dispatch(self, path: str) -> bool:
        return bool(self.error_path) and path == self.error_path

    def recent_entry(self, client_ip: str) -> AuditEntry | None:
        return self._recent.get(client_ip)

    async def record(
        self,
        client_ip: str,
        path: str,
        request_summary: str,
        passed: bool,
    ) -> uuid.UUID | None:
        """写入审计记录，返回记录 ID；被跳过或写入失败时返回 None"""
        if not self.enabled or self.is_noise(path) or self.is_error_dispatch(path):
            return None

        try:
            async with self._session_factory() as session:
                entry = await AccessLogRepository(session).create_entry(
                    client_ip=client_ip,
                    request_summary=request_summary,
                    passed=passed,
                )
        except Exception as exc:
            logger.error(f"access_audit_record_failed ip={client_ip}: {exc}")
            return None

        self._remember(client_ip, AuditEntry(request_summary, self._clock(), entry.id))
        return entry.id

    async def correlate_error_dispatch(self, client_ip: str, exception_triggered: bool) -> bool:
        """
        处理错误转发请求：仅当由异常触发时才关联；
        命中窗口内的最近记录则回写为失败。返回是否发生了回写。
        """
        if not exception_triggered:
            return False

        entry = self._recent.pop(client_ip, None)
        if entry is None:
            return False

        elapsed = self._clock() - entry.timestamp
        if elapsed >= self.correlation_window:
            logger.debug(f"access_audit_correlation_expired ip={client_ip} elapsed={elapsed:.1f}s")
            return False

        return await self._persist_failed(client_ip, entry.record_id)

    async def mark_failed(self, client_ip: str, record_id: uuid.UUID | None) -> bool:
        """处理异常时直接回写当前请求的记录"""
        if record_id is None:
            return False
        entry = self._recent.get(client_ip)
        if entry is not None and entry.record_id == record_id:
            self._recent.pop(client_ip, None)
        return await self._persist_failed(client_ip, record_id)

    async def _persist_failed(self, client_ip: str, record_id: uuid.UUID) -> bool:
        try:
            async with self._session_factory() as session:
                updated = await AccessLogRepository(session).mark_failed(record_id)
        except Exception as exc:
            logger.error(f"access_audit_mark_failed_error ip={client_ip} record={record_id}: {exc}")
            return False
        if updated:
            logger.info(f"access_audit_marked_failed ip={client_ip} record={record_id}")
        return updated

    def _remember(self, client_ip: str, entry: AuditEntry) -> None:
        self._recent[client_ip] = entry
        if len(self._recent) > RECENT_ENTRIES_SOFT_LIMIT:
            cutoff = self._clock() - self.correlation_window
            for ip in [ip for ip, e in self._recent.items() if e.timestamp < cutoff]:
                del self._recent[ip]
