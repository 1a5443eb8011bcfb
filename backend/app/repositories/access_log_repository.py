from uuid import UUID

from sqlalchemy import and_, select, update

from app.models.access_log import AccessLog

from .base import BaseRepository


class AccessLogRepository(BaseRepository[AccessLog]):
    model = AccessLog

    async def create_entry(self, *, client_ip: str, request_summary: str, passed: bool) -> AccessLog:
        return await self.create(
            {
                "client_ip": client_ip,
                "request_summary": request_summary,
                "passed": passed,
            }
        )

    async def mark_failed(self, record_id: UUID) -> bool:
        """将指定记录回写为失败，记录不存在时返回 False"""
        result = await self.session.execute(
            update(AccessLog).where(AccessLog.id == record_id).values(passed=False)
        )
        await self.session.commit()
        return bool(result.rowcount)

    def build_query(
        self,
        *,
        client_ip: str | None = None,
        passed: bool | None = None,
    ):
        """
        构造审计日志的基础查询，按 created_at/uuid 倒序，便于游标分页。
        """
        conditions = []
        if client_ip:
            conditions.append(AccessLog.client_ip == client_ip)
        if passed is not None:
            conditions.append(AccessLog.passed == passed)

        stmt = select(AccessLog)
        if conditions:
            stmt = stmt.where(and_(*conditions))

        return stmt.order_by(AccessLog.created_at.desc(), AccessLog.id.desc())
