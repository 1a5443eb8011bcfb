from typing import Any

from sqlalchemy import delete, select

from app.models.oauth_credential import OAuthCredential
from app.utils.time_utils import Datetime

from .base import BaseRepository


class OAuthCredentialRepository(BaseRepository[OAuthCredential]):
    model = OAuthCredential

    async def get_by_subject(self, subject_id: str) -> OAuthCredential | None:
        result = await self.session.execute(
            select(OAuthCredential).where(OAuthCredential.subject_id == subject_id)
        )
        return result.scalars().first()

    async def list_all(self) -> list[OAuthCredential]:
        result = await self.session.execute(
            select(OAuthCredential).order_by(OAuthCredential.updated_at.desc())
        )
        return list(result.scalars().all())

    async def latest(self) -> OAuthCredential | None:
        """最近一次更新的凭证（未指定用户时的兜底选择）"""
        result = await self.session.execute(
            select(OAuthCredential)
            .order_by(OAuthCredential.updated_at.desc(), OAuthCredential.created_at.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def upsert(self, values: dict[str, Any]) -> OAuthCredential:
        """按 subject_id 插入或原地更新，并刷新 updated_at"""
        existing = await self.get_by_subject(values["subject_id"])
        if existing is None:
            return await self.create(values)
        payload = {k: v for k, v in values.items() if k != "subject_id"}
        payload["updated_at"] = Datetime.now()
        return await self.update(existing, payload)

    async def replace(self, values: dict[str, Any]) -> OAuthCredential:
        """
        先删后插（同一事务），用于重新授权。

        任一步失败则整体回滚，保证同一 subject 不会出现两行或零行的中间态。
        """
        try:
            await self.session.execute(
                delete(OAuthCredential).where(OAuthCredential.subject_id == values["subject_id"])
            )
            db_obj = OAuthCredential(**values)
            self.session.add(db_obj)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        await self.session.refresh(db_obj)
        return db_obj

    async def delete_by_subject(self, subject_id: str) -> bool:
        result = await self.session.execute(
            delete(OAuthCredential).where(OAuthCredential.subject_id == subject_id)
        )
        await self.session.commit()
        return bool(result.rowcount)
