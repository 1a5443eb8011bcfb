from datetime import datetime

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UTCDateTime, UUIDPrimaryKeyMixin


class OAuthCredential(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """
    OAuth 凭证 (X 平台授权后获得的 access/refresh token)

    每个 subject（X 用户 ID）至多一行：重新授权时先删后插，刷新时原地更新。
    """
    __tablename__ = "oauth_credential"

    subject_id: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, index=True, comment="X 用户 ID"
    )
    access_token: Mapped[str] = mapped_column(Text, nullable=False, comment="访问令牌")
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True, comment="刷新令牌，可能为空")
    scope: Mapped[str | None] = mapped_column(String(512), nullable=True, comment="授权范围，空格分隔")
    token_type: Mapped[str] = mapped_column(
        String(32), nullable=False, default="bearer", server_default="bearer", comment="令牌类型"
    )
    expires_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True, comment="访问令牌过期时间，为空表示不过期"
    )

    def __repr__(self) -> str:
        return (
            f"<OAuthCredential(subject_id={self.subject_id}, expires_at={self.expires_at}, "
            f"has_refresh_token={bool(self.refresh_token)})>"
        )
