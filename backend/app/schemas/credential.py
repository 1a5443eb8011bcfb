from datetime import datetime

from pydantic import Field

from app.schemas.base import BaseSchema
from app.utils.security import mask_secret


class CredentialSummary(BaseSchema):
    """凭证概要，令牌只返回脱敏值"""

    subject_id: str = Field(..., description="X 用户 ID")
    access_token_masked: str = Field(..., description="脱敏后的访问令牌")
    has_refresh_token: bool = Field(..., description="是否持有刷新令牌")
    scope: str | None = Field(None, description="授权范围")
    token_type: str = Field("bearer", description="令牌类型")
    expires_at: datetime | None = Field(None, description="访问令牌过期时间")
    needs_refresh: bool = Field(False, description="是否处于刷新窗口内")
    created_at: datetime
    updated_at: datetime

    @classmethod
    def build(cls, credential, *, needs_refresh: bool) -> "CredentialSummary":
        return cls(
            subject_id=credential.subject_id,
            access_token_masked=mask_secret(credential.access_token),
            has_refresh_token=bool((credential.refresh_token or "").strip()),
            scope=credential.scope,
            token_type=credential.token_type,
            expires_at=credential.expires_at,
            needs_refresh=needs_refresh,
            created_at=credential.created_at,
            updated_at=credential.updated_at,
        )


class RefreshSummaryResponse(BaseSchema):
    refreshed: int = Field(0, description="刷新成功数")
    failed: int = Field(0, description="刷新失败数")
    skipped: int = Field(0, description="无需刷新或无法刷新而跳过的数量")
