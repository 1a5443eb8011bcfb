from datetime import datetime
from uuid import UUID

from pydantic import Field

from app.schemas.base import BaseSchema


class AccessRulesResponse(BaseSchema):
    """当前访问规则，通行令牌只返回脱敏值"""

    enabled: bool = Field(..., description="是否启用访问网关")
    ip_allowlist: list[str] = Field(default_factory=list, description="IP 白名单")
    pass_token_enabled: bool = Field(..., description="是否启用通行令牌")
    pass_tokens_masked: list[str] = Field(default_factory=list, description="脱敏后的通行令牌")


class AccessRulesUpdate(BaseSchema):
    """部分更新访问规则，未传字段保持不变"""

    enabled: bool | None = Field(None, description="是否启用访问网关")
    ip_allowlist: list[str] | None = Field(None, description="IP 白名单（整体替换）")
    pass_token_enabled: bool | None = Field(None, description="是否启用通行令牌")
    pass_tokens: list[str] | None = Field(None, description="通行令牌（整体替换）")


class AccessLogDTO(BaseSchema):
    id: UUID
    client_ip: str = Field(..., description="客户端 IP")
    request_summary: str = Field(..., description="请求摘要")
    passed: bool = Field(..., description="是否通过（拒绝或处理失败为 False）")
    created_at: datetime
