"""X OAuth 授权相关 Pydantic Schema"""

from pydantic import Field

from app.schemas.base import BaseSchema


class AuthorizationStartResponse(BaseSchema):
    """授权开始响应"""

    state: str = Field(..., description="一次性 state 令牌")
    code_challenge: str = Field(..., description="PKCE code_challenge")
    code_challenge_method: str = Field("S256", description="PKCE challenge 算法")
    authorization_url: str = Field(..., description="跳转到 X 授权页的完整 URL")


class AuthorizationCallbackResponse(BaseSchema):
    """授权回调成功响应"""

    subject_id: str = Field(..., description="X 用户 ID")
    username: str | None = Field(None, description="X 用户名")
    display_name: str | None = Field(None, description="展示名")
    access_token: str = Field(..., description="新获得的访问令牌")


class StateStatusResponse(BaseSchema):
    state_valid: bool = Field(..., description="state 是否仍有效（不消费）")
