"""
X OAuth 授权路由 (/api/v1/oauth/x)

端点:
- GET /oauth/x/authorize - 开始授权（返回跳转信息，或 redirect=true 时 307 跳转）
- GET /oauth/x/callback - X 平台回调（公共端点，不经过访问网关）
- GET /oauth/x/state/{state} - 查询 state 是否仍有效（不消费）
"""
from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse

from app.deps.services import get_authorization_service
from app.schemas.oauth import (
    AuthorizationCallbackResponse,
    AuthorizationStartResponse,
    StateStatusResponse,
)
from app.services.access.gateway import public_endpoint
from app.services.oauth.authorization_service import AuthorizationService

router = APIRouter(prefix="/oauth/x", tags=["OAuth"])


@router.get("/authorize", response_model=AuthorizationStartResponse)
async def x_authorize(
    redirect: bool = Query(False, description="为 true 时直接 307 跳转到 X 授权页"),
    service: AuthorizationService = Depends(get_authorization_service),
):
    """生成 PKCE 参数与一次性 state，返回 X 授权 URL。"""
    started = await service.start_authorization()
    if redirect:
        return RedirectResponse(started.authorization_url, status_code=307)
    return AuthorizationStartResponse.model_validate(started)


@router.get("/callback", response_model=AuthorizationCallbackResponse)
@public_endpoint(reason="X 授权回调由第三方平台重定向访问")
async def x_callback(
    code: str | None = Query(None, description="授权码"),
    state: str | None = Query(None, description="state 参数"),
    error: str | None = Query(None, description="授权失败时平台返回的错误码"),
    error_description: str | None = Query(None, description="错误描述"),
    service: AuthorizationService = Depends(get_authorization_service),
) -> AuthorizationCallbackResponse:
    """消费 state，换取令牌并保存凭证。"""
    result = await service.complete_authorization(
        code=code,
        state=state,
        error=error,
        error_description=error_description,
    )
    return AuthorizationCallbackResponse.model_validate(result)


@router.get("/state/{state}", response_model=StateStatusResponse)
async def x_state_status(
    state: str,
    service: AuthorizationService = Depends(get_authorization_service),
) -> StateStatusResponse:
    return StateStatusResponse(state_valid=await service.state_exists(state))
