from fastapi import HTTPException, status


class OAuthError(HTTPException):
    """封装 OAuth 相关错误为 HTTPException，便于路由捕获。"""

    default_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str, status_code: int | None = None):
        super().__init__(status_code=status_code or self.default_status, detail=detail)


class OAuthNotConfigured(OAuthError):
    default_status = status.HTTP_503_SERVICE_UNAVAILABLE


class OAuthMalformedCallback(OAuthError):
    """回调缺少 code / state 等必要参数"""


class OAuthStateInvalid(OAuthError):
    """state 不存在、已被消费或已过期；对外不区分具体原因"""

    def __init__(self, detail: str = "state 无效或已过期（可能遭受 CSRF 攻击）"):
        super().__init__(detail)


class OAuthAuthorizationDenied(OAuthError):
    """用户在授权页拒绝或平台返回 error 参数"""

    default_status = status.HTTP_401_UNAUTHORIZED


class ProviderOAuthError(OAuthError):
    """上游授权服务器调用失败"""

    default_status = status.HTTP_502_BAD_GATEWAY
