"""X OAuth2 + PKCE 授权相关服务"""
