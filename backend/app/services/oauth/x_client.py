"""
X (Twitter) OAuth2 客户端

职责：
- 生成带 PKCE challenge 的授权跳转 URL
- 使用授权码 + code_verifier 换取令牌
- 使用 refresh_token 刷新令牌
- 拉取当前授权用户信息

配置了 client secret 时按 confidential client 处理，通过 HTTP Basic 认证；
所有请求都使用带显式超时的 httpx.AsyncClient。
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from app.core.config import Settings
from app.core.logging import logger
from app.services.oauth.errors import OAuthNotConfigured, ProviderOAuthError
from app.services.oauth.pkce import CODE_CHALLENGE_METHOD

PROFILE_FIELDS = "id,name,username,created_at,profile_image_url"


@dataclass
class TokenGrant:
    access_token: str
    token_type: str
    refresh_token: str | None
    expires_in: int | None
    scope: str | None


@dataclass
class XUserProfile:
    subject_id: str
    username: str | None
    display_name: str | None
    avatar_url: str | None


class XOAuthClient:
    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._client_id = settings.X_OAUTH_CLIENT_ID
        self._client_secret = settings.X_OAUTH_CLIENT_SECRET
        self._redirect_uri = settings.X_OAUTH_REDIRECT_URI
        self._authorize_endpoint = settings.X_OAUTH_AUTHORIZE_ENDPOINT
        self._token_endpoint = settings.X_OAUTH_TOKEN_ENDPOINT
        self._userinfo_endpoint = settings.X_OAUTH_USERINFO_ENDPOINT
        self.scopes = list(settings.X_OAUTH_SCOPES)
        self._http = http_client

    @property
    def scope_string(self) -> str:
        return " ".join(self.scopes)

    def ensure_configured(self) -> None:
        required = {
            "X_OAUTH_CLIENT_ID": self._client_id,
            "X_OAUTH_REDIRECT_URI": self._redirect_uri,
        }
        missing = [k for k, v in required.items() if not v]
        if missing:
            raise OAuthNotConfigured(f"X OAuth 配置缺失: {', '.join(missing)}")

    def build_authorize_url(self, state: str, code_challenge: str) -> str:
        self.ensure_configured()
        base = httpx.URL(self._authorize_endpoint)
        params = dict(base.params)
        params.update(
            {
                "response_type": "code",
                "client_id": self._client_id,
                "redirect_uri": self._redirect_uri,
                "scope": self.scope_string,
                "state": state,
                "code_challenge": code_challenge,
                "code_challenge_method": CODE_CHALLENGE_METHOD,
            }
        )
        return str(base.copy_with(params=params))

    def _basic_auth(self) -> httpx.BasicAuth | None:
        if self._client_secret:
            return httpx.BasicAuth(self._client_id, self._client_secret)
        return None

    async def exchange_code(self, code: str, code_verifier: str) -> TokenGrant:
        self.ensure_configured()
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._redirect_uri,
            "code_verifier": code_verifier,
            "client_id": self._client_id,
        }
        payload = await self._post_token(data, action="exchange")
        return self._parse_grant(payload)

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        self.ensure_configured()
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self._client_id,
        }
        payload = await self._post_token(data, action="refresh")
        return self._parse_grant(payload)

    async def fetch_profile(self, access_token: str) -> XUserProfile:
        headers = {"Authorization": f"Bearer {access_token}"}
        try:
            resp = await self._http.get(
                self._userinfo_endpoint,
                params={"user.fields": PROFILE_FIELDS},
                headers=headers,
            )
        except httpx.HTTPError as exc:
            raise ProviderOAuthError(f"X 用户信息接口请求失败: {exc.__class__.__name__}") from exc

        if resp.status_code >= 400:
            raise ProviderOAuthError(f"X 用户信息接口返回错误状态 {resp.status_code}")

        try:
            payload: dict[str, Any] = resp.json()
        except ValueError as exc:
            raise ProviderOAuthError("X 用户信息接口返回非 JSON 数据") from exc

        user_payload = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(user_payload, dict) or user_payload.get("id") is None:
            raise ProviderOAuthError("X 用户信息缺少 id")

        username = user_payload.get("username")
        name = user_payload.get("name")
        avatar = user_payload.get("profile_image_url")
        return XUserProfile(
            subject_id=str(user_payload["id"]),
            username=str(username) if username else None,
            display_name=str(name) if name else (str(username) if username else None),
            avatar_url=avatar if isinstance(avatar, str) else None,
        )

    async def _post_token(self, data: dict[str, str], *, action: str) -> dict[str, Any]:
        try:
            resp = await self._http.post(
                self._token_endpoint,
                data=data,
                auth=self._basic_auth(),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as exc:
            logger.warning(f"x_oauth_token_request_failed action={action} error={exc.__class__.__name__}")
            raise ProviderOAuthError(f"X token 接口请求失败: {exc.__class__.__name__}") from exc

        if resp.status_code >= 400:
            logger.warning(f"x_oauth_token_bad_status action={action} status={resp.status_code}")
            raise ProviderOAuthError(f"X token 接口返回错误状态 {resp.status_code}")

        try:
            payload = resp.json()
        except ValueError as exc:
            raise ProviderOAuthError("X token 接口返回非 JSON 数据") from exc

        if not isinstance(payload, dict):
            raise ProviderOAuthError("X token 接口返回格式异常")
        if payload.get("error"):
            raise ProviderOAuthError(f"X token 接口返回错误: {payload.get('error')}")
        return payload

    @staticmethod
    def _parse_grant(payload: dict[str, Any]) -> TokenGrant:
        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise ProviderOAuthError("X token 接口缺少 access_token")

        refresh_token = payload.get("refresh_token")
        expires_in = payload.get("expires_in")
        try:
            expires = int(expires_in) if expires_in is not None else None
        except (TypeError, ValueError):
            expires = None

        scope = payload.get("scope")
        return TokenGrant(
            access_token=access_token,
            token_type=str(payload.get("token_type") or "bearer"),
            refresh_token=refresh_token if isinstance(refresh_token, str) and refresh_token else None,
            expires_in=expires,
            scope=scope if isinstance(scope, str) else None,
        )
