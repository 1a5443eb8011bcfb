"""
X OAuth2 授权流程（Authorization Code + PKCE）

- start_authorization: 生成 code_verifier，登记握手状态，返回跳转 URL
- complete_authorization: 校验并一次性消费 state，换取令牌，拉取用户信息，
  以先删后插的方式写入凭证
"""
from __future__ import annotations

from dataclasses import dataclass

from app.core.logging import logger
from app.services.credentials.credential_service import CredentialService
from app.services.oauth.errors import (
    OAuthAuthorizationDenied,
    OAuthMalformedCallback,
    OAuthStateInvalid,
)
from app.services.oauth.handshake_store import HandshakeStore
from app.services.oauth.pkce import (
    CODE_CHALLENGE_METHOD,
    build_code_challenge,
    generate_code_verifier,
)
from app.services.oauth.x_client import XOAuthClient
from app.utils.time_utils import Datetime


@dataclass
class AuthorizationStart:
    state: str
    code_challenge: str
    code_challenge_method: str
    authorization_url: str


@dataclass
class AuthorizationResult:
    subject_id: str
    username: str | None
    display_name: str | None
    access_token: str


class AuthorizationService:
    def __init__(
        self,
        *,
        client: XOAuthClient,
        handshakes: HandshakeStore,
        credentials: CredentialService,
        handshake_ttl_seconds: float = 600,
    ):
        self._client = client
        self._handshakes = handshakes
        self._credentials = credentials
        self._handshake_ttl = handshake_ttl_seconds

    async def start_authorization(self) -> AuthorizationStart:
        self._client.ensure_configured()
        verifier = generate_code_verifier()
        challenge = build_code_challenge(verifier)
        state = await self._handshakes.start(verifier, self._handshake_ttl)
        url = self._client.build_authorize_url(state, challenge)
        logger.info(f"oauth_authorization_started ttl={self._handshake_ttl}s")
        return AuthorizationStart(
            state=state,
            code_challenge=challenge,
            code_challenge_method=CODE_CHALLENGE_METHOD,
            authorization_url=url,
        )

    async def state_exists(self, state: str) -> bool:
        """仅查询，不消费 state"""
        return await self._handshakes.exists(state)

    async def complete_authorization(
        self,
        *,
        code: str | None,
        state: str | None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> AuthorizationResult:
        if error:
            logger.warning(f"oauth_callback_denied error={error} description={error_description}")
            if state:
                # 用户拒绝授权时同样作废该 state
                await self._handshakes.remove(state)
            raise OAuthAuthorizationDenied(f"授权失败: {error_description or error}")

        if not code:
            raise OAuthMalformedCallback("缺少授权码参数")
        if not state:
            raise OAuthMalformedCallback("缺少 state 参数")

        verifier = await self._handshakes.consume(state)
        if not verifier:
            logger.warning("oauth_callback_state_invalid")
            raise OAuthStateInvalid()

        grant = await self._client.exchange_code(code, verifier)
        profile = await self._client.fetch_profile(grant.access_token)

        expires_at = None
        if grant.expires_in and grant.expires_in > 0:
            expires_at = Datetime.after(grant.expires_in)

        await self._credentials.replace(
            subject_id=profile.subject_id,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            scope=grant.scope or self._client.scope_string,
            token_type=grant.token_type,
            expires_at=expires_at,
        )
        logger.info(
            f"oauth_authorization_completed subject={profile.subject_id} username={profile.username}"
        )
        return AuthorizationResult(
            subject_id=profile.subject_id,
            username=profile.username,
            display_name=profile.display_name,
            access_token=grant.access_token,
        )
