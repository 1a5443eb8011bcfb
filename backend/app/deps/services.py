"""
服务依赖

所有服务在 create_app 时装配到 app.state.container，这里只负责取出。
"""
from collections.abc import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.container import ServiceContainer
from app.core.database import session_scope
from app.services.access.rules import AccessRuleSource
from app.services.credentials.credential_service import CredentialService
from app.services.oauth.authorization_service import AuthorizationService


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


async def get_db(
    container: ServiceContainer = Depends(get_container),
) -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI 依赖项: 获取数据库 Session
    """
    async for session in session_scope(container.session_factory):
        yield session


def get_authorization_service(
    container: ServiceContainer = Depends(get_container),
) -> AuthorizationService:
    return container.authorization


def get_credential_service(
    container: ServiceContainer = Depends(get_container),
) -> CredentialService:
    return container.credentials


def get_access_rule_source(
    container: ServiceContainer = Depends(get_container),
) -> AccessRuleSource:
    return container.access_rules
