"""
v1 路由聚合
"""

from app.api.v1.access_route import router as access_router
from app.api.v1.credentials_route import router as credentials_router
from app.api.v1.oauth_route import router as oauth_router

__all__ = [
    "access_router",
    "credentials_router",
    "oauth_router",
]
