from .access_log import AccessLog
from .base import Base
from .oauth_credential import OAuthCredential

__all__ = [
    "AccessLog",
    "Base",
    "OAuthCredential",
]
