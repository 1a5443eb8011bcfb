from .access_log_repository import AccessLogRepository
from .base import BaseRepository
from .oauth_credential_repository import OAuthCredentialRepository

__all__ = [
    "AccessLogRepository",
    "BaseRepository",
    "OAuthCredentialRepository",
]
