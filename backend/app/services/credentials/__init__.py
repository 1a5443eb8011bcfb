from .credential_service import (
    CredentialError,
    CredentialNotFoundError,
    CredentialRefreshError,
    CredentialService,
    RefreshSummary,
)

__all__ = [
    "CredentialError",
    "CredentialNotFoundError",
    "CredentialRefreshError",
    "CredentialService",
    "RefreshSummary",
]
