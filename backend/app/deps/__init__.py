from .services import (
    get_access_rule_source,
    get_authorization_service,
    get_container,
    get_credential_service,
    get_db,
)

__all__ = [
    "get_access_rule_source",
    "get_authorization_service",
    "get_container",
    "get_credential_service",
    "get_db",
]
