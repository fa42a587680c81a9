"""Session-delegated authorization: grants, persistence and checks."""

from yield_engine.services.authorization.grant import (
    AuthorizationDecision,
    DenialReason,
    Grant,
    GrantPermissions,
    format_grant_expiry,
    normalize_address,
)
from yield_engine.services.authorization.repository import (
    GrantRepository,
    InMemoryGrantRepository,
    SqlGrantRepository,
)
from yield_engine.services.authorization.store import AuthorizationStore

__all__ = [
    "AuthorizationDecision",
    "AuthorizationStore",
    "DenialReason",
    "Grant",
    "GrantPermissions",
    "GrantRepository",
    "InMemoryGrantRepository",
    "SqlGrantRepository",
    "format_grant_expiry",
    "normalize_address",
]
