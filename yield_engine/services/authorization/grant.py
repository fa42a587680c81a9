"""
Grant model for session-delegated execution authority.

A Grant lets agents act for a principal (wallet) without a per-action
approval, bounded by a per-transaction amount, an allowlist of target
contracts/pools and an expiry time.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from yield_engine.config import settings


def normalize_address(value: str) -> str:
    """Addresses and contract identifiers compare case-insensitively."""
    return value.strip().lower()


class DenialReason(str, Enum):
    """Why an authorization check failed."""
    NO_ACTIVE_GRANT = "NoActiveGrant"
    AMOUNT_EXCEEDS_LIMIT = "AmountExceedsLimit"
    CONTRACT_NOT_ALLOWED = "ContractNotAllowed"


class GrantPermissions(BaseModel):
    """Requested scope for a new grant."""

    max_amount: float = Field(default_factory=lambda: settings.auth.default_max_amount, gt=0)
    allowed_contracts: list[str] = Field(default_factory=list)
    expiry_hours: float = Field(default_factory=lambda: settings.auth.default_expiry_hours, gt=0)

    @field_validator("allowed_contracts")
    @classmethod
    def _normalize_contracts(cls, v: list[str]) -> list[str]:
        return sorted({normalize_address(c) for c in v if c.strip()})


@dataclass(frozen=True)
class Grant:
    """
    A persisted delegation record.

    Usable only while `active` and `now < expires_at`. Records are never
    deleted; revocation and expiry flip `active` and keep the row for audit.
    """
    principal: str
    max_amount: float
    allowed_contracts: frozenset[str]
    created_at: datetime
    expires_at: datetime
    active: bool = True
    revoked_at: datetime | None = None
    id: str = field(default_factory=lambda: str(uuid4()))

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_usable(self, now: datetime) -> bool:
        return self.active and not self.is_expired(now)

    def allows_contract(self, contract: str) -> bool:
        return normalize_address(contract) in self.allowed_contracts

    def deactivated(self, at: datetime) -> "Grant":
        return replace(self, active=False, revoked_at=at)


@dataclass(frozen=True)
class AuthorizationDecision:
    """Result of `AuthorizationStore.authorize`."""
    authorized: bool
    reason: DenialReason | None = None
    detail: str = ""
    grant: Grant | None = None

    @classmethod
    def allow(cls, grant: Grant) -> "AuthorizationDecision":
        return cls(authorized=True, grant=grant)

    @classmethod
    def deny(cls, reason: DenialReason, detail: str = "") -> "AuthorizationDecision":
        return cls(authorized=False, reason=reason, detail=detail)


def format_grant_expiry(grant: Grant, now: datetime) -> str:
    """Human-readable time left on a grant."""
    remaining = (grant.expires_at - now).total_seconds()
    if remaining <= 0:
        return "Expired"

    hours = int(remaining // 3600)
    minutes = int((remaining % 3600) // 60)
    if hours > 0:
        return f"{hours}h {minutes}m remaining"
    return f"{minutes}m remaining"
