"""
Authorization store for session-delegated execution.

Evaluates grants per principal:
- grant()        - create a grant, revoking any prior active one
- revoke()       - deactivate the active grant (idempotent)
- active_grant() - current usable grant, applying lazy expiry
- authorize()    - check one (amount, target) against the active grant

Expired grants are not swept. The first read that observes an expired but
still-active record flips it to inactive, persists that and logs the expiry.
Later reads see the inactive record and return the same answer.

All operations run under one lock and never await. They are safe to call
from agent cycles, the execution drain and API handlers alike.
"""

import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from yield_engine.services.authorization.grant import (
    AuthorizationDecision,
    DenialReason,
    Grant,
    GrantPermissions,
    normalize_address,
)
from yield_engine.services.authorization.repository import GrantRepository, InMemoryGrantRepository
from yield_engine.utils.logging import get_logger
from yield_engine.utils.metrics import authorization_denials

log = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthorizationStore:
    """Scoped delegations, one active grant per principal."""

    def __init__(
        self,
        repository: GrantRepository | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.repository = repository or InMemoryGrantRepository()
        self._clock = clock
        self._lock = threading.RLock()

    def grant(self, principal: str, permissions: GrantPermissions | None = None) -> Grant:
        """
        Create and activate a grant for `principal`.

        A prior active grant is revoked in the same repository write. If the
        write fails nothing changes and the error propagates.
        """
        permissions = permissions or GrantPermissions()
        principal = normalize_address(principal)

        with self._lock:
            now = self._clock()
            new_grant = Grant(
                principal=principal,
                max_amount=permissions.max_amount,
                allowed_contracts=frozenset(permissions.allowed_contracts),
                created_at=now,
                expires_at=now + timedelta(hours=permissions.expiry_hours),
            )

            prior = self.repository.get(principal)
            if prior is not None and prior.active:
                self.repository.save(prior.deactivated(now), new_grant)
                log.info("grant_superseded", principal=principal, previous_grant_id=prior.id)
            else:
                self.repository.save(new_grant)

        log.info(
            "grant_created",
            principal=principal,
            grant_id=new_grant.id,
            max_amount=new_grant.max_amount,
            allowed_contracts=sorted(new_grant.allowed_contracts),
            expires_at=new_grant.expires_at.isoformat(),
        )
        return new_grant

    def revoke(self, principal: str) -> bool:
        """
        Deactivate the principal's active grant.

        Returns True if a grant was revoked, False if there was nothing to revoke.
        """
        principal = normalize_address(principal)
        with self._lock:
            current = self.repository.get(principal)
            if current is None or not current.active:
                log.debug("grant_revoke_noop", principal=principal)
                return False
            self.repository.save(current.deactivated(self._clock()))

        log.info("grant_revoked", principal=principal, grant_id=current.id)
        return True

    def active_grant(self, principal: str) -> Grant | None:
        """The principal's grant if it is active and unexpired."""
        with self._lock:
            return self._load_active(normalize_address(principal))

    def authorize(self, principal: str, amount: float, target_contract: str) -> AuthorizationDecision:
        """
        Check whether the active grant covers one transaction.

        Checks run in a fixed order, so the first failing rule is the reason
        reported: no active grant, then amount, then target contract.
        """
        principal = normalize_address(principal)
        with self._lock:
            grant = self._load_active(principal)

        if grant is None:
            decision = AuthorizationDecision.deny(
                DenialReason.NO_ACTIVE_GRANT, f"No active grant for {principal}"
            )
        elif amount > grant.max_amount:
            decision = AuthorizationDecision.deny(
                DenialReason.AMOUNT_EXCEEDS_LIMIT,
                f"Amount {amount:g} exceeds grant limit {grant.max_amount:g}",
            )
        elif not grant.allows_contract(target_contract):
            decision = AuthorizationDecision.deny(
                DenialReason.CONTRACT_NOT_ALLOWED,
                f"Contract {target_contract} is not in the grant allowlist",
            )
        else:
            return AuthorizationDecision.allow(grant)

        authorization_denials.labels(reason=decision.reason.value).inc()
        log.info(
            "authorization_denied",
            principal=principal,
            amount=amount,
            target=target_contract,
            reason=decision.reason.value,
        )
        return decision

    def history(self, principal: str) -> list[Grant]:
        return self.repository.history(normalize_address(principal))

    def _load_active(self, principal: str) -> Grant | None:
        grant = self.repository.get(principal)
        if grant is None or not grant.active:
            return None

        now = self._clock()
        if grant.is_expired(now):
            self.repository.save(grant.deactivated(now))
            log.info(
                "grant_expired",
                principal=principal,
                grant_id=grant.id,
                expired_at=grant.expires_at.isoformat(),
            )
            return None

        return grant
