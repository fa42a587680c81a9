"""
Grant persistence.

The store only needs atomic get/save keyed by principal. `save` takes every
record touched by one store operation so that superseding a grant (revoke
old + insert new) either lands completely or not at all.

Implementations:
- InMemoryGrantRepository: process-local, used by tests and the paper setup
- SqlGrantRepository: SQLAlchemy-backed `grants` table
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from yield_engine.database.models import GrantRecord
from yield_engine.services.authorization.grant import Grant


class GrantRepository(ABC):
    """Storage for grant records."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    def get(self, principal: str) -> Grant | None:
        """The principal's active record if there is one, else the most recent record."""
        pass

    @abstractmethod
    def save(self, *grants: Grant) -> None:
        """Insert or replace records (by id) in one atomic write."""
        pass

    @abstractmethod
    def history(self, principal: str) -> list[Grant]:
        """All records for a principal, newest first."""
        pass


class InMemoryGrantRepository(GrantRepository):

    def __init__(self):
        self._lock = threading.Lock()
        self._records: dict[str, dict[str, Grant]] = {}

    @property
    def name(self) -> str:
        return "memory"

    def get(self, principal: str) -> Grant | None:
        history = self.history(principal)
        active = [g for g in history if g.active]
        if active:
            return active[0]
        return history[0] if history else None

    def save(self, *grants: Grant) -> None:
        with self._lock:
            for grant in grants:
                self._records.setdefault(grant.principal, {})[grant.id] = grant

    def history(self, principal: str) -> list[Grant]:
        with self._lock:
            records = list(self._records.get(principal, {}).values())
        # Later inserts win ties on created_at
        return sorted(reversed(records), key=lambda g: g.created_at, reverse=True)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlGrantRepository(GrantRepository):
    """Grant records in the `grants` table. One transaction per save."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    @property
    def name(self) -> str:
        return "sql"

    def get(self, principal: str) -> Grant | None:
        with self._session_factory() as session:
            stmt = (
                select(GrantRecord)
                .where(GrantRecord.principal == principal)
                .order_by(GrantRecord.active.desc(), GrantRecord.created_at.desc())
                .limit(1)
            )
            record = session.execute(stmt).scalar_one_or_none()
            return self._to_grant(record) if record is not None else None

    def save(self, *grants: Grant) -> None:
        with self._session_factory() as session:
            with session.begin():
                for grant in grants:
                    session.merge(GrantRecord(
                        id=grant.id,
                        principal=grant.principal,
                        max_amount=grant.max_amount,
                        allowed_contracts=sorted(grant.allowed_contracts),
                        created_at=grant.created_at,
                        expires_at=grant.expires_at,
                        active=grant.active,
                        revoked_at=grant.revoked_at,
                    ))

    def history(self, principal: str) -> list[Grant]:
        with self._session_factory() as session:
            stmt = (
                select(GrantRecord)
                .where(GrantRecord.principal == principal)
                .order_by(GrantRecord.created_at.desc())
            )
            return [self._to_grant(r) for r in session.execute(stmt).scalars()]

    @staticmethod
    def _to_grant(record: GrantRecord) -> Grant:
        return Grant(
            id=record.id,
            principal=record.principal,
            max_amount=record.max_amount,
            allowed_contracts=frozenset(record.allowed_contracts or []),
            created_at=_as_utc(record.created_at),
            expires_at=_as_utc(record.expires_at),
            active=record.active,
            revoked_at=_as_utc(record.revoked_at),
        )
