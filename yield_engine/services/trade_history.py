"""
Trade history.

In-memory record of every submission the execution service makes, newest
first, with summary statistics for the API.
"""

import threading
from collections import Counter, deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from yield_engine.config import settings


class TradeStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class TradeRecord:
    agent_id: str
    principal: str
    action: str
    protocol: str
    pool: str
    amount: float
    reason: str
    action_id: str
    confidence: int | None = None
    tx_hash: str | None = None
    error: str | None = None
    status: TradeStatus = TradeStatus.PENDING
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class TradeStats:
    total_trades: int
    successful: int
    failed: int
    most_used_action: str | None
    total_volume: float


class TradeHistory:
    """Bounded trade log, newest first."""

    def __init__(self, max_records: int | None = None):
        self._records: deque[TradeRecord] = deque(
            maxlen=max_records or settings.execution.trade_history_size
        )
        self._lock = threading.Lock()

    def record(self, record: TradeRecord) -> TradeRecord:
        with self._lock:
            self._records.appendleft(record)
        return record

    def update_status(
        self,
        record_id: str,
        status: TradeStatus,
        tx_hash: str | None = None,
        error: str | None = None,
    ) -> TradeRecord | None:
        with self._lock:
            for i, record in enumerate(self._records):
                if record.id == record_id:
                    updated = replace(
                        record,
                        status=status,
                        tx_hash=tx_hash or record.tx_hash,
                        error=error or record.error,
                    )
                    self._records[i] = updated
                    return updated
        return None

    def list(self, principal: str | None = None, limit: int | None = None) -> list[TradeRecord]:
        with self._lock:
            records = [r for r in self._records if principal is None or r.principal == principal.lower()]
        return records[:limit] if limit else records

    def stats(self, principal: str | None = None) -> TradeStats:
        records = self.list(principal)
        actions = Counter(r.action for r in records)
        return TradeStats(
            total_trades=len(records),
            successful=sum(1 for r in records if r.status == TradeStatus.SUCCESS),
            failed=sum(1 for r in records if r.status == TradeStatus.FAILED),
            most_used_action=actions.most_common(1)[0][0] if actions else None,
            total_volume=sum(r.amount for r in records if r.status == TradeStatus.SUCCESS),
        )

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
