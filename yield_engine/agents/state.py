"""
Agent state definitions.

Value objects shared by the policy evaluator, the action queue, the agent
runtime and the execution service. Everything an observer receives is a
copy of these objects, never the live instance owned by a runtime.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import uuid4

if TYPE_CHECKING:
    from yield_engine.agents.config import AgentConfiguration


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================


class AgentStatus(str, Enum):
    """Agent lifecycle state."""
    IDLE = "idle"
    MONITORING = "monitoring"
    ANALYZING = "analyzing"
    EXECUTING = "executing"
    PAUSED = "paused"
    ERROR = "error"


class AgentType(str, Enum):
    YIELD_HUNTER = "yield-hunter"
    RISK_MONITOR = "risk-monitor"
    TRADE_EXECUTOR = "trade-executor"
    PORTFOLIO_MANAGER = "portfolio-manager"


class RiskLevel(str, Enum):
    """Risk tier, totally ordered low < medium < high."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]

    def within(self, ceiling: RiskLevel) -> bool:
        return self.rank <= ceiling.rank


_RISK_RANK = {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2}


class ActionType(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    REBALANCE = "rebalance"
    TAKE_PROFIT = "take-profit"
    STOP_LOSS = "stop-loss"

    @property
    def closes_position(self) -> bool:
        return self in (ActionType.WITHDRAW, ActionType.TAKE_PROFIT, ActionType.STOP_LOSS)


class ActionStatus(str, Enum):
    """Action status. Transitions only move forward."""
    PENDING = "pending"
    APPROVED = "approved"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class ApprovalSource(str, Enum):
    """Who approved an action."""
    GRANT = "grant"
    USER = "user"


class RecommendationAction(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    REBALANCE = "rebalance"
    HOLD = "hold"


class RecommendationKind(str, Enum):
    """Which policy rule produced a recommendation."""
    STOP_LOSS = "stop-loss"
    TAKE_PROFIT = "take-profit"
    REBALANCE = "rebalance"
    INITIAL_DEPLOY = "initial-deploy"


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class LogLevel(str, Enum):
    """Activity log entry type."""
    INFO = "info"
    WARNING = "warning"
    ACTION = "action"
    ERROR = "error"
    SUCCESS = "success"


# =============================================================================
# MARKET DATA
# =============================================================================


@dataclass(frozen=True)
class Opportunity:
    """A yield-bearing venue (protocol + pool) from a market snapshot."""
    protocol: str
    pool: str
    apy: float
    risk: RiskLevel
    liquidity: float = 0.0
    contract: str | None = None
    chain: str | None = None
    stablecoin: bool = False

    @property
    def target(self) -> str:
        """Identifier checked against a grant's allowed contracts."""
        return self.contract or self.pool


@dataclass(frozen=True)
class RiskFactor:
    name: str
    level: RiskLevel
    description: str


@dataclass(frozen=True)
class RiskAssessment:
    overall: RiskLevel
    factors: tuple[RiskFactor, ...] = ()


# =============================================================================
# RECOMMENDATIONS AND ACTIONS
# =============================================================================


@dataclass(frozen=True)
class Recommendation:
    """
    Transient suggestion from one policy evaluation.

    Never persisted and never mutated. `confidence` is on a 0-100 scale.
    """
    action: RecommendationAction
    kind: RecommendationKind
    protocol: str
    pool: str
    amount: float
    reason: str
    confidence: int
    urgency: Urgency
    expected_apy: float | None = None
    contract: str | None = None
    source_protocol: str | None = None
    source_pool: str | None = None

    @property
    def action_type(self) -> ActionType:
        """Queue action type for this recommendation."""
        if self.kind == RecommendationKind.STOP_LOSS:
            return ActionType.STOP_LOSS
        if self.kind == RecommendationKind.TAKE_PROFIT:
            return ActionType.TAKE_PROFIT
        if self.action == RecommendationAction.REBALANCE:
            return ActionType.REBALANCE
        if self.action == RecommendationAction.WITHDRAW:
            return ActionType.WITHDRAW
        return ActionType.DEPOSIT


@dataclass
class Action:
    """
    A status-tracked proposal to move funds.

    The id doubles as the idempotency key: exactly one submission is
    attempted per id. Only the owning ActionQueue changes `status`.
    """
    agent_id: str
    type: ActionType
    protocol: str
    pool: str
    amount: float
    reason: str
    id: str = field(default_factory=lambda: str(uuid4()))
    contract: str | None = None
    source_protocol: str | None = None
    source_pool: str | None = None
    expected_apy: float | None = None
    confidence: int | None = None
    status: ActionStatus = ActionStatus.PENDING
    approved_via: ApprovalSource | None = None
    failure_reason: str | None = None
    external_reference: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def dedupe_key(self) -> tuple[str, str, ActionType]:
        return (self.protocol, self.pool, self.type)

    @property
    def target(self) -> str:
        return self.contract or self.pool

    @classmethod
    def from_recommendation(cls, agent_id: str, rec: Recommendation) -> Action:
        return cls(
            agent_id=agent_id,
            type=rec.action_type,
            protocol=rec.protocol,
            pool=rec.pool,
            amount=rec.amount,
            reason=rec.reason,
            contract=rec.contract,
            source_protocol=rec.source_protocol,
            source_pool=rec.source_pool,
            expected_apy=rec.expected_apy,
            confidence=rec.confidence,
        )


# =============================================================================
# POSITIONS, ACTIVITY, STATS
# =============================================================================


@dataclass
class Position:
    """The agent's belief about one open allocation."""
    protocol: str
    pool: str
    entry_apy: float
    current_apy: float
    entry_amount: float
    current_value: float
    pnl_percent: float = 0.0
    contract: str | None = None
    entered_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def key(self) -> tuple[str, str]:
        return (self.protocol, self.pool)


@dataclass(frozen=True)
class ActivityLogEntry:
    level: LogLevel
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class AgentStats:
    total_deposited: float = 0.0
    total_withdrawn: float = 0.0
    total_pnl: float = 0.0
    pnl_percent: float = 0.0
    actions_executed: int = 0
    successful_actions: int = 0
    failed_actions: int = 0
    uptime_seconds: float = 0.0


@dataclass
class AgentRuntimeState:
    """
    Snapshot of one agent.

    Built by AgentRuntime.snapshot(); every nested collection is a copy.
    """
    config: AgentConfiguration
    principal: str
    status: AgentStatus = AgentStatus.IDLE
    running: bool = False
    last_check: datetime | None = None
    last_action: str | None = None
    last_error: str | None = None
    positions: list[Position] = field(default_factory=list)
    actions: list[Action] = field(default_factory=list)
    activity_log: list[ActivityLogEntry] = field(default_factory=list)
    stats: AgentStats = field(default_factory=AgentStats)

    @property
    def agent_id(self) -> str:
        return self.config.id

    @property
    def total_exposure(self) -> float:
        return sum(p.current_value for p in self.positions)

    def copy(self) -> AgentRuntimeState:
        return copy.deepcopy(self)
