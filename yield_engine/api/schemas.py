"""Pydantic response and request models for the API."""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from yield_engine.agents.config import AgentConfiguration
from yield_engine.agents.state import (
    ActionStatus,
    ActionType,
    AgentRuntimeState,
    AgentStatus,
    ApprovalSource,
    LogLevel,
    RiskLevel,
)
from yield_engine.services.authorization import Grant, format_grant_expiry
from yield_engine.services.trade_history import TradeStatus


class PositionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    protocol: str
    pool: str
    contract: str | None = None
    entry_apy: float
    current_apy: float
    entry_amount: float
    current_value: float
    pnl_percent: float
    entered_at: datetime


class ActionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    agent_id: str
    type: ActionType
    protocol: str
    pool: str
    contract: str | None = None
    amount: float
    reason: str
    status: ActionStatus
    confidence: int | None = None
    approved_via: ApprovalSource | None = None
    failure_reason: str | None = None
    external_reference: str | None = None
    created_at: datetime
    updated_at: datetime


class ActivityEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    timestamp: datetime
    level: LogLevel
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class StatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_deposited: float
    total_withdrawn: float
    total_pnl: float
    pnl_percent: float
    actions_executed: int
    successful_actions: int
    failed_actions: int
    uptime_seconds: float


class AgentStateResponse(BaseModel):
    """Snapshot of one agent."""

    model_config = ConfigDict(from_attributes=True)

    agent_id: str
    principal: str
    status: AgentStatus
    running: bool
    config: AgentConfiguration
    last_check: datetime | None = None
    last_action: str | None = None
    last_error: str | None = None
    total_exposure: float
    positions: list[PositionResponse]
    actions: list[ActionResponse]
    activity_log: list[ActivityEntryResponse]
    stats: StatsResponse

    @classmethod
    def from_state(cls, state: AgentRuntimeState) -> "AgentStateResponse":
        return cls.model_validate(state, from_attributes=True)


class AgentIdsResponse(BaseModel):
    agent_ids: list[str]


class GrantResponse(BaseModel):
    id: str
    principal: str
    max_amount: float
    allowed_contracts: list[str]
    created_at: datetime
    expires_at: datetime
    active: bool
    revoked_at: datetime | None = None
    remaining: str

    @classmethod
    def from_grant(cls, grant: Grant, now: datetime | None = None) -> "GrantResponse":
        now = now or datetime.now(timezone.utc)
        return cls(
            id=grant.id,
            principal=grant.principal,
            max_amount=grant.max_amount,
            allowed_contracts=sorted(grant.allowed_contracts),
            created_at=grant.created_at,
            expires_at=grant.expires_at,
            active=grant.active,
            revoked_at=grant.revoked_at,
            remaining=format_grant_expiry(grant, now) if grant.active else "Inactive",
        )


class RevokeResponse(BaseModel):
    revoked: bool


class AuthorizeRequest(BaseModel):
    amount: float = Field(gt=0)
    target_contract: str = Field(min_length=1)


class AuthorizeResponse(BaseModel):
    authorized: bool
    reason: str | None = None
    detail: str = ""


class TradeRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    timestamp: datetime
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
    status: TradeStatus


class TradeStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_trades: int
    successful: int
    failed: int
    most_used_action: str | None = None
    total_volume: float


class OpportunityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    protocol: str
    pool: str
    apy: float
    risk: RiskLevel
    liquidity: float
    contract: str | None = None
    chain: str | None = None
    stablecoin: bool = False


class YieldEstimateResponse(BaseModel):
    daily: float
    monthly: float
    yearly: float


class ExecutionOutcomeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    action_id: str
    success: bool
    external_reference: str | None = None
    error: str | None = None
