"""
Agent configuration model and the default agent set.

Configurations are immutable. Changes go through `AgentConfiguration.updated`,
which re-validates the merged result and refuses nonsensical combinations.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from yield_engine.agents.state import AgentType, RiskLevel
from yield_engine.exceptions import ConfigValidationError

# Fields that identify an agent and cannot be changed by an update
IMMUTABLE_FIELDS = frozenset({"id", "type"})


class AgentConfiguration(BaseModel):
    """Thresholds, timing and position limits for one agent."""

    model_config = ConfigDict(frozen=True, extra="forbid", use_enum_values=False)

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    type: AgentType
    enabled: bool = True

    min_apy_threshold: float = Field(default=5.0, ge=0, description="Minimum APY % for eligibility")
    max_risk_level: RiskLevel = RiskLevel.MEDIUM
    rebalance_threshold: float = Field(default=2.0, gt=0, description="APY delta (points) to rebalance")
    take_profit_percent: float = Field(default=20.0, gt=0)
    stop_loss_percent: float = Field(default=10.0, gt=0)

    check_interval_minutes: float = Field(default=5.0, gt=0)

    max_position_size: float = Field(default=1000.0, gt=0)
    max_total_exposure: float = Field(default=5000.0, gt=0)

    @model_validator(mode="after")
    def _check_limits(self) -> "AgentConfiguration":
        if self.max_total_exposure < self.max_position_size:
            raise ValueError("max_total_exposure must be at least max_position_size")
        return self

    def updated(self, partial: dict[str, Any]) -> "AgentConfiguration":
        """
        Return a new configuration with `partial` applied.

        Raises:
            ConfigValidationError: unknown or identity fields, or the merged
                configuration fails validation
        """
        unknown = set(partial) - set(type(self).model_fields)
        if unknown:
            raise ConfigValidationError(f"Unknown configuration fields: {sorted(unknown)}")

        changed_identity = [k for k in IMMUTABLE_FIELDS & set(partial) if partial[k] != getattr(self, k)]
        if changed_identity:
            raise ConfigValidationError(f"Fields cannot be changed: {sorted(changed_identity)}")

        try:
            return type(self).model_validate({**self.model_dump(), **partial})
        except ValidationError as e:
            errors = [
                {"loc": list(err["loc"]), "msg": err["msg"]}
                for err in e.errors()
            ]
            raise ConfigValidationError("Invalid agent configuration", errors=errors) from e


DEFAULT_AGENT_CONFIGS: dict[AgentType, AgentConfiguration] = {
    AgentType.YIELD_HUNTER: AgentConfiguration(
        id="yield-hunter-1",
        name="Yield Hunter",
        type=AgentType.YIELD_HUNTER,
        enabled=True,
        min_apy_threshold=5,
        max_risk_level=RiskLevel.MEDIUM,
        rebalance_threshold=2,
        take_profit_percent=20,
        stop_loss_percent=10,
        check_interval_minutes=5,
        max_position_size=1000,
        max_total_exposure=5000,
    ),
    AgentType.RISK_MONITOR: AgentConfiguration(
        id="risk-monitor-1",
        name="Risk Monitor",
        type=AgentType.RISK_MONITOR,
        enabled=True,
        min_apy_threshold=0,
        max_risk_level=RiskLevel.HIGH,
        rebalance_threshold=5,
        take_profit_percent=50,
        stop_loss_percent=5,
        check_interval_minutes=1,
        max_position_size=10000,
        max_total_exposure=50000,
    ),
    AgentType.TRADE_EXECUTOR: AgentConfiguration(
        id="trade-executor-1",
        name="Trade Executor",
        type=AgentType.TRADE_EXECUTOR,
        enabled=False,  # Requires user approval
        min_apy_threshold=3,
        max_risk_level=RiskLevel.LOW,
        rebalance_threshold=1,
        take_profit_percent=10,
        stop_loss_percent=5,
        check_interval_minutes=10,
        max_position_size=500,
        max_total_exposure=2000,
    ),
    AgentType.PORTFOLIO_MANAGER: AgentConfiguration(
        id="portfolio-manager-1",
        name="Portfolio Manager",
        type=AgentType.PORTFOLIO_MANAGER,
        enabled=True,
        min_apy_threshold=3,
        max_risk_level=RiskLevel.MEDIUM,
        rebalance_threshold=3,
        take_profit_percent=25,
        stop_loss_percent=15,
        check_interval_minutes=15,
        max_position_size=2000,
        max_total_exposure=10000,
    ),
}
