"""
Policy evaluation for yield agents.

Pure functions that turn a market snapshot, the agent's positions and its
configuration into recommendations. Nothing here performs I/O or mutates
its inputs, so every rule is testable in isolation.

Rules, in priority order:
1. Stop-loss    - position P&L at or below -stop_loss_percent (max confidence)
2. Take-profit  - position P&L at or above take_profit_percent (max confidence)
3. Rebalance    - a better eligible pool beats the current yield by more than
                  rebalance_threshold points (medium confidence)
4. Initial deploy - no positions and no deposit already queued: deposit into
                  the best eligible pool, confidence scaled by the snapshot risk
                  assessment
"""

from dataclasses import replace
from datetime import datetime

from yield_engine.agents.config import AgentConfiguration
from yield_engine.agents.state import (
    Action,
    ActionType,
    Opportunity,
    Position,
    Recommendation,
    RecommendationAction,
    RecommendationKind,
    RiskAssessment,
    RiskFactor,
    RiskLevel,
    Urgency,
    utcnow,
)
from yield_engine.exceptions import PolicyViolationError

MAX_CONFIDENCE = 100
REBALANCE_CONFIDENCE = 60

# Deposit confidence by overall snapshot risk
DEPLOY_CONFIDENCE = {
    RiskLevel.LOW: 90,
    RiskLevel.MEDIUM: 60,
    RiskLevel.HIGH: 30,
}

HIGH_APY_THRESHOLD = 50.0
ELEVATED_APY_THRESHOLD = 20.0

SECONDS_PER_YEAR = 365 * 24 * 60 * 60


def filter_eligible(
    opportunities: list[Opportunity],
    config: AgentConfiguration,
) -> list[Opportunity]:
    """
    Keep opportunities that pass the yield and risk filters, best first.

    Eligible means `apy >= min_apy_threshold` and risk at or below
    `max_risk_level`. Ties on APY are broken by liquidity.
    """
    eligible = [
        opp for opp in opportunities
        if opp.apy >= config.min_apy_threshold and opp.risk.within(config.max_risk_level)
    ]
    return sorted(eligible, key=lambda o: (o.apy, o.liquidity), reverse=True)


def assess_risk(opportunities: list[Opportunity]) -> RiskAssessment:
    """Score a set of opportunities on yield level and protocol diversification."""
    if not opportunities:
        return RiskAssessment(overall=RiskLevel.LOW)

    avg_apy = sum(o.apy for o in opportunities) / len(opportunities)
    if avg_apy > HIGH_APY_THRESHOLD:
        apy_factor = RiskFactor("High APY", RiskLevel.HIGH, "Unusually high yields may indicate elevated risk")
    elif avg_apy > ELEVATED_APY_THRESHOLD:
        apy_factor = RiskFactor("Elevated APY", RiskLevel.MEDIUM, "Above-average yields, monitor closely")
    else:
        apy_factor = RiskFactor("Stable APY", RiskLevel.LOW, "Yields within normal range")

    protocol_count = len({o.protocol for o in opportunities})
    if protocol_count < 2:
        spread_factor = RiskFactor(
            "Protocol Concentration", RiskLevel.HIGH, "Single protocol exposure increases risk"
        )
    elif protocol_count < 3:
        spread_factor = RiskFactor(
            "Limited Diversification", RiskLevel.MEDIUM, "Consider spreading across more protocols"
        )
    else:
        spread_factor = RiskFactor("Good Diversification", RiskLevel.LOW, "Funds spread across multiple protocols")

    factors = (apy_factor, spread_factor)
    high_count = sum(1 for f in factors if f.level == RiskLevel.HIGH)
    if high_count >= 2:
        overall = RiskLevel.HIGH
    elif high_count == 1:
        overall = RiskLevel.MEDIUM
    else:
        overall = RiskLevel.LOW

    return RiskAssessment(overall=overall, factors=factors)


def refresh_positions(
    positions: list[Position],
    opportunities: list[Opportunity],
    now: datetime | None = None,
) -> list[Position]:
    """
    Return copies of `positions` updated from a fresh snapshot.

    Current APY comes from the matching (protocol, pool) opportunity when it
    is present in the snapshot. Value accrues at the current APY for the time
    since the last update.
    """
    now = now or utcnow()
    by_key = {(o.protocol, o.pool): o for o in opportunities}
    refreshed = []

    for position in positions:
        match = by_key.get(position.key)
        current_apy = match.apy if match is not None else position.current_apy

        elapsed = max((now - position.updated_at).total_seconds(), 0.0)
        value = position.current_value * (1 + (current_apy / 100) * elapsed / SECONDS_PER_YEAR)
        pnl_percent = (
            (value - position.entry_amount) / position.entry_amount * 100
            if position.entry_amount > 0 else 0.0
        )

        refreshed.append(replace(
            position,
            current_apy=current_apy,
            current_value=value,
            pnl_percent=pnl_percent,
            updated_at=now,
        ))

    return refreshed


def evaluate(
    opportunities: list[Opportunity],
    positions: list[Position],
    config: AgentConfiguration,
    open_actions: list[Action] | None = None,
) -> list[Recommendation]:
    """
    Produce recommendations for one evaluation cycle.

    The returned list is ordered by rule priority: every stop-loss comes
    before any take-profit, which comes before any rebalance or deposit.

    `open_actions` are the agent's queued or in-flight actions. An open
    deposit suppresses the initial deploy until it fills or fails.
    """
    eligible = filter_eligible(opportunities, config)
    deposit_open = any(a.type == ActionType.DEPOSIT for a in open_actions or ())

    stop_losses: list[Recommendation] = []
    take_profits: list[Recommendation] = []
    rebalances: list[Recommendation] = []

    for position in positions:
        if position.pnl_percent <= -config.stop_loss_percent:
            stop_losses.append(Recommendation(
                action=RecommendationAction.WITHDRAW,
                kind=RecommendationKind.STOP_LOSS,
                protocol=position.protocol,
                pool=position.pool,
                contract=position.contract,
                amount=position.current_value,
                reason=(
                    f"Stop-loss triggered at {position.pnl_percent:.1f}% "
                    f"(limit -{config.stop_loss_percent:g}%)"
                ),
                confidence=MAX_CONFIDENCE,
                urgency=Urgency.HIGH,
                expected_apy=position.current_apy,
            ))
            continue

        if position.pnl_percent >= config.take_profit_percent:
            take_profits.append(Recommendation(
                action=RecommendationAction.WITHDRAW,
                kind=RecommendationKind.TAKE_PROFIT,
                protocol=position.protocol,
                pool=position.pool,
                contract=position.contract,
                amount=position.current_value,
                reason=(
                    f"Take-profit reached at {position.pnl_percent:.1f}% "
                    f"(target {config.take_profit_percent:g}%)"
                ),
                confidence=MAX_CONFIDENCE,
                urgency=Urgency.MEDIUM,
                expected_apy=position.current_apy,
            ))
            continue

        better = next((o for o in eligible if (o.protocol, o.pool) != position.key), None)
        if better is not None and better.apy - position.current_apy > config.rebalance_threshold:
            rebalances.append(Recommendation(
                action=RecommendationAction.REBALANCE,
                kind=RecommendationKind.REBALANCE,
                protocol=better.protocol,
                pool=better.pool,
                contract=better.contract,
                amount=position.current_value,
                reason=(
                    f"{better.protocol} {better.pool} yields {better.apy:.2f}% vs "
                    f"{position.current_apy:.2f}% in {position.protocol} {position.pool}"
                ),
                confidence=REBALANCE_CONFIDENCE,
                urgency=Urgency.LOW,
                expected_apy=better.apy,
                source_protocol=position.protocol,
                source_pool=position.pool,
            ))

    recommendations = stop_losses + take_profits + rebalances

    if not positions and not deposit_open and eligible:
        best = eligible[0]
        assessment = assess_risk(eligible)
        recommendations.append(Recommendation(
            action=RecommendationAction.DEPOSIT,
            kind=RecommendationKind.INITIAL_DEPLOY,
            protocol=best.protocol,
            pool=best.pool,
            contract=best.contract,
            amount=config.max_position_size,
            reason=(
                f"Best eligible yield: {best.protocol} {best.pool} at {best.apy:.2f}% "
                f"({best.risk.value} risk, overall {assessment.overall.value})"
            ),
            confidence=DEPLOY_CONFIDENCE[assessment.overall],
            urgency=Urgency.MEDIUM if assessment.overall == RiskLevel.LOW else Urgency.LOW,
            expected_apy=best.apy,
        ))

    return recommendations


def check_limits(
    recommendation: Recommendation,
    positions: list[Position],
    config: AgentConfiguration,
    open_actions: list[Action] | None = None,
) -> None:
    """
    Reject recommendations that exceed configured position limits.

    Amounts are never clamped. Withdrawals reduce exposure and are not checked.
    A rebalance moves capital that is already deployed, so its size is the
    source position's entry amount rather than its accrued value. Exposure
    counts filled positions plus deposits that are still queued or in flight.

    Raises:
        PolicyViolationError: amount above max_position_size, or a deposit
            that would take total exposure above max_total_exposure
    """
    if recommendation.action == RecommendationAction.WITHDRAW:
        return

    size = recommendation.amount
    if recommendation.action == RecommendationAction.REBALANCE:
        source_key = (recommendation.source_protocol, recommendation.source_pool)
        source = next((p for p in positions if p.key == source_key), None)
        if source is not None:
            size = source.entry_amount

    if size > config.max_position_size:
        raise PolicyViolationError(
            "max_position_size",
            f"Amount {size:.2f} exceeds max position size {config.max_position_size:.2f}",
        )

    if recommendation.action == RecommendationAction.DEPOSIT:
        exposure = sum(p.current_value for p in positions)
        exposure += sum(a.amount for a in open_actions or () if a.type == ActionType.DEPOSIT)
        if exposure + recommendation.amount > config.max_total_exposure:
            raise PolicyViolationError(
                "max_total_exposure",
                f"Exposure {exposure + recommendation.amount:.2f} would exceed "
                f"max total exposure {config.max_total_exposure:.2f}",
            )


def calculate_estimated_yield(amount: float, apy: float, days: int = 365) -> dict[str, float]:
    """Simple-interest yield estimate at a given APY."""
    daily = amount * (apy / 100) / 365
    return {
        "daily": round(daily, 2),
        "monthly": round(daily * 30, 2),
        "yearly": round(daily * days, 2),
    }
