"""
Unit tests for the agent runtime.

The scheduler is a MagicMock, so cycles run only when a test awaits
`run_cycle` directly.
"""

import asyncio
from datetime import timedelta

import pytest
from unittest.mock import AsyncMock, MagicMock

from yield_engine.agents.config import DEFAULT_AGENT_CONFIGS
from yield_engine.agents.runtime import AgentRuntime
from yield_engine.agents.state import (
    Action,
    ActionStatus,
    ActionType,
    AgentStatus,
    AgentType,
    ApprovalSource,
    Opportunity,
    Position,
    RiskLevel,
)
from yield_engine.exceptions import (
    ConcurrencyViolationError,
    ConfigValidationError,
    DataUnavailableError,
    DataUnavailableReason,
)
from yield_engine.services.authorization import AuthorizationStore, GrantPermissions
from yield_engine.services.execution import ExecutionService, PaperExecutionGateway
from yield_engine.services.market_data import StaticSnapshotProvider

PRINCIPAL = "0xABC"


@pytest.fixture
def store(clock) -> AuthorizationStore:
    return AuthorizationStore(clock=clock)


@pytest.fixture
def provider(diversified_opportunities) -> StaticSnapshotProvider:
    return StaticSnapshotProvider(diversified_opportunities)


@pytest.fixture
def runtime(provider, store, mock_scheduler, clock) -> AgentRuntime:
    return AgentRuntime(
        config=DEFAULT_AGENT_CONFIGS[AgentType.YIELD_HUNTER],
        principal=PRINCIPAL,
        snapshot_provider=provider,
        authorization=store,
        scheduler=mock_scheduler,
        clock=clock,
    )


class BlockingProvider(StaticSnapshotProvider):
    """Holds fetch() open until released."""

    def __init__(self, opportunities):
        super().__init__(opportunities)
        self.release = asyncio.Event()
        self.calls = 0

    async def fetch(self):
        self.calls += 1
        await self.release.wait()
        return await super().fetch()


class TestLifecycle:
    """Tests for start/stop and status derivation."""

    def test_initial_status_idle(self, runtime):
        assert runtime.status == AgentStatus.IDLE
        assert runtime.is_running is False

    def test_start_registers_job_and_monitors(self, runtime, mock_scheduler):
        assert runtime.start() is True

        assert runtime.status == AgentStatus.MONITORING
        mock_scheduler.add_job.assert_called_once()
        assert mock_scheduler.add_job.call_args.kwargs["id"] == "agent_cycle_yield-hunter-1"

    def test_start_is_idempotent(self, runtime, mock_scheduler):
        runtime.start()
        assert runtime.start() is False
        assert mock_scheduler.add_job.call_count == 1

    def test_stop_pauses_and_removes_job(self, runtime, mock_scheduler):
        runtime.start()

        assert runtime.stop() is True
        assert runtime.status == AgentStatus.PAUSED
        mock_scheduler.remove_job.assert_called_once_with("agent_cycle_yield-hunter-1")

    def test_stop_when_not_running(self, runtime):
        assert runtime.stop() is False
        assert runtime.status == AgentStatus.IDLE

    def test_start_without_scheduler_raises(self, provider, store):
        runtime = AgentRuntime(
            config=DEFAULT_AGENT_CONFIGS[AgentType.YIELD_HUNTER],
            principal=PRINCIPAL,
            snapshot_provider=provider,
            authorization=store,
        )
        with pytest.raises(RuntimeError):
            runtime.start()

    def test_principal_is_normalized(self, runtime):
        assert runtime.principal == "0xabc"

    def test_crash_halts_agent(self, runtime, mock_scheduler):
        runtime.start()

        runtime.crash(ConcurrencyViolationError("mark_completed on action x in state failed"))

        assert runtime.status == AgentStatus.ERROR
        assert runtime.is_running is False
        assert "ConcurrencyViolationError" in runtime.snapshot().last_error
        mock_scheduler.remove_job.assert_called_once()


class TestRunCycle:
    """Tests for the evaluation cycle."""

    @pytest.mark.asyncio
    async def test_without_grant_action_stays_pending(self, runtime):
        runtime.start()

        created = await runtime.run_cycle()

        assert len(created) == 1
        action = runtime.queue.get(created[0].id)
        assert action.type == ActionType.DEPOSIT
        assert action.pool == "USDT"
        assert action.status == ActionStatus.PENDING
        assert runtime.status == AgentStatus.MONITORING

    @pytest.mark.asyncio
    async def test_grant_auto_approves_covered_action(self, runtime, store):
        store.grant(PRINCIPAL, GrantPermissions(max_amount=1000, allowed_contracts=["0xVenusUSDT"]))

        created = await runtime.run_cycle()

        action = runtime.queue.get(created[0].id)
        assert action.status == ActionStatus.APPROVED
        assert action.approved_via == ApprovalSource.GRANT

    @pytest.mark.asyncio
    async def test_grant_below_amount_leaves_action_pending(self, runtime, store):
        store.grant(PRINCIPAL, GrantPermissions(max_amount=500, allowed_contracts=["0xVenusUSDT"]))

        created = await runtime.run_cycle()

        assert runtime.queue.get(created[0].id).status == ActionStatus.PENDING
        messages = [e.message for e in runtime.snapshot().activity_log]
        assert any("AmountExceedsLimit" in m for m in messages)

    @pytest.mark.asyncio
    async def test_expired_grant_does_not_auto_approve(self, runtime, store, clock):
        store.grant(PRINCIPAL, GrantPermissions(max_amount=1000, allowed_contracts=["0xVenusUSDT"], expiry_hours=1))
        clock.advance(hours=1)

        created = await runtime.run_cycle()

        assert runtime.queue.get(created[0].id).status == ActionStatus.PENDING

    @pytest.mark.asyncio
    async def test_repeated_cycle_does_not_duplicate(self, runtime):
        first = await runtime.run_cycle()
        second = await runtime.run_cycle()

        assert len(first) == 1
        assert second == []
        assert len(runtime.queue.pending()) == 1

    @pytest.mark.asyncio
    async def test_low_confidence_not_enqueued(self, provider, store, mock_scheduler, diversified_opportunities):
        # Single protocol makes the overall risk medium (confidence 60)
        provider.set_opportunities(diversified_opportunities[:1])
        runtime = AgentRuntime(
            config=DEFAULT_AGENT_CONFIGS[AgentType.YIELD_HUNTER],
            principal=PRINCIPAL,
            snapshot_provider=provider,
            authorization=store,
            scheduler=mock_scheduler,
        )

        assert await runtime.run_cycle() == []

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(self, store, mock_scheduler, diversified_opportunities):
        provider = BlockingProvider(diversified_opportunities)
        runtime = AgentRuntime(
            config=DEFAULT_AGENT_CONFIGS[AgentType.YIELD_HUNTER],
            principal=PRINCIPAL,
            snapshot_provider=provider,
            authorization=store,
            scheduler=mock_scheduler,
        )

        first = asyncio.create_task(runtime.run_cycle())
        await asyncio.sleep(0)
        assert runtime.status == AgentStatus.ANALYZING

        assert await runtime.run_cycle() == []
        assert provider.calls == 1

        provider.release.set()
        assert len(await first) == 1

    @pytest.mark.asyncio
    async def test_data_unavailable_sets_error_then_recovers(self, runtime, provider):
        runtime.start()
        original_fetch = provider.fetch
        provider.fetch = AsyncMock(
            side_effect=DataUnavailableError(DataUnavailableReason.STALE, "snapshot too old")
        )

        assert await runtime.run_cycle() == []
        assert runtime.status == AgentStatus.ERROR
        assert runtime.snapshot().last_error == "snapshot too old"

        provider.fetch = original_fetch
        await runtime.run_cycle()
        assert runtime.status == AgentStatus.MONITORING
        assert runtime.snapshot().last_error is None

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self, runtime, provider):
        provider.fetch = AsyncMock(side_effect=KeyError("apy"))

        assert await runtime.run_cycle() == []
        assert runtime.snapshot().last_error is not None

    @pytest.mark.asyncio
    async def test_stop_loss_enqueued_for_losing_position(self, runtime, clock):
        runtime.set_positions([
            Position(
                protocol="venus", pool="USDT", contract="0xVenusUSDT",
                entry_apy=5, current_apy=5, entry_amount=1000, current_value=880,
                pnl_percent=-12, updated_at=clock(),
            )
        ])

        created = await runtime.run_cycle()

        assert [a.type for a in created] == [ActionType.STOP_LOSS]
        assert created[0].confidence == 100


class TestApprovalsAndConfig:

    @pytest.mark.asyncio
    async def test_manual_approve_and_reject(self, runtime, provider, diversified_opportunities):
        created = await runtime.run_cycle()

        approved = runtime.approve_action(created[0].id)
        assert approved.status == ActionStatus.APPROVED
        assert approved.approved_via == ApprovalSource.USER

        runtime.queue.drain_approved()
        runtime.queue.mark_failed(created[0].id, "test")
        runtime.set_positions([])

        again = await runtime.run_cycle()
        rejected = runtime.reject_action(again[0].id)
        assert rejected.id == again[0].id
        assert runtime.queue.pending() == []

    def test_invalid_update_leaves_config_unchanged(self, runtime):
        before = runtime.config

        with pytest.raises(ConfigValidationError):
            runtime.update_config({"max_position_size": -1})

        assert runtime.config is before

    def test_interval_change_reregisters_job(self, runtime, mock_scheduler):
        runtime.start()

        updated = runtime.update_config({"check_interval_minutes": 1})

        assert updated.check_interval_minutes == 1
        assert mock_scheduler.add_job.call_count == 2

    def test_interval_change_keeps_scheduled_next_run(self, runtime, mock_scheduler, clock):
        next_run = clock() + timedelta(minutes=3)
        mock_scheduler.get_job.return_value = MagicMock(next_run_time=next_run)
        runtime.start()

        runtime.update_config({"check_interval_minutes": 10})

        assert mock_scheduler.add_job.call_args.kwargs["next_run_time"] == next_run

    def test_disabling_running_agent_stops_it(self, runtime, mock_scheduler):
        runtime.start()

        runtime.update_config({"enabled": False})

        assert runtime.is_running is False
        assert runtime.status == AgentStatus.PAUSED
        mock_scheduler.remove_job.assert_called_once()

    def test_threshold_change_does_not_reregister(self, runtime, mock_scheduler):
        runtime.start()
        runtime.update_config({"min_apy_threshold": 6})
        assert mock_scheduler.add_job.call_count == 1


class TestRecordExecution:
    """Tests for folding execution results into positions and stats."""

    def _action(self, action_type=ActionType.DEPOSIT, **kwargs) -> Action:
        return Action(
            agent_id="yield-hunter-1",
            type=action_type,
            protocol=kwargs.pop("protocol", "venus"),
            pool=kwargs.pop("pool", "USDT"),
            amount=kwargs.pop("amount", 1000.0),
            reason="test",
            expected_apy=kwargs.pop("expected_apy", 8.0),
            **kwargs,
        )

    def test_deposit_opens_position(self, runtime):
        runtime.record_execution(self._action(), success=True, external_reference="0xtx")

        state = runtime.snapshot()
        assert len(state.positions) == 1
        assert state.positions[0].entry_amount == 1000.0
        assert state.stats.total_deposited == 1000.0
        assert state.stats.successful_actions == 1

    def test_withdraw_closes_position_and_realizes_pnl(self, runtime):
        runtime.record_execution(self._action(), success=True)
        runtime.record_execution(self._action(ActionType.TAKE_PROFIT, amount=1250.0), success=True)

        state = runtime.snapshot()
        assert state.positions == []
        assert state.stats.total_withdrawn == 1250.0
        assert state.stats.total_pnl == pytest.approx(250.0)
        assert state.stats.pnl_percent == pytest.approx(25.0)

    def test_rebalance_moves_position(self, runtime):
        runtime.record_execution(self._action(), success=True)
        runtime.record_execution(
            self._action(
                ActionType.REBALANCE, protocol="aave", pool="USDC",
                source_protocol="venus", source_pool="USDT", amount=1010.0, expected_apy=11.0,
            ),
            success=True,
        )

        positions = runtime.snapshot().positions
        assert [(p.protocol, p.pool) for p in positions] == [("aave", "USDC")]
        assert positions[0].entry_amount == 1000.0
        assert positions[0].current_apy == 11.0

    def test_rebalance_without_source_position_is_skipped(self, runtime):
        runtime.record_execution(
            self._action(
                ActionType.REBALANCE, protocol="aave", pool="USDC",
                source_protocol="venus", source_pool="USDT", amount=1010.0,
            ),
            success=True,
        )

        state = runtime.snapshot()
        assert state.positions == []
        assert any("no position in venus USDT" in entry.message for entry in state.activity_log)

    def test_failure_counts_without_position(self, runtime):
        runtime.record_execution(self._action(), success=False, error="insufficient_funds")

        state = runtime.snapshot()
        assert state.positions == []
        assert state.stats.failed_actions == 1
        assert "insufficient_funds" in state.last_action


class TestObservers:

    def test_listener_receives_copies(self, provider, store, mock_scheduler):
        received = []
        runtime = AgentRuntime(
            config=DEFAULT_AGENT_CONFIGS[AgentType.YIELD_HUNTER],
            principal=PRINCIPAL,
            snapshot_provider=provider,
            authorization=store,
            scheduler=mock_scheduler,
            on_change=lambda agent_id, snapshot: received.append((agent_id, snapshot)),
        )

        runtime.start()

        agent_id, snapshot = received[-1]
        assert agent_id == "yield-hunter-1"
        assert snapshot.running is True
        snapshot.positions.append(MagicMock())
        assert runtime.snapshot().positions == []

    def test_failing_listener_does_not_break_agent(self, provider, store, mock_scheduler):
        runtime = AgentRuntime(
            config=DEFAULT_AGENT_CONFIGS[AgentType.YIELD_HUNTER],
            principal=PRINCIPAL,
            snapshot_provider=provider,
            authorization=store,
            scheduler=mock_scheduler,
            on_change=MagicMock(side_effect=RuntimeError("observer down")),
        )

        assert runtime.start() is True
        assert runtime.status == AgentStatus.MONITORING


class TestCyclesOverTime:
    """Several cycles against one agent, with fills in between."""

    BETTER_POOL = Opportunity(
        protocol="lista", pool="USDT", apy=12.0, risk=RiskLevel.LOW, liquidity=3_000_000, contract="0xListaUSDT",
    )

    @pytest.fixture
    def service(self, store) -> ExecutionService:
        return ExecutionService(store, gateway=PaperExecutionGateway(initial_balance=10_000))

    async def _fill(self, runtime, service, action_id):
        runtime.approve_action(action_id)
        outcomes = await service.execute_approved(runtime)
        assert [o.success for o in outcomes] == [True]

    @pytest.mark.asyncio
    async def test_filled_deposit_accrues_then_rebalances(
        self, provider, store, mock_scheduler, clock, service, diversified_opportunities,
    ):
        runtime = AgentRuntime(
            config=DEFAULT_AGENT_CONFIGS[AgentType.YIELD_HUNTER],
            principal=PRINCIPAL,
            snapshot_provider=provider,
            authorization=store,
            scheduler=mock_scheduler,
            high_confidence_threshold=50,
            clock=clock,
        )
        deposit = (await runtime.run_cycle())[0]
        await self._fill(runtime, service, deposit.id)
        assert runtime.snapshot().positions[0].entry_amount == 1000

        clock.advance(minutes=5)
        provider.set_opportunities(diversified_opportunities + [self.BETTER_POOL])
        created = await runtime.run_cycle()

        assert [a.type for a in created] == [ActionType.REBALANCE]
        rebalance = created[0]
        assert rebalance.amount > 1000
        assert (rebalance.source_protocol, rebalance.source_pool) == ("venus", "USDT")

        await self._fill(runtime, service, rebalance.id)
        positions = runtime.snapshot().positions
        assert [(p.protocol, p.pool) for p in positions] == [("lista", "USDT")]
        assert positions[0].entry_amount == 1000

    @pytest.mark.asyncio
    async def test_queued_deposit_not_reproposed_when_best_pool_changes(self, runtime, provider):
        await runtime.run_cycle()
        provider.set_opportunities([
            Opportunity("aave", "USDC", apy=9.0, risk=RiskLevel.LOW, contract="0xAaveUSDC"),
            Opportunity("venus", "USDT", apy=8.0, risk=RiskLevel.LOW, contract="0xVenusUSDT"),
            Opportunity("pancake", "CAKE-BNB", apy=7.0, risk=RiskLevel.LOW, contract="0xPancakeCAKE"),
        ])

        assert await runtime.run_cycle() == []
        assert [(a.protocol, a.pool) for a in runtime.queue.pending()] == [("venus", "USDT")]

    @pytest.mark.asyncio
    async def test_queued_deposits_stay_within_total_exposure(self, provider, store, mock_scheduler, clock):
        config = DEFAULT_AGENT_CONFIGS[AgentType.YIELD_HUNTER].updated({"max_total_exposure": 1000})
        runtime = AgentRuntime(
            config=config,
            principal=PRINCIPAL,
            snapshot_provider=provider,
            authorization=store,
            scheduler=mock_scheduler,
            clock=clock,
        )

        await runtime.run_cycle()
        provider.set_opportunities([
            Opportunity("aave", "USDC", apy=9.0, risk=RiskLevel.LOW, contract="0xAaveUSDC"),
            Opportunity("venus", "USDT", apy=8.0, risk=RiskLevel.LOW, contract="0xVenusUSDT"),
            Opportunity("pancake", "CAKE-BNB", apy=7.0, risk=RiskLevel.LOW, contract="0xPancakeCAKE"),
        ])
        await runtime.run_cycle()

        queued = [a for a in runtime.queue.open_actions() if a.type == ActionType.DEPOSIT]
        assert sum(a.amount for a in queued) <= config.max_total_exposure

    @pytest.mark.asyncio
    async def test_failed_deposit_allows_redeploy(self, runtime, store):
        deposit = (await runtime.run_cycle())[0]
        runtime.approve_action(deposit.id)
        broke = ExecutionService(store, gateway=PaperExecutionGateway(initial_balance=100))
        outcomes = await broke.execute_approved(runtime)
        assert outcomes[0].success is False

        created = await runtime.run_cycle()

        assert [a.type for a in created] == [ActionType.DEPOSIT]

    @pytest.mark.asyncio
    async def test_stop_loss_closes_position_then_redeploys(self, runtime, service, clock):
        deposit = (await runtime.run_cycle())[0]
        await self._fill(runtime, service, deposit.id)

        # Pool drawdown marks the position down 12%
        position = runtime.snapshot().positions[0]
        position.current_value = 880
        position.updated_at = clock()
        runtime.set_positions([position])

        created = await runtime.run_cycle()
        assert [a.type for a in created] == [ActionType.STOP_LOSS]
        assert await runtime.run_cycle() == []

        await self._fill(runtime, service, created[0].id)
        state = runtime.snapshot()
        assert state.positions == []
        assert state.stats.total_pnl == pytest.approx(-120)

        redeploy = await runtime.run_cycle()
        assert [a.type for a in redeploy] == [ActionType.DEPOSIT]
