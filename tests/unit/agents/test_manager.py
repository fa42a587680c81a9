"""
Unit tests for the agent manager.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from yield_engine.agents.config import DEFAULT_AGENT_CONFIGS
from yield_engine.agents.manager import AgentManager, AgentStateChanged
from yield_engine.agents.state import ActionStatus, AgentStatus, AgentType
from yield_engine.exceptions import AgentNotFoundError, ConcurrencyViolationError
from yield_engine.scheduler import EXECUTION_JOB_ID
from yield_engine.services.authorization import AuthorizationStore, GrantPermissions
from yield_engine.services.execution import ExecutionService, PaperExecutionGateway
from yield_engine.services.market_data import StaticSnapshotProvider

PRINCIPAL = "0xabc"


@pytest.fixture
def manager(mock_scheduler, diversified_opportunities) -> AgentManager:
    authorization = AuthorizationStore()
    return AgentManager(
        snapshot_provider=StaticSnapshotProvider(diversified_opportunities),
        authorization=authorization,
        execution=ExecutionService(authorization, gateway=PaperExecutionGateway()),
        scheduler=mock_scheduler,
    )


class TestRegistry:

    def test_create_default_agents(self, manager):
        runtimes = manager.create_default_agents(PRINCIPAL)

        assert len(runtimes) == 4
        assert {s.agent_id for s in manager.get_all_agents()} == {
            c.id for c in DEFAULT_AGENT_CONFIGS.values()
        }

    def test_duplicate_id_rejected(self, manager):
        config = DEFAULT_AGENT_CONFIGS[AgentType.YIELD_HUNTER]
        manager.create_agent(config, PRINCIPAL)

        with pytest.raises(ValueError):
            manager.create_agent(config, PRINCIPAL)

    def test_get_unknown_agent(self, manager):
        with pytest.raises(AgentNotFoundError):
            manager.get_agent("missing")

    def test_remove_agent_stops_it(self, manager, mock_scheduler):
        runtime = manager.create_agent(DEFAULT_AGENT_CONFIGS[AgentType.YIELD_HUNTER], PRINCIPAL)
        runtime.start()

        manager.remove_agent(runtime.agent_id)

        assert runtime.is_running is False
        with pytest.raises(AgentNotFoundError):
            manager.get_agent(runtime.agent_id)


class TestLifecycle:

    def test_start_all_skips_disabled(self, manager):
        manager.create_default_agents(PRINCIPAL)

        started = manager.start_all()

        assert "trade-executor-1" not in started
        assert len(started) == 3
        assert manager.get_agent("trade-executor-1").status == AgentStatus.IDLE

    def test_stop_all(self, manager):
        manager.create_default_agents(PRINCIPAL)
        manager.start_all()

        stopped = manager.stop_all()

        assert len(stopped) == 3
        assert all(s.status == AgentStatus.PAUSED for s in manager.get_all_agents() if s.config.enabled)

    @pytest.mark.asyncio
    async def test_start_registers_dispatch_job(self, manager, mock_scheduler):
        await manager.start()

        job_ids = [c.kwargs["id"] for c in mock_scheduler.add_job.call_args_list]
        assert EXECUTION_JOB_ID in job_ids
        mock_scheduler.start.assert_called_once()

    @pytest.mark.asyncio
    async def test_shutdown_stops_agents(self, manager, mock_scheduler):
        manager.create_default_agents(PRINCIPAL)
        manager.start_all()
        mock_scheduler.running = True

        await manager.shutdown()

        assert not any(s.running for s in manager.get_all_agents())
        mock_scheduler.shutdown.assert_called_once_with(wait=False)


class TestDispatch:
    """Tests for AgentManager.dispatch_approved."""

    @pytest.mark.asyncio
    async def test_dispatch_executes_grant_approved_actions(self, manager):
        manager.authorization.grant(PRINCIPAL, GrantPermissions(max_amount=1000, allowed_contracts=["0xVenusUSDT"]))
        runtime = manager.create_agent(DEFAULT_AGENT_CONFIGS[AgentType.YIELD_HUNTER], PRINCIPAL)
        created = await runtime.run_cycle()

        outcomes = await manager.dispatch_approved()

        assert [o.action_id for o in outcomes["yield-hunter-1"]] == [created[0].id]
        assert runtime.queue.get(created[0].id).status == ActionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_concurrency_violation_halts_only_that_agent(self, manager):
        hunter = manager.create_agent(DEFAULT_AGENT_CONFIGS[AgentType.YIELD_HUNTER], PRINCIPAL)
        monitor = manager.create_agent(DEFAULT_AGENT_CONFIGS[AgentType.RISK_MONITOR], PRINCIPAL)
        hunter.start()
        monitor.start()

        async def execute(runtime):
            if runtime is hunter:
                raise ConcurrencyViolationError("mark_completed on action x in state failed")
            return []

        manager.execution.execute_approved = AsyncMock(side_effect=execute)

        await manager.dispatch_approved()

        assert hunter.status == AgentStatus.ERROR
        assert hunter.is_running is False
        assert monitor.status == AgentStatus.MONITORING

    @pytest.mark.asyncio
    async def test_unexpected_error_does_not_halt(self, manager):
        hunter = manager.create_agent(DEFAULT_AGENT_CONFIGS[AgentType.YIELD_HUNTER], PRINCIPAL)
        hunter.start()
        manager.execution.execute_approved = AsyncMock(side_effect=RuntimeError("boom"))

        assert await manager.dispatch_approved() == {}
        assert hunter.is_running is True


class TestObservers:
    """Tests for the bounded observer channel."""

    @pytest.mark.asyncio
    async def test_subscriber_receives_changes(self, manager):
        queue = manager.subscribe()
        runtime = manager.create_agent(DEFAULT_AGENT_CONFIGS[AgentType.YIELD_HUNTER], PRINCIPAL)

        runtime.start()

        event = queue.get_nowait()
        assert isinstance(event, AgentStateChanged)
        assert event.agent_id == "yield-hunter-1"
        assert event.snapshot.running is True

    @pytest.mark.asyncio
    async def test_slow_subscriber_drops_oldest(self, manager):
        queue = manager.subscribe(maxsize=2)
        runtime = manager.create_agent(DEFAULT_AGENT_CONFIGS[AgentType.YIELD_HUNTER], PRINCIPAL)

        runtime.start()
        runtime.update_config({"min_apy_threshold": 6})
        runtime.stop()

        assert queue.qsize() == 2
        first = queue.get_nowait()
        second = queue.get_nowait()
        assert first.snapshot.config.min_apy_threshold == 6
        assert second.snapshot.running is False

    @pytest.mark.asyncio
    async def test_unsubscribe(self, manager):
        queue = manager.subscribe()
        manager.unsubscribe(queue)
        runtime = manager.create_agent(DEFAULT_AGENT_CONFIGS[AgentType.YIELD_HUNTER], PRINCIPAL)

        runtime.start()
        await asyncio.sleep(0)

        assert queue.empty()
