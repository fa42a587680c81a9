"""
Tests for scheduler jobs.

Jobs added to a stopped APScheduler are only queued, so each test starts
the scheduler paused: jobs land in the job store but never fire.
"""

import pytest

from yield_engine.agents.config import DEFAULT_AGENT_CONFIGS
from yield_engine.agents.runtime import AgentRuntime
from yield_engine.agents.state import AgentType
from yield_engine.scheduler import (
    EXECUTION_JOB_ID,
    agent_job_id,
    create_scheduler,
    get_scheduled_jobs,
    register_agent_job,
    register_execution_job,
    remove_agent_job,
)
from yield_engine.services.authorization import AuthorizationStore
from yield_engine.services.market_data import StaticSnapshotProvider


class StubManager:
    async def dispatch_approved(self):
        return {}


@pytest.fixture
def runtime() -> AgentRuntime:
    return AgentRuntime(
        config=DEFAULT_AGENT_CONFIGS[AgentType.RISK_MONITOR],
        principal="0xabc",
        snapshot_provider=StaticSnapshotProvider(),
        authorization=AuthorizationStore(),
    )


class TestAgentJobs:
    """Tests for per-agent cycle jobs."""

    @pytest.mark.asyncio
    async def test_register_uses_agent_interval(self, runtime):
        scheduler = create_scheduler()
        scheduler.start(paused=True)
        try:
            register_agent_job(scheduler, runtime)

            job = scheduler.get_job(agent_job_id(runtime.agent_id))
            assert job is not None
            assert job.trigger.interval.total_seconds() == 60
            assert job.max_instances == 1
        finally:
            scheduler.shutdown(wait=False)

    @pytest.mark.asyncio
    async def test_reregister_replaces_job(self, runtime):
        scheduler = create_scheduler()
        scheduler.start(paused=True)
        try:
            register_agent_job(scheduler, runtime)
            runtime.update_config({"check_interval_minutes": 3})
            register_agent_job(scheduler, runtime)

            jobs = scheduler.get_jobs()
            assert len(jobs) == 1
            assert jobs[0].trigger.interval.total_seconds() == 180
        finally:
            scheduler.shutdown(wait=False)

    @pytest.mark.asyncio
    async def test_remove_job(self, runtime):
        scheduler = create_scheduler()
        scheduler.start(paused=True)
        try:
            register_agent_job(scheduler, runtime)
            remove_agent_job(scheduler, runtime.agent_id)
            assert scheduler.get_jobs() == []

            # Removing again is a no-op
            remove_agent_job(scheduler, runtime.agent_id)
        finally:
            scheduler.shutdown(wait=False)


class TestExecutionJob:

    @pytest.mark.asyncio
    async def test_register_execution_job(self):
        scheduler = create_scheduler()
        scheduler.start(paused=True)
        try:
            register_execution_job(scheduler, StubManager(), interval_seconds=30)

            job = scheduler.get_job(EXECUTION_JOB_ID)
            assert job.trigger.interval.total_seconds() == 30
        finally:
            scheduler.shutdown(wait=False)


class TestGetScheduledJobs:

    def test_stopped_scheduler_has_no_next_run(self, runtime):
        scheduler = create_scheduler()
        register_agent_job(scheduler, runtime)

        jobs = get_scheduled_jobs(scheduler)

        assert len(jobs) == 1
        assert jobs[0]["id"] == "agent_cycle_risk-monitor-1"
        assert jobs[0]["name"] == "Risk Monitor cycle"
        assert jobs[0]["next_run"] is None
        assert "interval" in jobs[0]["trigger"]

    @pytest.mark.asyncio
    async def test_running_scheduler_reports_next_run(self, runtime):
        scheduler = create_scheduler()
        scheduler.start(paused=True)
        try:
            register_agent_job(scheduler, runtime)
            assert get_scheduled_jobs(scheduler)[0]["next_run"] is not None
        finally:
            scheduler.shutdown(wait=False)
