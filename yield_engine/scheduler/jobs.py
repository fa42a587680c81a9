"""
Scheduled job definitions for the agent engine.

Each running agent owns one interval job that fires its evaluation cycle.
A separate interval job dispatches approved actions to the gateway.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from yield_engine.config import settings
from yield_engine.utils.logging import get_logger

if TYPE_CHECKING:
    from yield_engine.agents.manager import AgentManager
    from yield_engine.agents.runtime import AgentRuntime

log = get_logger(__name__)

EXECUTION_JOB_ID = "execution_dispatch"


def create_scheduler() -> AsyncIOScheduler:
    """Create a scheduler instance. Callers own its lifecycle."""
    return AsyncIOScheduler(timezone=timezone.utc)


def agent_job_id(agent_id: str) -> str:
    return f"agent_cycle_{agent_id}"


def register_agent_job(
    scheduler: AsyncIOScheduler,
    runtime: AgentRuntime,
    next_run_time: datetime | None = None,
) -> None:
    """
    Arm an agent's periodic cycle, with the first run immediately unless
    `next_run_time` says otherwise.

    Re-registering replaces the existing job.
    """
    interval = runtime.config.check_interval_minutes
    job_id = agent_job_id(runtime.agent_id)

    scheduler.add_job(
        runtime.run_cycle,
        trigger=IntervalTrigger(minutes=interval, timezone=timezone.utc),
        id=job_id,
        name=f"{runtime.config.name} cycle",
        replace_existing=True,
        max_instances=1,  # Don't overlap runs
        coalesce=True,
        next_run_time=next_run_time or datetime.now(timezone.utc),
    )

    log.info("agent_job_registered", job_id=job_id, interval_minutes=interval)


def reschedule_agent_job(scheduler: AsyncIOScheduler, runtime: AgentRuntime) -> None:
    """Apply a new cycle interval without pulling the next run forward."""
    job = scheduler.get_job(agent_job_id(runtime.agent_id))
    # Jobs on a scheduler that has not started yet have no next_run_time
    next_run = getattr(job, "next_run_time", None) if job is not None else None
    register_agent_job(scheduler, runtime, next_run_time=next_run)


def remove_agent_job(scheduler: AsyncIOScheduler, agent_id: str) -> None:
    job_id = agent_job_id(agent_id)
    try:
        scheduler.remove_job(job_id)
        log.info("agent_job_removed", job_id=job_id)
    except JobLookupError:
        log.debug("agent_job_not_found", job_id=job_id)


def register_execution_job(
    scheduler: AsyncIOScheduler,
    manager: AgentManager,
    interval_seconds: int | None = None,
) -> None:
    """Dispatch approved actions on a fixed interval."""
    interval_seconds = interval_seconds or settings.execution.drain_interval_seconds

    scheduler.add_job(
        manager.dispatch_approved,
        trigger=IntervalTrigger(seconds=interval_seconds, timezone=timezone.utc),
        id=EXECUTION_JOB_ID,
        name="Dispatch approved actions",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    log.info("execution_job_registered", job_id=EXECUTION_JOB_ID, interval_seconds=interval_seconds)


def get_scheduled_jobs(scheduler: AsyncIOScheduler) -> list[dict]:
    """
    Get information about all scheduled jobs.

    Returns:
        List of job info dictionaries.
    """
    jobs = []

    for job in scheduler.get_jobs():
        # next_run_time is only available after scheduler starts
        next_run = getattr(job, "next_run_time", None) if scheduler.running else None

        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run": next_run.isoformat() if next_run else None,
            "trigger": str(job.trigger),
        })

    return jobs
