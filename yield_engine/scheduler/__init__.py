"""
Scheduler module for agent cycles.

Provides APScheduler integration: one interval job per running agent and
one job that dispatches approved actions.
"""

from yield_engine.scheduler.jobs import (
    EXECUTION_JOB_ID,
    agent_job_id,
    create_scheduler,
    get_scheduled_jobs,
    register_agent_job,
    register_execution_job,
    remove_agent_job,
    reschedule_agent_job,
)

__all__ = [
    "EXECUTION_JOB_ID",
    "agent_job_id",
    "create_scheduler",
    "get_scheduled_jobs",
    "register_agent_job",
    "register_execution_job",
    "remove_agent_job",
    "reschedule_agent_job",
]
