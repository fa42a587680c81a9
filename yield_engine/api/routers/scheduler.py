"""
Scheduler API endpoints.

Lists the agent cycle and execution dispatch jobs.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from yield_engine.agents.manager import AgentManager
from yield_engine.api.dependencies import get_manager
from yield_engine.scheduler import get_scheduled_jobs

router = APIRouter(prefix="/api/scheduler", tags=["Scheduler"])


class ScheduledJob(BaseModel):
    """Scheduled job information."""

    id: str
    name: str
    next_run: str | None = None
    trigger: str


class SchedulerStatus(BaseModel):
    """Scheduler status response."""

    running: bool
    job_count: int
    jobs: list[ScheduledJob]


@router.get("/status", response_model=SchedulerStatus)
async def get_scheduler_status(manager: AgentManager = Depends(get_manager)) -> SchedulerStatus:
    jobs = get_scheduled_jobs(manager.scheduler)
    return SchedulerStatus(
        running=bool(manager.scheduler.running),
        job_count=len(jobs),
        jobs=[ScheduledJob(**job) for job in jobs],
    )
