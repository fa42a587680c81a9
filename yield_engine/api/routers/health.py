"""Health check endpoints."""

from fastapi import APIRouter, Depends

from yield_engine.agents.manager import AgentManager
from yield_engine.api.dependencies import get_manager
from yield_engine.utils.logging import get_logger

router = APIRouter(tags=["Health"])
log = get_logger(__name__)


@router.get("/health")
async def health_check(manager: AgentManager = Depends(get_manager)) -> dict:
    """
    Health check endpoint that reports agent and grant storage status.
    """
    try:
        manager.authorization.repository.get("health-check")
        storage_status = "healthy"
    except Exception as e:
        log.error("health_check_failed", error=str(e))
        storage_status = f"unhealthy: {e}"

    agents = manager.get_all_agents()
    status = "ok" if storage_status == "healthy" else "degraded"
    log.debug("health_check", status=status, grant_storage=storage_status)

    return {
        "status": status,
        "grant_storage": storage_status,
        "scheduler_running": bool(manager.scheduler.running),
        "agents": len(agents),
        "agents_running": sum(1 for a in agents if a.running),
    }
