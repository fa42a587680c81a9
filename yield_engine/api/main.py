"""FastAPI application setup and configuration."""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from yield_engine.agents.manager import AgentManager
from yield_engine.api.exceptions import engine_error_handler
from yield_engine.api.middleware import RequestLoggingMiddleware
from yield_engine.api.routers import agents, grants, health, market, metrics, scheduler, trades
from yield_engine.config import settings
from yield_engine.exceptions import YieldEngineError
from yield_engine.utils.logging import get_logger, setup_logging

setup_logging()
log = get_logger(__name__)

tags_metadata = [
    {"name": "Health", "description": "System health checks"},
    {"name": "Agents", "description": "Agent lifecycle, configuration and action approval"},
    {"name": "Grants", "description": "Session grants bounding autonomous execution"},
    {"name": "Trades", "description": "Execution history"},
    {"name": "Market Data", "description": "Yield opportunity snapshots"},
    {"name": "Scheduler", "description": "Scheduled job status"},
    {"name": "Metrics", "description": "Prometheus metrics for monitoring"},
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the manager if none was injected, and run it outside tests."""
    log.info("yield_engine_starting", version="0.1.0")

    if getattr(app.state, "manager", None) is None:
        from yield_engine.bootstrap import build_manager
        app.state.manager = build_manager()

    manager: AgentManager = app.state.manager
    started = False
    if settings.environment != "test":
        await manager.start()
        manager.start_all()
        started = True
        log.info("scheduler_integrated", job_count=len(manager.scheduler.get_jobs()))

    yield

    if started:
        await manager.shutdown()

    log.info("yield_engine_stopping")


def create_app(manager: AgentManager | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        manager: Pre-built manager. When omitted one is built from settings
            on startup.

    Returns:
        Configured FastAPI application instance.
    """
    app = FastAPI(
        title="Yield Engine",
        description="Autonomous yield agents bounded by session grants",
        version="0.1.0",
        openapi_tags=tags_metadata,
        lifespan=lifespan,
    )
    app.state.manager = manager

    app.add_middleware(RequestLoggingMiddleware)
    app.add_exception_handler(YieldEngineError, engine_error_handler)

    app.include_router(health.router)
    app.include_router(agents.router)
    app.include_router(grants.router)
    app.include_router(trades.router)
    app.include_router(market.router)
    app.include_router(scheduler.router)
    app.include_router(metrics.router)

    return app


app = create_app()
