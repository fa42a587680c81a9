"""API routers package."""

from yield_engine.api.routers import agents, grants, health, market, metrics, scheduler, trades

__all__ = ["agents", "grants", "health", "market", "metrics", "scheduler", "trades"]
