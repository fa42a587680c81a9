"""Wiring of the engine's collaborators from settings."""

from apscheduler.schedulers.base import BaseScheduler

from yield_engine.agents.manager import AgentManager
from yield_engine.config import Settings, settings as default_settings
from yield_engine.database.connection import create_db_engine, create_session_factory
from yield_engine.services.authorization import AuthorizationStore, SqlGrantRepository
from yield_engine.services.execution import ExecutionService, get_gateway
from yield_engine.services.market_data import (
    CachedSnapshotProvider,
    DefiLlamaSnapshotProvider,
    MarketSnapshotProvider,
    StaticSnapshotProvider,
)
from yield_engine.services.trade_history import TradeHistory
from yield_engine.utils.logging import get_logger

log = get_logger(__name__)


def build_snapshot_provider(config: Settings) -> MarketSnapshotProvider:
    if config.market_data.provider == "static":
        return StaticSnapshotProvider()
    return CachedSnapshotProvider(
        DefiLlamaSnapshotProvider(),
        ttl_seconds=config.market_data.cache_ttl_seconds,
        max_stale_seconds=config.market_data.max_stale_seconds,
    )


def build_authorization_store(config: Settings) -> AuthorizationStore:
    engine = create_db_engine(config.db.url, echo=config.db.echo)
    return AuthorizationStore(repository=SqlGrantRepository(create_session_factory(engine)))


def build_manager(
    config: Settings | None = None,
    scheduler: BaseScheduler | None = None,
) -> AgentManager:
    """
    Construct an AgentManager with its provider, store and execution service.

    Registers the default agents when a principal is configured.
    """
    config = config or default_settings
    authorization = build_authorization_store(config)
    manager = AgentManager(
        snapshot_provider=build_snapshot_provider(config),
        authorization=authorization,
        execution=ExecutionService(
            authorization=authorization,
            gateway=get_gateway(),
            trade_history=TradeHistory(config.execution.trade_history_size),
        ),
        scheduler=scheduler,
    )

    if config.agents.load_defaults and config.agents.principal:
        manager.create_default_agents(config.agents.principal)

    log.info(
        "agent_manager_built",
        market_data=manager.snapshot_provider.name,
        grant_storage=authorization.repository.name,
        gateway=manager.execution.gateway.name,
    )
    return manager
