"""Market snapshot providers."""

from yield_engine.services.market_data.cached_provider import CachedSnapshotProvider
from yield_engine.services.market_data.defillama_provider import DefiLlamaSnapshotProvider
from yield_engine.services.market_data.provider import (
    MarketSnapshotProvider,
    StaticSnapshotProvider,
    risk_from_apy,
)

__all__ = [
    "CachedSnapshotProvider",
    "DefiLlamaSnapshotProvider",
    "MarketSnapshotProvider",
    "StaticSnapshotProvider",
    "risk_from_apy",
]
