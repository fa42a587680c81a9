"""Market snapshot provider protocol."""

from abc import ABC, abstractmethod

from yield_engine.agents.state import Opportunity, RiskLevel


def risk_from_apy(apy: float) -> RiskLevel:
    """Coarse risk tier for pools that carry no explicit rating."""
    if apy < 10:
        return RiskLevel.LOW
    if apy < 30:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


class MarketSnapshotProvider(ABC):
    """
    Abstract source of yield opportunities.

    Implementations:
    - DefiLlamaSnapshotProvider: live pools from the DefiLlama yields API
    - StaticSnapshotProvider: fixed list, for tests and offline runs
    - CachedSnapshotProvider: TTL cache in front of another provider
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name for logging."""
        pass

    @abstractmethod
    async def fetch(self) -> list[Opportunity]:
        """
        Get the current opportunity set, best yield first.

        Raises:
            DataUnavailableError: data is stale or the source is unreachable
        """
        pass


class StaticSnapshotProvider(MarketSnapshotProvider):
    """Serves a fixed opportunity list."""

    def __init__(self, opportunities: list[Opportunity] | None = None):
        self._opportunities = list(opportunities or [])

    @property
    def name(self) -> str:
        return "static"

    def set_opportunities(self, opportunities: list[Opportunity]) -> None:
        self._opportunities = list(opportunities)

    async def fetch(self) -> list[Opportunity]:
        return sorted(self._opportunities, key=lambda o: o.apy, reverse=True)
