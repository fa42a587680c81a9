"""Snapshot cache in front of a live provider."""

import asyncio
import time
from collections.abc import Callable

from yield_engine.agents.state import Opportunity
from yield_engine.config import settings
from yield_engine.exceptions import DataUnavailableError, DataUnavailableReason
from yield_engine.services.market_data.provider import MarketSnapshotProvider
from yield_engine.utils.logging import get_logger

log = get_logger(__name__)


class CachedSnapshotProvider(MarketSnapshotProvider):
    """
    TTL cache shared by every agent polling the same source.

    Within `ttl_seconds` the cached snapshot is returned without a fetch.
    When a refresh fails, a cached snapshot younger than `max_stale_seconds`
    is still served. Past that the failure surfaces as STALE, or as
    UNAVAILABLE when nothing was ever cached.
    """

    def __init__(
        self,
        inner: MarketSnapshotProvider,
        ttl_seconds: float | None = None,
        max_stale_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._inner = inner
        self._ttl = settings.market_data.cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._max_stale = (
            settings.market_data.max_stale_seconds if max_stale_seconds is None else max_stale_seconds
        )
        self._clock = clock
        self._cached: list[Opportunity] | None = None
        self._fetched_at: float | None = None
        self._refresh_lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return f"cached({self._inner.name})"

    def _age(self) -> float | None:
        if self._fetched_at is None:
            return None
        return self._clock() - self._fetched_at

    async def fetch(self) -> list[Opportunity]:
        age = self._age()
        if age is not None and age < self._ttl:
            return list(self._cached)

        async with self._refresh_lock:
            # Another agent may have refreshed while we waited
            age = self._age()
            if age is not None and age < self._ttl:
                return list(self._cached)

            try:
                snapshot = await self._inner.fetch()
            except DataUnavailableError as e:
                if age is None:
                    raise
                if age <= self._max_stale:
                    log.warning(
                        "snapshot_serving_stale_cache",
                        provider=self._inner.name,
                        age_seconds=round(age, 1),
                        error=str(e),
                    )
                    return list(self._cached)
                raise DataUnavailableError(
                    DataUnavailableReason.STALE,
                    f"Snapshot is {age:.0f}s old and refresh failed: {e}",
                ) from e

            self._cached = list(snapshot)
            self._fetched_at = self._clock()
            log.debug("snapshot_refreshed", provider=self._inner.name, opportunities=len(snapshot))
            return list(snapshot)

    def invalidate(self) -> None:
        self._cached = None
        self._fetched_at = None
