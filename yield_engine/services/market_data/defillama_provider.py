"""
DefiLlama yields provider.

Pulls https://yields.llama.fi/pools, keeps pools on the configured chain
above a TVL floor and maps them to opportunities.
"""

import httpx

from yield_engine.agents.state import Opportunity
from yield_engine.config import settings
from yield_engine.exceptions import DataUnavailableError, DataUnavailableReason
from yield_engine.services.market_data.provider import MarketSnapshotProvider, risk_from_apy
from yield_engine.utils.logging import get_logger
from yield_engine.utils.retry import retry_with_backoff

log = get_logger(__name__)

# DefiLlama reports BNB chain under either name
CHAIN_ALIASES = {
    "bsc": {"bsc", "binance"},
}


class DefiLlamaSnapshotProvider(MarketSnapshotProvider):

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        url: str | None = None,
        chain: str | None = None,
        min_tvl_usd: float | None = None,
        max_pools: int | None = None,
    ):
        self._client = client
        self._url = url or settings.market_data.defillama_url
        chain = (chain or settings.market_data.chain).lower()
        self._chains = CHAIN_ALIASES.get(chain, {chain})
        self._min_tvl = settings.market_data.min_tvl_usd if min_tvl_usd is None else min_tvl_usd
        self._max_pools = max_pools or settings.market_data.max_pools

    @property
    def name(self) -> str:
        return "defillama"

    async def fetch(self) -> list[Opportunity]:
        try:
            payload = await self._get_pools()
        except (httpx.HTTPError, ValueError) as e:
            log.warning("defillama_fetch_failed", error=str(e), error_type=type(e).__name__)
            raise DataUnavailableError(DataUnavailableReason.UNAVAILABLE, f"DefiLlama: {e}") from e

        opportunities = self.parse_pools(payload.get("data") or [])
        log.debug("defillama_snapshot", pools=len(opportunities))
        return opportunities

    @retry_with_backoff()
    async def _get_pools(self) -> dict:
        if self._client is not None:
            response = await self._client.get(self._url)
            response.raise_for_status()
            return response.json()

        async with httpx.AsyncClient(timeout=settings.market_data.request_timeout_seconds) as client:
            response = await client.get(self._url)
            response.raise_for_status()
            return response.json()

    def parse_pools(self, pools: list[dict]) -> list[Opportunity]:
        """Map raw pool rows to opportunities, best yield first."""
        opportunities = []
        for pool in pools:
            if str(pool.get("chain", "")).lower() not in self._chains:
                continue
            tvl = float(pool.get("tvlUsd") or 0)
            if tvl < self._min_tvl:
                continue
            apy = float(pool.get("apy") or 0)
            opportunities.append(Opportunity(
                protocol=pool.get("project", "unknown"),
                pool=pool.get("symbol") or pool.get("pool", ""),
                apy=apy,
                risk=risk_from_apy(apy),
                liquidity=tvl,
                contract=pool.get("pool"),
                chain=pool.get("chain"),
                stablecoin=bool(pool.get("stablecoin", False)),
            ))

        opportunities.sort(key=lambda o: (o.apy, o.liquidity), reverse=True)
        return opportunities[: self._max_pools]
