"""Market snapshot endpoints."""

from fastapi import APIRouter, Depends, Query

from yield_engine.agents.manager import AgentManager
from yield_engine.agents.policy import calculate_estimated_yield
from yield_engine.api.dependencies import get_manager
from yield_engine.api.schemas import OpportunityResponse, YieldEstimateResponse

router = APIRouter(prefix="/api/market", tags=["Market Data"])


@router.get("/opportunities", response_model=list[OpportunityResponse])
async def list_opportunities(manager: AgentManager = Depends(get_manager)) -> list[OpportunityResponse]:
    """Current snapshot, best yield first. 503 when the source is unavailable."""
    opportunities = await manager.snapshot_provider.fetch()
    return [OpportunityResponse.model_validate(o) for o in opportunities]


@router.get("/estimate", response_model=YieldEstimateResponse)
async def estimate_yield(
    amount: float = Query(gt=0),
    apy: float = Query(ge=0),
    days: int = Query(default=365, ge=1),
) -> YieldEstimateResponse:
    return YieldEstimateResponse(**calculate_estimated_yield(amount, apy, days))
