"""Trade history endpoints."""

from fastapi import APIRouter, Depends, Query

from yield_engine.agents.manager import AgentManager
from yield_engine.api.dependencies import get_manager
from yield_engine.api.schemas import TradeRecordResponse, TradeStatsResponse

router = APIRouter(prefix="/api/trades", tags=["Trades"])


@router.get("", response_model=list[TradeRecordResponse])
async def list_trades(
    principal: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=100),
    manager: AgentManager = Depends(get_manager),
) -> list[TradeRecordResponse]:
    records = manager.execution.trade_history.list(principal=principal, limit=limit)
    return [TradeRecordResponse.model_validate(r) for r in records]


@router.get("/stats", response_model=TradeStatsResponse)
async def trade_stats(
    principal: str | None = Query(default=None),
    manager: AgentManager = Depends(get_manager),
) -> TradeStatsResponse:
    return TradeStatsResponse.model_validate(manager.execution.trade_history.stats(principal))
