"""
Agent API endpoints.

Lifecycle control, configuration updates and manual approval of queued
actions.
"""

from typing import Any

from fastapi import APIRouter, Body, Depends

from yield_engine.agents.config import AgentConfiguration
from yield_engine.agents.manager import AgentManager
from yield_engine.api.dependencies import get_manager
from yield_engine.api.schemas import (
    ActionResponse,
    AgentIdsResponse,
    AgentStateResponse,
    ExecutionOutcomeResponse,
)
from yield_engine.utils.logging import get_logger

log = get_logger(__name__)

router = APIRouter(prefix="/api/agents", tags=["Agents"])


@router.get("", response_model=list[AgentStateResponse])
async def list_agents(manager: AgentManager = Depends(get_manager)) -> list[AgentStateResponse]:
    return [AgentStateResponse.from_state(state) for state in manager.get_all_agents()]


@router.post("/start", response_model=AgentIdsResponse)
async def start_all_agents(manager: AgentManager = Depends(get_manager)) -> AgentIdsResponse:
    """Start every enabled agent."""
    return AgentIdsResponse(agent_ids=manager.start_all())


@router.post("/stop", response_model=AgentIdsResponse)
async def stop_all_agents(manager: AgentManager = Depends(get_manager)) -> AgentIdsResponse:
    return AgentIdsResponse(agent_ids=manager.stop_all())


@router.post("/dispatch", response_model=dict[str, list[ExecutionOutcomeResponse]])
async def dispatch_approved(manager: AgentManager = Depends(get_manager)) -> dict:
    """Execute approved actions now instead of waiting for the dispatch job."""
    outcomes = await manager.dispatch_approved()
    return {
        agent_id: [ExecutionOutcomeResponse.model_validate(o) for o in results]
        for agent_id, results in outcomes.items()
    }


@router.get("/{agent_id}", response_model=AgentStateResponse)
async def get_agent(agent_id: str, manager: AgentManager = Depends(get_manager)) -> AgentStateResponse:
    return AgentStateResponse.from_state(manager.get_agent(agent_id).snapshot())


@router.post("/{agent_id}/start", response_model=AgentStateResponse)
async def start_agent(agent_id: str, manager: AgentManager = Depends(get_manager)) -> AgentStateResponse:
    runtime = manager.get_agent(agent_id)
    runtime.start()
    return AgentStateResponse.from_state(runtime.snapshot())


@router.post("/{agent_id}/stop", response_model=AgentStateResponse)
async def stop_agent(agent_id: str, manager: AgentManager = Depends(get_manager)) -> AgentStateResponse:
    runtime = manager.get_agent(agent_id)
    runtime.stop()
    return AgentStateResponse.from_state(runtime.snapshot())


@router.post("/{agent_id}/cycle", response_model=list[ActionResponse])
async def run_cycle(agent_id: str, manager: AgentManager = Depends(get_manager)) -> list[ActionResponse]:
    """Run one evaluation cycle immediately. Returns the actions it queued."""
    actions = await manager.get_agent(agent_id).run_cycle()
    return [ActionResponse.model_validate(a) for a in actions]


@router.patch("/{agent_id}/config", response_model=AgentConfiguration)
async def update_config(
    agent_id: str,
    changes: dict[str, Any] = Body(...),
    manager: AgentManager = Depends(get_manager),
) -> AgentConfiguration:
    """
    Apply a partial configuration update.

    Unknown fields, identity changes and invalid combinations are rejected
    with 422 and the configuration is left unchanged.
    """
    return manager.get_agent(agent_id).update_config(changes)


@router.post("/{agent_id}/actions/{action_id}/approve", response_model=ActionResponse)
async def approve_action(
    agent_id: str,
    action_id: str,
    manager: AgentManager = Depends(get_manager),
) -> ActionResponse:
    action = manager.get_agent(agent_id).approve_action(action_id)
    log.info("action_approved_via_api", agent_id=agent_id, action_id=action_id)
    return ActionResponse.model_validate(action)


@router.post("/{agent_id}/actions/{action_id}/reject", response_model=ActionResponse)
async def reject_action(
    agent_id: str,
    action_id: str,
    manager: AgentManager = Depends(get_manager),
) -> ActionResponse:
    action = manager.get_agent(agent_id).reject_action(action_id)
    log.info("action_rejected_via_api", agent_id=agent_id, action_id=action_id)
    return ActionResponse.model_validate(action)
