"""
Yield agents module.

Each agent is an AgentRuntime that periodically evaluates the market and
queues actions for execution:

    MarketSnapshotProvider -> policy.evaluate -> ActionQueue -> ExecutionService

Usage:
    from yield_engine.bootstrap import build_manager

    manager = build_manager()
    manager.create_default_agents(principal="0xabc...")
    await manager.start()
    manager.start_all()

    for state in manager.get_all_agents():
        print(state.agent_id, state.status.value, len(state.actions))

Runtimes and the manager live in `yield_engine.agents.runtime` and
`yield_engine.agents.manager`. Import them from there.
"""

from yield_engine.agents.action_queue import ActionQueue
from yield_engine.agents.config import DEFAULT_AGENT_CONFIGS, AgentConfiguration

__all__ = [
    "ActionQueue",
    "AgentConfiguration",
    "DEFAULT_AGENT_CONFIGS",
]
