"""
Agent manager.

Owns the registry of agent runtimes and the shared collaborators they use:
the snapshot provider, the authorization store, the execution service and
the scheduler. Constructed explicitly (see `yield_engine.bootstrap`) and
torn down with `shutdown()`.

Observers subscribe to a bounded channel of `AgentStateChanged` events.
Delivery is best-effort: when a subscriber falls behind, its oldest event
is dropped.
"""

import asyncio
from dataclasses import dataclass

from apscheduler.schedulers.base import BaseScheduler

from yield_engine.agents.config import DEFAULT_AGENT_CONFIGS, AgentConfiguration
from yield_engine.agents.runtime import AgentRuntime
from yield_engine.agents.state import AgentRuntimeState
from yield_engine.config import settings
from yield_engine.exceptions import AgentNotFoundError, ConcurrencyViolationError
from yield_engine.scheduler.jobs import create_scheduler, register_execution_job
from yield_engine.services.authorization import AuthorizationStore
from yield_engine.services.execution.service import ExecutionOutcome, ExecutionService
from yield_engine.services.market_data.provider import MarketSnapshotProvider
from yield_engine.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class AgentStateChanged:
    agent_id: str
    snapshot: AgentRuntimeState


class AgentManager:
    """Registry and fan-out for all agents in the process."""

    def __init__(
        self,
        snapshot_provider: MarketSnapshotProvider,
        authorization: AuthorizationStore,
        execution: ExecutionService,
        scheduler: BaseScheduler | None = None,
    ):
        self.snapshot_provider = snapshot_provider
        self.authorization = authorization
        self.execution = execution
        self.scheduler = scheduler or create_scheduler()
        self._agents: dict[str, AgentRuntime] = {}
        self._subscribers: list[asyncio.Queue] = []

    # -------------------------------------------------------------------------
    # lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Start the scheduler and the execution dispatch job."""
        register_execution_job(self.scheduler, self)
        if not self.scheduler.running:
            self.scheduler.start()
        log.info("agent_manager_started", agent_count=len(self._agents))

    async def shutdown(self) -> None:
        """Stop every agent and the scheduler."""
        self.stop_all()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        log.info("agent_manager_stopped")

    # -------------------------------------------------------------------------
    # registry
    # -------------------------------------------------------------------------

    def create_agent(self, config: AgentConfiguration, principal: str) -> AgentRuntime:
        if config.id in self._agents:
            raise ValueError(f"Agent {config.id} already exists")

        runtime = AgentRuntime(
            config=config,
            principal=principal,
            snapshot_provider=self.snapshot_provider,
            authorization=self.authorization,
            scheduler=self.scheduler,
            on_change=self._publish,
        )
        self._agents[config.id] = runtime
        log.info("agent_created", agent_id=config.id, agent_type=config.type.value, principal=runtime.principal)
        return runtime

    def create_default_agents(self, principal: str) -> list[AgentRuntime]:
        """Register the stock agent set for one principal."""
        return [self.create_agent(config, principal) for config in DEFAULT_AGENT_CONFIGS.values()]

    def remove_agent(self, agent_id: str) -> None:
        runtime = self.get_agent(agent_id)
        runtime.stop()
        del self._agents[agent_id]
        log.info("agent_removed", agent_id=agent_id)

    def get_agent(self, agent_id: str) -> AgentRuntime:
        try:
            return self._agents[agent_id]
        except KeyError:
            raise AgentNotFoundError(f"Agent {agent_id} not found") from None

    def get_all_agents(self) -> list[AgentRuntimeState]:
        return [runtime.snapshot() for runtime in self._agents.values()]

    def start_all(self) -> list[str]:
        """Start every enabled agent. Returns the ids that were started."""
        started = [
            runtime.agent_id
            for runtime in self._agents.values()
            if runtime.config.enabled and runtime.start()
        ]
        log.info("agents_started", agent_ids=started)
        return started

    def stop_all(self) -> list[str]:
        stopped = [runtime.agent_id for runtime in self._agents.values() if runtime.stop()]
        log.info("agents_stopped", agent_ids=stopped)
        return stopped

    # -------------------------------------------------------------------------
    # execution
    # -------------------------------------------------------------------------

    async def dispatch_approved(self) -> dict[str, list[ExecutionOutcome]]:
        """
        Drain and execute approved actions for every agent.

        Agents are dispatched concurrently. A queue transition violation
        halts only the agent it happened in.
        """
        runtimes = list(self._agents.values())
        results = await asyncio.gather(
            *(self.execution.execute_approved(runtime) for runtime in runtimes),
            return_exceptions=True,
        )

        outcomes: dict[str, list[ExecutionOutcome]] = {}
        for runtime, result in zip(runtimes, results):
            if isinstance(result, ConcurrencyViolationError):
                runtime.crash(result)
            elif isinstance(result, BaseException):
                log.error(
                    "dispatch_failed",
                    agent_id=runtime.agent_id,
                    error=str(result),
                    error_type=type(result).__name__,
                )
            elif result:
                outcomes[runtime.agent_id] = result
        return outcomes

    # -------------------------------------------------------------------------
    # observers
    # -------------------------------------------------------------------------

    def subscribe(self, maxsize: int | None = None) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize or settings.agents.subscriber_queue_size)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def _publish(self, agent_id: str, snapshot: AgentRuntimeState) -> None:
        event = AgentStateChanged(agent_id=agent_id, snapshot=snapshot)
        for queue in list(self._subscribers):
            if queue.full():
                try:
                    queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                log.debug("observer_event_dropped", agent_id=agent_id)
