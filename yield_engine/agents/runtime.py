"""
Agent runtime: one agent's state machine and evaluation cycle.

Lifecycle:
    idle -> (start) -> monitoring <-> analyzing
                          |   ^           |
                     (stop)   (start)     +-> error (cycle failed; retried next tick)
                          v   |
                         paused

`executing` overlays the resting state while an action is being submitted.

Cycle (run on start and then every check_interval_minutes):
1. analyzing
2. fetch the market snapshot (the only await in the cycle)
3. refresh positions, evaluate policy
4. enqueue high-confidence recommendations that pass position limits
5. auto-approve an action only if the grant authorizes it right now
6. monitoring on success, error on failure

A tick that fires while the previous cycle is still running is skipped and
logged, never queued behind it.
"""

import asyncio
import copy
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime

from apscheduler.schedulers.base import BaseScheduler

from yield_engine.agents.action_queue import ActionQueue
from yield_engine.agents.config import AgentConfiguration
from yield_engine.agents.policy import check_limits, evaluate, refresh_positions
from yield_engine.agents.state import (
    Action,
    ActionType,
    ActivityLogEntry,
    AgentRuntimeState,
    AgentStats,
    AgentStatus,
    ApprovalSource,
    LogLevel,
    Opportunity,
    Position,
    RecommendationAction,
    utcnow,
)
from yield_engine.config import settings
from yield_engine.exceptions import DataUnavailableError, PolicyViolationError
from yield_engine.scheduler.jobs import register_agent_job, remove_agent_job, reschedule_agent_job
from yield_engine.services.authorization import AuthorizationStore, normalize_address
from yield_engine.services.market_data.provider import MarketSnapshotProvider
from yield_engine.utils.logging import agent_context, get_logger
from yield_engine.utils.metrics import (
    actions_enqueued,
    agent_cycles,
    agent_status,
    cycle_duration,
    cycle_skips,
    policy_violations,
)

log = get_logger(__name__)

StateListener = Callable[[str, AgentRuntimeState], None]


class AgentRuntime:
    """
    Owns one agent's configuration, positions, queue, activity log and stats.

    State is mutated only through this object's methods. Observers get
    copies from `snapshot()` or through the `on_change` listener.
    """

    def __init__(
        self,
        config: AgentConfiguration,
        principal: str,
        snapshot_provider: MarketSnapshotProvider,
        authorization: AuthorizationStore,
        scheduler: BaseScheduler | None = None,
        on_change: StateListener | None = None,
        high_confidence_threshold: int | None = None,
        activity_log_size: int | None = None,
        action_history_size: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._config = config
        self.principal = normalize_address(principal)
        self._snapshot_provider = snapshot_provider
        self._authorization = authorization
        self._scheduler = scheduler
        self._on_change = on_change
        self._clock = clock
        self.high_confidence_threshold = (
            settings.agents.high_confidence_threshold
            if high_confidence_threshold is None else high_confidence_threshold
        )

        self.queue = ActionQueue(
            config.id, history_size=action_history_size or settings.agents.action_history_size
        )

        self._state_lock = threading.RLock()
        self._cycle_lock = asyncio.Lock()

        self._status = AgentStatus.IDLE
        self._running = False
        self._ever_started = False
        self._last_cycle_failed = False
        self._halted = False
        self._executing = 0
        self._last_check: datetime | None = None
        self._last_action: str | None = None
        self._last_error: str | None = None
        self._positions: list[Position] = []
        self._activity: deque[ActivityLogEntry] = deque(
            maxlen=activity_log_size or settings.agents.activity_log_size
        )
        self._stats = AgentStats()
        self._run_started: float | None = None
        self._uptime_accumulated = 0.0

    # -------------------------------------------------------------------------
    # properties
    # -------------------------------------------------------------------------

    @property
    def agent_id(self) -> str:
        return self._config.id

    @property
    def config(self) -> AgentConfiguration:
        return self._config

    @property
    def status(self) -> AgentStatus:
        return self._status

    @property
    def is_running(self) -> bool:
        return self._running

    # -------------------------------------------------------------------------
    # lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> bool:
        """
        Arm the periodic cycle, running the first one immediately.

        Idempotent: returns False if the agent is already running.
        """
        if self._scheduler is None:
            raise RuntimeError(f"Agent {self.agent_id} has no scheduler")

        with self._state_lock:
            if self._running:
                log.debug("agent_already_running", agent_id=self.agent_id)
                return False

            register_agent_job(self._scheduler, self)
            self._running = True
            self._halted = False
            self._ever_started = True
            self._run_started = time.monotonic()
            self._set_status(self._resting_status())
            self._log_activity(LogLevel.INFO, f"{self._config.name} started")

        agent_status.labels(agent_id=self.agent_id).set(1)
        log.info("agent_started", agent_id=self.agent_id, principal=self.principal)
        self._notify()
        return True

    def stop(self) -> bool:
        """
        Cancel future cycles and pause.

        Actions already submitted are left to finish. Returns False if the
        agent was not running.
        """
        with self._state_lock:
            if not self._running:
                return False
            self._disarm()
            self._set_status(self._resting_status())
            self._log_activity(LogLevel.INFO, f"{self._config.name} stopped")

        log.info("agent_stopped", agent_id=self.agent_id, in_flight=self._executing)
        self._notify()
        return True

    def crash(self, exc: BaseException) -> None:
        """Halt the agent after an unrecoverable error such as a queue transition violation."""
        with self._state_lock:
            if self._running:
                self._disarm()
            self._halted = True
            self._last_error = f"{type(exc).__name__}: {exc}"
            self._status = AgentStatus.ERROR
            self._log_activity(LogLevel.ERROR, f"Agent halted: {exc}")

        log.critical("agent_crashed", agent_id=self.agent_id, error=str(exc), error_type=type(exc).__name__)
        self._notify()

    def _disarm(self) -> None:
        if self._scheduler is not None:
            remove_agent_job(self._scheduler, self.agent_id)
        self._running = False
        if self._run_started is not None:
            self._uptime_accumulated += time.monotonic() - self._run_started
            self._run_started = None
        agent_status.labels(agent_id=self.agent_id).set(0)

    # -------------------------------------------------------------------------
    # evaluation cycle
    # -------------------------------------------------------------------------

    async def run_cycle(self) -> list[Action]:
        """
        Run one evaluation cycle.

        Returns the actions enqueued by this cycle. Never raises for data or
        evaluation failures; those put the agent in `error` until the next
        clean cycle.
        """
        if self._cycle_lock.locked():
            cycle_skips.labels(agent_id=self.agent_id).inc()
            log.warning("cycle_skipped", agent_id=self.agent_id, reason="previous_cycle_running")
            return []

        with agent_context(self.agent_id, self.principal):
            async with self._cycle_lock:
                started = time.perf_counter()
                with self._state_lock:
                    self._set_status(AgentStatus.ANALYZING)
                self._notify()

                try:
                    opportunities = await self._snapshot_provider.fetch()
                    created = self._process_snapshot(opportunities)
                except DataUnavailableError as e:
                    self._fail_cycle(e, level="warning")
                    agent_cycles.labels(agent_id=self.agent_id, outcome="data_unavailable").inc()
                    return []
                except Exception as e:
                    self._fail_cycle(e, level="error")
                    agent_cycles.labels(agent_id=self.agent_id, outcome="error").inc()
                    return []
                finally:
                    cycle_duration.labels(agent_id=self.agent_id).observe(time.perf_counter() - started)

                with self._state_lock:
                    self._last_cycle_failed = False
                    self._last_error = None
                    self._set_status(self._resting_status())

                agent_cycles.labels(agent_id=self.agent_id, outcome="success").inc()
                self._notify()
                return created

    def _process_snapshot(self, opportunities: list[Opportunity]) -> list[Action]:
        """Steps 3-5 of the cycle. Synchronous: no awaits between evaluation and enqueue."""
        with self._state_lock:
            now = self._clock()
            self._positions = refresh_positions(self._positions, opportunities, now)
            self._last_check = now
            positions = list(self._positions)
            config = self._config

        recommendations = evaluate(opportunities, positions, config, self.queue.open_actions())
        log.info(
            "cycle_evaluated",
            agent_id=self.agent_id,
            opportunities=len(opportunities),
            positions=len(positions),
            recommendations=len(recommendations),
        )

        created: list[Action] = []
        seen: set[tuple] = set()

        for rec in recommendations:
            if rec.action == RecommendationAction.HOLD or rec.confidence < self.high_confidence_threshold:
                continue

            action = Action.from_recommendation(self.agent_id, rec)
            if action.dedupe_key in seen:
                log.debug("recommendation_duplicate_in_cycle", agent_id=self.agent_id, key=str(action.dedupe_key))
                continue
            seen.add(action.dedupe_key)

            try:
                check_limits(rec, positions, config, self.queue.open_actions())
            except PolicyViolationError as e:
                policy_violations.labels(agent_id=self.agent_id).inc()
                log.warning(
                    "policy_violation",
                    agent_id=self.agent_id,
                    limit=e.limit,
                    action_type=action.type.value,
                    amount=action.amount,
                    error=str(e),
                )
                with self._state_lock:
                    self._log_activity(LogLevel.WARNING, f"Skipped {action.type.value}: {e}", {"limit": e.limit})
                continue

            if not self.queue.enqueue(action):
                continue

            actions_enqueued.labels(agent_id=self.agent_id, action_type=action.type.value).inc()
            with self._state_lock:
                self._last_action = f"Queued {action.type.value} {action.amount:.2f} to {action.protocol} {action.pool}"
                self._log_activity(
                    LogLevel.ACTION,
                    self._last_action,
                    {"action_id": action.id, "reason": action.reason, "confidence": action.confidence},
                )

            self._auto_approve(action)
            created.append(action)

        with self._state_lock:
            self._log_activity(
                LogLevel.INFO,
                f"Cycle complete: {len(opportunities)} opportunities, {len(recommendations)} recommendations, "
                f"{len(created)} queued",
            )
        return created

    def _auto_approve(self, action: Action) -> None:
        """Approve under the principal's grant only if it covers this exact action now."""
        decision = self._authorization.authorize(self.principal, action.amount, action.target)
        if decision.authorized:
            self.queue.approve(action.id, via=ApprovalSource.GRANT)
            with self._state_lock:
                self._log_activity(
                    LogLevel.ACTION,
                    f"Auto-approved {action.type.value} under grant",
                    {"action_id": action.id, "grant_id": decision.grant.id},
                )
            return

        log.info(
            "action_awaiting_approval",
            agent_id=self.agent_id,
            action_id=action.id,
            reason=decision.reason.value,
        )
        with self._state_lock:
            self._log_activity(
                LogLevel.INFO,
                f"Awaiting approval ({decision.reason.value}): {decision.detail}",
                {"action_id": action.id, "reason": decision.reason.value},
            )

    def _fail_cycle(self, exc: Exception, level: str) -> None:
        with self._state_lock:
            self._last_cycle_failed = True
            self._last_error = str(exc)
            self._set_status(self._resting_status())
            self._log_activity(LogLevel.ERROR, f"Cycle failed: {exc}")

        if level == "warning":
            log.warning("cycle_data_unavailable", agent_id=self.agent_id, reason=exc.reason.value, error=str(exc))
        else:
            log.error("cycle_failed", agent_id=self.agent_id, error=str(exc), exc_info=True)
        self._notify()

    # -------------------------------------------------------------------------
    # approvals and configuration
    # -------------------------------------------------------------------------

    def approve_action(self, action_id: str) -> Action:
        """Manually approve a pending action."""
        action = self.queue.approve(action_id, via=ApprovalSource.USER)
        with self._state_lock:
            self._log_activity(LogLevel.ACTION, f"Approved {action.type.value} by user", {"action_id": action_id})
        self._notify()
        return action

    def reject_action(self, action_id: str) -> Action:
        """Reject and discard a pending action."""
        action = self.queue.reject(action_id)
        with self._state_lock:
            self._log_activity(LogLevel.INFO, f"Rejected {action.type.value}", {"action_id": action_id})
        self._notify()
        return action

    def update_config(self, partial: dict) -> AgentConfiguration:
        """
        Apply a partial configuration update.

        An interval change takes effect after the already scheduled run.
        Disabling a running agent stops it.

        Raises:
            ConfigValidationError: the merged configuration is invalid
        """
        with self._state_lock:
            previous = self._config
            self._config = previous.updated(partial)
            disable = self._running and not self._config.enabled
            if (
                self._running
                and not disable
                and self._config.check_interval_minutes != previous.check_interval_minutes
            ):
                reschedule_agent_job(self._scheduler, self)
            self._log_activity(LogLevel.INFO, "Configuration updated", {"changes": dict(partial)})
            updated = self._config

        log.info("agent_config_updated", agent_id=self.agent_id, changes=dict(partial))
        if disable:
            self.stop()
        else:
            self._notify()
        return updated

    # -------------------------------------------------------------------------
    # execution reporting (called by the execution service)
    # -------------------------------------------------------------------------

    def begin_execution(self) -> None:
        with self._state_lock:
            self._executing += 1
            self._set_status(AgentStatus.EXECUTING)
        self._notify()

    def finish_execution(self) -> None:
        with self._state_lock:
            self._executing = max(self._executing - 1, 0)
            self._set_status(self._resting_status())
        self._notify()

    def record_execution(
        self,
        action: Action,
        success: bool,
        external_reference: str | None = None,
        error: str | None = None,
    ) -> None:
        """Fold an execution result into positions and stats."""
        with self._state_lock:
            stats = self._stats
            stats.actions_executed += 1

            if not success:
                stats.failed_actions += 1
                self._last_action = f"Failed {action.type.value}: {error}"
                self._log_activity(LogLevel.ERROR, self._last_action, {"action_id": action.id})
            else:
                stats.successful_actions += 1
                self._apply_fill(action)
                if stats.total_deposited > 0:
                    stats.pnl_percent = stats.total_pnl / stats.total_deposited * 100
                self._last_action = (
                    f"Executed {action.type.value} {action.amount:.2f} in {action.protocol} {action.pool}"
                )
                self._log_activity(
                    LogLevel.SUCCESS,
                    self._last_action,
                    {"action_id": action.id, "tx": external_reference},
                )

        self._notify()

    def _apply_fill(self, action: Action) -> None:
        now = self._clock()
        stats = self._stats

        if action.type == ActionType.DEPOSIT:
            apy = action.expected_apy or 0.0
            self._positions.append(Position(
                protocol=action.protocol,
                pool=action.pool,
                contract=action.contract,
                entry_apy=apy,
                current_apy=apy,
                entry_amount=action.amount,
                current_value=action.amount,
                entered_at=now,
                updated_at=now,
            ))
            stats.total_deposited += action.amount

        elif action.type == ActionType.REBALANCE:
            source = self._pop_position((action.source_protocol, action.source_pool))
            if source is None:
                log.warning(
                    "rebalance_source_missing",
                    agent_id=self.agent_id,
                    action_id=action.id,
                    source_protocol=action.source_protocol,
                    source_pool=action.source_pool,
                )
                self._log_activity(
                    LogLevel.WARNING,
                    f"Rebalance filled but no position in {action.source_protocol} {action.source_pool}",
                    {"action_id": action.id},
                )
                return
            apy = action.expected_apy or 0.0
            entry_amount = source.entry_amount
            self._positions.append(Position(
                protocol=action.protocol,
                pool=action.pool,
                contract=action.contract,
                entry_apy=apy,
                current_apy=apy,
                entry_amount=entry_amount,
                current_value=action.amount,
                pnl_percent=(action.amount - entry_amount) / entry_amount * 100 if entry_amount else 0.0,
                entered_at=now,
                updated_at=now,
            ))

        elif action.type.closes_position:
            position = self._pop_position((action.protocol, action.pool))
            stats.total_withdrawn += action.amount
            if position is not None:
                stats.total_pnl += action.amount - position.entry_amount

    def _pop_position(self, key: tuple) -> Position | None:
        for i, position in enumerate(self._positions):
            if position.key == key:
                return self._positions.pop(i)
        return None

    # -------------------------------------------------------------------------
    # state access
    # -------------------------------------------------------------------------

    def snapshot(self) -> AgentRuntimeState:
        """Deep copy of the agent's current state."""
        with self._state_lock:
            uptime = self._uptime_accumulated
            if self._run_started is not None:
                uptime += time.monotonic() - self._run_started

            return AgentRuntimeState(
                config=self._config,
                principal=self.principal,
                status=self._status,
                running=self._running,
                last_check=self._last_check,
                last_action=self._last_action,
                last_error=self._last_error,
                positions=copy.deepcopy(self._positions),
                actions=self.queue.snapshot(),
                activity_log=list(self._activity),
                stats=replace(self._stats, uptime_seconds=uptime),
            )

    def set_positions(self, positions: list[Position]) -> None:
        """Seed believed positions, e.g. when restoring an agent."""
        with self._state_lock:
            self._positions = copy.deepcopy(positions)
        self._notify()

    # -------------------------------------------------------------------------
    # internals (caller holds the state lock unless noted)
    # -------------------------------------------------------------------------

    def _resting_status(self) -> AgentStatus:
        if self._executing > 0:
            return AgentStatus.EXECUTING
        if self._halted:
            return AgentStatus.ERROR
        if not self._running:
            return AgentStatus.PAUSED if self._ever_started else AgentStatus.IDLE
        if self._last_cycle_failed:
            return AgentStatus.ERROR
        return AgentStatus.MONITORING

    def _set_status(self, status: AgentStatus) -> None:
        if status != self._status:
            log.debug("agent_status_changed", agent_id=self.agent_id, old=self._status.value, new=status.value)
            self._status = status

    def _log_activity(self, level: LogLevel, message: str, details: dict | None = None) -> None:
        self._activity.appendleft(ActivityLogEntry(level=level, message=message, details=details or {}))

    def _notify(self) -> None:
        """Push a snapshot to the listener. Called without the state lock held."""
        if self._on_change is None:
            return
        try:
            self._on_change(self.agent_id, self.snapshot())
        except Exception as e:
            # Delivery is best-effort; a broken observer must not stall the agent
            log.warning("state_listener_failed", agent_id=self.agent_id, error=str(e))
