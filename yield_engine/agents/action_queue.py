"""
Per-agent action queue.

Holds actions through their lifecycle and enforces at-most-once execution:

    pending -> approved -> executing -> completed | failed
    pending -> approved -> failed   (denied at the final authorization check)

`drain_approved` is the single hand-off point to the execution service.
It moves approved actions to the in-flight set under the queue lock, so two
concurrent drains can never receive the same action.

Every method is synchronous and guarded by one re-entrant lock. The queue
is shared between an agent's cycle, API callers and the execution drain.
"""

import copy
import threading
from collections import OrderedDict, deque
from datetime import datetime, timezone

from yield_engine.agents.state import Action, ActionStatus, ApprovalSource
from yield_engine.exceptions import (
    ActionNotFoundError,
    ConcurrencyViolationError,
    InvalidActionStateError,
)
from yield_engine.utils.logging import get_logger

log = get_logger(__name__)

_OPEN_STATUSES = (ActionStatus.PENDING, ActionStatus.APPROVED)


class ActionQueue:
    """Ordered collection of one agent's actions, keyed by action id."""

    def __init__(self, agent_id: str, history_size: int = 100):
        self.agent_id = agent_id
        self._lock = threading.RLock()
        self._queued: OrderedDict[str, Action] = OrderedDict()   # pending + approved
        self._in_flight: OrderedDict[str, Action] = OrderedDict()  # drained, not finished
        self._finished: deque[Action] = deque(maxlen=history_size)

    def enqueue(self, action: Action) -> bool:
        """
        Append a pending action.

        Returns False (and logs) when an action with the same
        (protocol, pool, type) is already pending or approved.
        """
        with self._lock:
            if action.status != ActionStatus.PENDING:
                raise InvalidActionStateError(
                    f"Only pending actions can be enqueued (got {action.status.value})"
                )
            if action.id in self._queued or action.id in self._in_flight:
                log.warning("action_enqueue_duplicate_id", agent_id=self.agent_id, action_id=action.id)
                return False

            duplicate = self._find_open(action.dedupe_key)
            if duplicate is not None:
                log.info(
                    "action_enqueue_skipped_duplicate",
                    agent_id=self.agent_id,
                    existing_action_id=duplicate.id,
                    protocol=action.protocol,
                    pool=action.pool,
                    action_type=action.type.value,
                )
                return False

            self._queued[action.id] = action
            log.info(
                "action_enqueued",
                agent_id=self.agent_id,
                action_id=action.id,
                action_type=action.type.value,
                protocol=action.protocol,
                pool=action.pool,
                amount=action.amount,
            )
            return True

    def approve(self, action_id: str, via: ApprovalSource = ApprovalSource.USER) -> Action:
        """Move a pending action to approved."""
        with self._lock:
            action = self._require_pending(action_id)
            self._transition(action, ActionStatus.APPROVED)
            action.approved_via = via
            log.info("action_approved", agent_id=self.agent_id, action_id=action_id, via=via.value)
            return copy.copy(action)

    def reject(self, action_id: str) -> Action:
        """Remove a pending action."""
        with self._lock:
            action = self._require_pending(action_id)
            del self._queued[action_id]
            log.info("action_rejected", agent_id=self.agent_id, action_id=action_id)
            return copy.copy(action)

    def drain_approved(self) -> list[Action]:
        """
        Atomically hand off every approved action for execution.

        Returned actions keep enqueue order and leave the queued set in the
        same locked step.
        """
        with self._lock:
            drained = [a for a in self._queued.values() if a.status == ActionStatus.APPROVED]
            for action in drained:
                del self._queued[action.id]
                self._in_flight[action.id] = action
            if drained:
                log.debug("actions_drained", agent_id=self.agent_id, count=len(drained))
            return [copy.copy(a) for a in drained]

    def mark_executing(self, action_id: str) -> None:
        with self._lock:
            action = self._require_in_flight(action_id, ActionStatus.APPROVED, "mark_executing")
            self._transition(action, ActionStatus.EXECUTING)

    def mark_completed(self, action_id: str, external_reference: str | None = None) -> None:
        with self._lock:
            action = self._require_in_flight(action_id, ActionStatus.EXECUTING, "mark_completed")
            self._transition(action, ActionStatus.COMPLETED)
            action.external_reference = external_reference
            self._finish(action)

    def mark_failed(self, action_id: str, reason: str) -> None:
        """Fail an in-flight action, either before submission (approved) or during it (executing)."""
        with self._lock:
            action = self._require_in_flight(
                action_id, (ActionStatus.APPROVED, ActionStatus.EXECUTING), "mark_failed"
            )
            self._transition(action, ActionStatus.FAILED)
            action.failure_reason = reason
            self._finish(action)

    def get(self, action_id: str) -> Action | None:
        with self._lock:
            action = self._queued.get(action_id) or self._in_flight.get(action_id)
            if action is None:
                action = next((a for a in self._finished if a.id == action_id), None)
            return copy.copy(action) if action is not None else None

    def pending(self) -> list[Action]:
        with self._lock:
            return [copy.copy(a) for a in self._queued.values() if a.status == ActionStatus.PENDING]

    def open_actions(self) -> list[Action]:
        """Copies of every action not yet completed or failed."""
        with self._lock:
            return [copy.copy(a) for a in list(self._in_flight.values()) + list(self._queued.values())]

    def snapshot(self) -> list[Action]:
        """Copies of every tracked action, oldest first."""
        with self._lock:
            actions = list(self._finished) + list(self._in_flight.values()) + list(self._queued.values())
            return sorted((copy.copy(a) for a in actions), key=lambda a: a.created_at)

    def __len__(self) -> int:
        with self._lock:
            return len(self._queued) + len(self._in_flight)

    # -------------------------------------------------------------------------
    # internals (caller holds the lock)
    # -------------------------------------------------------------------------

    def _find_open(self, key) -> Action | None:
        for action in list(self._queued.values()) + list(self._in_flight.values()):
            if action.dedupe_key == key and action.status in _OPEN_STATUSES:
                return action
        return None

    def _require_pending(self, action_id: str) -> Action:
        action = self._queued.get(action_id)
        if action is None:
            if action_id in self._in_flight or any(a.id == action_id for a in self._finished):
                raise InvalidActionStateError(f"Action {action_id} is no longer pending")
            raise ActionNotFoundError(f"Action {action_id} not found")
        if action.status != ActionStatus.PENDING:
            raise InvalidActionStateError(
                f"Action {action_id} is {action.status.value}, expected pending"
            )
        return action

    def _require_in_flight(self, action_id: str, expected, operation: str) -> Action:
        expected = expected if isinstance(expected, tuple) else (expected,)
        action = self._in_flight.get(action_id)
        if action is None or action.status not in expected:
            current = action.status.value if action is not None else self._describe(action_id)
            log.critical(
                "action_transition_violation",
                agent_id=self.agent_id,
                action_id=action_id,
                operation=operation,
                current=current,
            )
            raise ConcurrencyViolationError(
                f"{operation} on action {action_id} in state {current}"
            )
        return action

    def _describe(self, action_id: str) -> str:
        if action_id in self._queued:
            return f"{self._queued[action_id].status.value} (not drained)"
        finished = next((a for a in self._finished if a.id == action_id), None)
        if finished is not None:
            return finished.status.value
        return "unknown"

    def _finish(self, action: Action) -> None:
        del self._in_flight[action.id]
        self._finished.append(action)

    @staticmethod
    def _transition(action: Action, status: ActionStatus) -> None:
        action.status = status
        action.updated_at = datetime.now(timezone.utc)
