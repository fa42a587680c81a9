"""
Execution service for approved agent actions.

Drains an agent's approved actions and, for each one:
1. Re-checks the grant for grant-approved actions (time-of-use check)
2. Marks it executing and submits it through the gateway, exactly once
3. Marks it completed or failed and reports back to the agent
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from yield_engine.agents.state import Action, ActionStatus, ApprovalSource
from yield_engine.config import settings
from yield_engine.exceptions import ConcurrencyViolationError
from yield_engine.services.authorization import AuthorizationStore, Grant
from yield_engine.services.execution.gateway import (
    ExecutionGateway,
    GatewayError,
    TxResult,
    UserApprovalToken,
)
from yield_engine.services.trade_history import TradeHistory, TradeRecord, TradeStatus
from yield_engine.utils.logging import agent_context, get_logger
from yield_engine.utils.metrics import action_executions

if TYPE_CHECKING:
    from yield_engine.agents.runtime import AgentRuntime

log = get_logger(__name__)


def get_gateway() -> ExecutionGateway:
    """Get the configured execution gateway."""
    if settings.execution.gateway != "paper":
        log.warning("gateway_fallback_to_paper", requested=settings.execution.gateway)
    from yield_engine.services.execution.paper_gateway import PaperExecutionGateway
    return PaperExecutionGateway()


@dataclass(frozen=True)
class ExecutionOutcome:
    action_id: str
    success: bool
    external_reference: str | None = None
    error: str | None = None


class ExecutionService:
    """Dispatches approved actions to the execution gateway."""

    def __init__(
        self,
        authorization: AuthorizationStore,
        gateway: ExecutionGateway | None = None,
        trade_history: TradeHistory | None = None,
    ):
        self.authorization = authorization
        self.gateway = gateway or get_gateway()
        self.trade_history = trade_history or TradeHistory()

    async def execute_approved(self, runtime: AgentRuntime) -> list[ExecutionOutcome]:
        """
        Execute everything the agent has approved, in enqueue order.

        A drained action always ends completed or failed. An unexpected error
        fails the action it happened on and the run continues with the next.

        Raises:
            ConcurrencyViolationError: the queue saw an out-of-order transition.
                Actions from this drain that were not reached are failed first.
        """
        actions = runtime.queue.drain_approved()
        if not actions:
            return []

        with agent_context(runtime.agent_id, runtime.principal):
            log.info(
                "executing_actions",
                agent_id=runtime.agent_id,
                action_count=len(actions),
                gateway=self.gateway.name,
            )

            outcomes = []
            for index, action in enumerate(actions):
                try:
                    outcomes.append(await self._execute_single(runtime, action))
                except ConcurrencyViolationError:
                    for remaining in actions[index + 1:]:
                        self._abandon(runtime, remaining, "aborted: queue transition violation")
                    raise
                except Exception as e:
                    log.error(
                        "action_execution_error",
                        agent_id=runtime.agent_id,
                        action_id=action.id,
                        error=str(e),
                        exc_info=True,
                    )
                    outcomes.append(self._abandon(runtime, action, f"unexpected: {e}"))
            return outcomes

    def _abandon(self, runtime: AgentRuntime, action: Action, reason: str) -> ExecutionOutcome:
        """Fail a drained action that did not reach a terminal state."""
        current = runtime.queue.get(action.id)
        if current is not None and current.status in (ActionStatus.APPROVED, ActionStatus.EXECUTING):
            runtime.queue.mark_failed(action.id, reason)
            runtime.record_execution(action, success=False, error=reason)
            action_executions.labels(outcome="failed").inc()
        return ExecutionOutcome(action_id=action.id, success=False, error=reason)

    async def _execute_single(self, runtime: AgentRuntime, action: Action) -> ExecutionOutcome:
        authority = self._resolve_authority(runtime, action)
        if not isinstance(authority, (Grant, UserApprovalToken)):
            runtime.queue.mark_failed(action.id, authority)
            runtime.record_execution(action, success=False, error=authority)
            action_executions.labels(outcome="denied").inc()
            return ExecutionOutcome(action_id=action.id, success=False, error=authority)

        runtime.queue.mark_executing(action.id)
        record = self.trade_history.record(TradeRecord(
            agent_id=runtime.agent_id,
            principal=runtime.principal,
            action=action.type.value,
            protocol=action.protocol,
            pool=action.pool,
            amount=action.amount,
            reason=action.reason,
            action_id=action.id,
            confidence=action.confidence,
        ))

        log.info(
            "submitting_action",
            agent_id=runtime.agent_id,
            action_id=action.id,
            action_type=action.type.value,
            protocol=action.protocol,
            pool=action.pool,
            amount=action.amount,
            via=action.approved_via.value if action.approved_via else None,
        )

        runtime.begin_execution()
        try:
            result = await self.gateway.submit(action, authority)
        except GatewayError as e:
            result = TxResult(success=False, error_message=f"{e.kind.value}: {e}")
        except Exception as e:
            log.error(
                "gateway_submit_error",
                agent_id=runtime.agent_id,
                action_id=action.id,
                error=str(e),
                exc_info=True,
            )
            result = TxResult(success=False, error_message=f"unexpected: {e}")
        finally:
            runtime.finish_execution()

        if result.success:
            runtime.queue.mark_completed(action.id, result.external_reference)
            self.trade_history.update_status(record.id, TradeStatus.SUCCESS, tx_hash=result.external_reference)
            runtime.record_execution(action, success=True, external_reference=result.external_reference)
            action_executions.labels(outcome="success").inc()
            return ExecutionOutcome(action.id, True, external_reference=result.external_reference)

        error = result.error_message or "execution failed"
        runtime.queue.mark_failed(action.id, error)
        self.trade_history.update_status(record.id, TradeStatus.FAILED, error=error)
        runtime.record_execution(action, success=False, error=error)
        action_executions.labels(outcome="failed").inc()
        log.warning("action_failed", agent_id=runtime.agent_id, action_id=action.id, error=error)
        return ExecutionOutcome(action.id, False, error=error)

    def _resolve_authority(self, runtime: AgentRuntime, action: Action) -> Grant | UserApprovalToken | str:
        """Authority to submit under, or the failure reason when the grant no longer covers the action."""
        if action.approved_via != ApprovalSource.GRANT:
            return UserApprovalToken(principal=runtime.principal, action_id=action.id)

        decision = self.authorization.authorize(runtime.principal, action.amount, action.target)
        if decision.authorized:
            return decision.grant

        log.warning(
            "execution_authorization_denied",
            agent_id=runtime.agent_id,
            action_id=action.id,
            reason=decision.reason.value,
            detail=decision.detail,
        )
        return f"authorization_denied:{decision.reason.value}"
