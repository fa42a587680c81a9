"""
Paper execution gateway for testing and simulation.

Simulates fund movements locally without touching a chain. Useful for
running the agents end to end and for exercising the execution pipeline.
"""

from collections import defaultdict
from uuid import uuid4

from yield_engine.agents.state import Action, ActionType
from yield_engine.config import settings
from yield_engine.services.authorization.grant import Grant
from yield_engine.services.execution.gateway import (
    ExecutionGateway,
    GatewayError,
    GatewayErrorKind,
    TxResult,
    UserApprovalToken,
)
from yield_engine.utils.logging import get_logger

log = get_logger(__name__)


class PaperExecutionGateway(ExecutionGateway):
    """
    Simulated gateway.

    Maintains local state per principal for:
    - Idle balance
    - Allocations per (protocol, pool)
    - Submitted action ids (a resubmission is rejected)
    """

    def __init__(self, initial_balance: float | None = None):
        self._initial_balance = (
            settings.execution.paper_initial_balance if initial_balance is None else initial_balance
        )
        self._balances: dict[str, float] = defaultdict(lambda: self._initial_balance)
        self._allocations: dict[str, dict[tuple[str, str], float]] = defaultdict(dict)
        self._submitted: set[str] = set()

    @property
    def name(self) -> str:
        return "paper"

    @property
    def is_paper(self) -> bool:
        return True

    def balance(self, principal: str) -> float:
        return self._balances[principal.lower()]

    def allocations(self, principal: str) -> dict[tuple[str, str], float]:
        return dict(self._allocations[principal.lower()])

    async def submit(self, action: Action, authority: Grant | UserApprovalToken) -> TxResult:
        principal = authority.principal.lower()

        if action.id in self._submitted:
            raise GatewayError(GatewayErrorKind.REJECTED, f"Action {action.id} already submitted")
        if action.amount <= 0:
            raise GatewayError(GatewayErrorKind.REJECTED, "Amount must be positive")
        if isinstance(authority, UserApprovalToken) and authority.action_id != action.id:
            raise GatewayError(GatewayErrorKind.REJECTED, "Approval token does not match action")

        self._submitted.add(action.id)
        allocations = self._allocations[principal]
        target = (action.protocol, action.pool)

        if action.type == ActionType.DEPOSIT:
            if self._balances[principal] < action.amount:
                raise GatewayError(
                    GatewayErrorKind.INSUFFICIENT_FUNDS,
                    f"Balance {self._balances[principal]:.2f} < {action.amount:.2f}",
                )
            self._balances[principal] -= action.amount
            allocations[target] = allocations.get(target, 0.0) + action.amount

        elif action.type == ActionType.REBALANCE:
            source = (action.source_protocol, action.source_pool)
            if source not in allocations:
                raise GatewayError(GatewayErrorKind.REJECTED, f"No allocation in {source}")
            allocations.pop(source)
            allocations[target] = allocations.get(target, 0.0) + action.amount

        else:
            if target not in allocations:
                raise GatewayError(GatewayErrorKind.REJECTED, f"No allocation in {target}")
            allocations.pop(target)
            self._balances[principal] += action.amount

        tx_hash = "0x" + uuid4().hex + uuid4().hex
        log.info(
            "paper_action_filled",
            action_id=action.id,
            action_type=action.type.value,
            principal=principal,
            protocol=action.protocol,
            pool=action.pool,
            amount=action.amount,
            tx_hash=tx_hash,
        )
        return TxResult(success=True, external_reference=tx_hash)
