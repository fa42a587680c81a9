"""
Execution gateway abstraction.

The gateway is the only component that turns an approved action into a
fund movement. It receives the authority the action was approved under:
either the grant that covered it or a token recording a user's manual
approval.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from yield_engine.agents.state import Action
from yield_engine.exceptions import ExecutionFailureError
from yield_engine.services.authorization.grant import Grant


class GatewayErrorKind(str, Enum):
    REJECTED = "rejected"
    NETWORK_FAILURE = "network_failure"
    INSUFFICIENT_FUNDS = "insufficient_funds"


class GatewayError(ExecutionFailureError):
    """Submission failed at the gateway."""

    def __init__(self, kind: GatewayErrorKind, message: str = ""):
        self.kind = kind
        super().__init__(message or kind.value)


@dataclass(frozen=True)
class UserApprovalToken:
    """Proof that a user approved one specific action by hand."""
    principal: str
    action_id: str
    approved_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class TxResult:
    """Result of a gateway submission."""
    success: bool
    external_reference: str | None = None
    error_message: str | None = None
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ExecutionGateway(ABC):
    """
    Abstract gateway for fund movements.

    Implementations:
    - PaperExecutionGateway: local balance simulation
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Gateway name for logging."""
        pass

    @property
    @abstractmethod
    def is_paper(self) -> bool:
        """Whether this is a simulation."""
        pass

    @abstractmethod
    async def submit(self, action: Action, authority: Grant | UserApprovalToken) -> TxResult:
        """
        Submit one action.

        Args:
            action: The approved action (its id is the idempotency key)
            authority: Grant or user approval the action was approved under;
                its `principal` is the wallet the funds belong to

        Returns:
            TxResult with the external transaction reference

        Raises:
            GatewayError: rejected, network failure or insufficient funds
        """
        pass
