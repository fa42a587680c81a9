"""Custom exceptions for the yield agent engine."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from yield_engine.services.authorization.grant import DenialReason


class YieldEngineError(Exception):
    """Base exception for agent engine errors."""
    pass


class DataUnavailableReason(str, Enum):
    """Why a market snapshot could not be produced."""
    STALE = "stale"
    UNAVAILABLE = "unavailable"


class DataUnavailableError(YieldEngineError):
    """Raised when a market snapshot cannot be fetched. Recoverable on the next cycle."""

    def __init__(self, reason: DataUnavailableReason, message: str = ""):
        self.reason = reason
        super().__init__(message or f"Market data {reason.value}")


class PolicyViolationError(YieldEngineError):
    """Raised when an action would exceed a configured position limit."""

    def __init__(self, limit: str, message: str):
        self.limit = limit
        super().__init__(message)


class AuthorizationDeniedError(YieldEngineError):
    """Raised when a grant does not cover an action."""

    def __init__(self, reason: DenialReason, message: str = ""):
        self.reason = reason
        super().__init__(message or reason.value)


class ExecutionFailureError(YieldEngineError):
    """Raised when the execution gateway reports a failed submission."""
    pass


class ConcurrencyViolationError(YieldEngineError):
    """
    Raised on an out-of-order action status transition.

    Indicates a programming error. The owning agent is halted rather than
    allowed to continue with corrupted queue state.
    """
    pass


class ConfigValidationError(YieldEngineError):
    """Raised when an agent configuration update is rejected."""

    def __init__(self, message: str, errors: list[dict] | None = None):
        self.errors = errors or []
        super().__init__(message)


class AgentNotFoundError(YieldEngineError):
    """Raised when no agent is registered under the given id."""
    pass


class ActionNotFoundError(YieldEngineError):
    """Raised when an action id is not present in a queue."""
    pass


class InvalidActionStateError(YieldEngineError):
    """Raised when approve/reject is requested for an action that is no longer pending."""
    pass
