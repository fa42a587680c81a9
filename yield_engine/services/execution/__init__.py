"""Execution of approved actions."""

from yield_engine.services.execution.gateway import (
    ExecutionGateway,
    GatewayError,
    GatewayErrorKind,
    TxResult,
    UserApprovalToken,
)
from yield_engine.services.execution.paper_gateway import PaperExecutionGateway
from yield_engine.services.execution.service import ExecutionOutcome, ExecutionService, get_gateway

__all__ = [
    "ExecutionGateway",
    "ExecutionOutcome",
    "ExecutionService",
    "GatewayError",
    "GatewayErrorKind",
    "PaperExecutionGateway",
    "TxResult",
    "UserApprovalToken",
    "get_gateway",
]
