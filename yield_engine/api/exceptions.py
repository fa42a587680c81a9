"""Exception handlers mapping engine errors to HTTP responses."""

from fastapi import Request, status
from fastapi.responses import JSONResponse

from yield_engine.exceptions import (
    ActionNotFoundError,
    AgentNotFoundError,
    AuthorizationDeniedError,
    ConfigValidationError,
    DataUnavailableError,
    InvalidActionStateError,
    YieldEngineError,
)

_STATUS_CODES: dict[type[YieldEngineError], int] = {
    AgentNotFoundError: status.HTTP_404_NOT_FOUND,
    ActionNotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidActionStateError: status.HTTP_409_CONFLICT,
    ConfigValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    AuthorizationDeniedError: status.HTTP_403_FORBIDDEN,
    DataUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


async def engine_error_handler(request: Request, exc: YieldEngineError) -> JSONResponse:
    """Convert YieldEngineError to a JSON error body."""
    status_code = next(
        (code for exc_type, code in _STATUS_CODES.items() if isinstance(exc, exc_type)),
        status.HTTP_400_BAD_REQUEST,
    )
    content = {"error": str(exc), "type": exc.__class__.__name__}
    if isinstance(exc, ConfigValidationError) and exc.errors:
        content["details"] = exc.errors
    if isinstance(exc, AuthorizationDeniedError):
        content["reason"] = exc.reason.value
    return JSONResponse(status_code=status_code, content=content)
