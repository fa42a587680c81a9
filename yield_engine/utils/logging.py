"""
Structured logging for the agent engine.

Everything goes through structlog: engine code logs snake_case events via
`get_logger(__name__)`, and stdlib loggers (uvicorn, apscheduler, httpx,
sqlalchemy) are rendered by the same formatter. Context bound with
`agent_context` is merged into every event logged inside it.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Iterator

import structlog

from yield_engine.config import settings

# Library loggers and the level they are held to
LIBRARY_LOG_LEVELS = {
    "uvicorn.access": logging.WARNING,
    "uvicorn.error": logging.INFO,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "apscheduler": logging.INFO,
}


def _filter_by_level(logger, method_name, event_dict):
    # APScheduler can emit through a None logger
    if logger is None:
        return event_dict
    return structlog.stdlib.filter_by_level(logger, method_name, event_dict)


def _renderer() -> structlog.typing.Processor:
    if settings.logging.format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def setup_logging() -> None:
    """Configure structlog and route stdlib logging through its formatter."""
    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            timestamper,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            _filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            timestamper,
            structlog.processors.StackInfoRenderer(),
        ],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(),
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.logging.level.upper()))

    for name, level in LIBRARY_LOG_LEVELS.items():
        library_logger = logging.getLogger(name)
        library_logger.setLevel(level)
        library_logger.propagate = True


@contextmanager
def agent_context(agent_id: str, principal: str | None = None) -> Iterator[None]:
    """Bind an agent (and its principal) to every event logged in this block."""
    context = {"agent_id": agent_id}
    if principal is not None:
        context["principal"] = principal
    with structlog.contextvars.bound_contextvars(**context):
        yield


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance."""
    return structlog.get_logger(name)
