"""structlog setup for the participant registry.

configure_logging() runs once in the API lifespan; until then structlog's
defaults apply, which is what the test suite sees.

ENVIRONMENT=production renders one JSON object per line, any other value
renders for a terminal. LOG_LEVEL sets the threshold (default INFO).

Events are snake_case verbs in the past tense ("participant_moved"), with
the document id and collection bound as context rather than formatted into
the event name.
"""

from __future__ import annotations

import logging
import os

import structlog
from structlog.typing import Processor

from participant_registry.infrastructure.observability.correlation import (
    add_correlation_id,
)


def _level_from_env() -> int:
    level = logging.getLevelName(os.environ.get("LOG_LEVEL", "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(environment: str | None = None) -> None:
    """Configure structlog processors and rendering.

    Args:
        environment: "production" for JSON lines; defaults to the
            ENVIRONMENT variable, then "development".
    """
    environment = environment or os.environ.get("ENVIRONMENT", "development")

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_correlation_id,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if environment == "production":
        processors.append(structlog.processors.dict_tracebacks)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(_level_from_env()),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def service_logger(service: object, component: str) -> structlog.BoundLogger:
    """Logger bound to a service instance's class name and component."""
    return structlog.get_logger().bind(
        service=type(service).__name__, component=component
    )
