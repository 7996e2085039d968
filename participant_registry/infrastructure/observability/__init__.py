"""Logging and request correlation for the participant registry."""

from participant_registry.infrastructure.observability.correlation import (
    add_correlation_id,
    bind_correlation_id,
    current_correlation_id,
    new_correlation_id,
    unbind_correlation_id,
)
from participant_registry.infrastructure.observability.logging import (
    configure_logging,
    service_logger,
)

__all__: list[str] = [
    "add_correlation_id",
    "bind_correlation_id",
    "configure_logging",
    "current_correlation_id",
    "new_correlation_id",
    "service_logger",
    "unbind_correlation_id",
]
