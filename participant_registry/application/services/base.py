"""Logging mixin shared by the registry's application services."""

import structlog

from participant_registry.infrastructure.observability import service_logger


class LoggingMixin:
    """Gives a service a structlog logger bound to its class name.

    Subclasses call _init_logger() from __init__ and open every operation
    with _log_operation(), which binds the operation name and any ids the
    operation concerns. The correlation id of the current request is added
    by the logging configuration, not here.
    """

    _log: structlog.BoundLogger

    def _init_logger(self, component: str = "registry") -> None:
        self._log = service_logger(self, component)

    def _log_operation(self, operation: str, **context: object) -> structlog.BoundLogger:
        """Logger for one call of operation, bound with context."""
        return self._log.bind(operation=operation, **context)
