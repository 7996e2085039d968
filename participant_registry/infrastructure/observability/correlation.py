"""Request correlation ids.

The id of the request being served lives in a ContextVar, so every
coroutine and task the request starts sees it. Ids are uuid7 strings, like
document ids, and therefore sort by creation time.
"""

from __future__ import annotations

from contextvars import ContextVar, Token
from typing import Any

from uuid6 import uuid7

_current: ContextVar[str | None] = ContextVar(
    "registry_correlation_id", default=None
)


def new_correlation_id() -> str:
    """Return a fresh correlation id."""
    return str(uuid7())


def current_correlation_id() -> str | None:
    """Correlation id of the request being served, None outside a request."""
    return _current.get()


def bind_correlation_id(correlation_id: str) -> Token[str | None]:
    """Make correlation_id current until the token is passed to unbind."""
    return _current.set(correlation_id)


def unbind_correlation_id(token: Token[str | None]) -> None:
    _current.reset(token)


def add_correlation_id(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """structlog processor stamping the current correlation id on each event."""
    correlation_id = _current.get()
    if correlation_id is not None:
        event_dict.setdefault("correlation_id", correlation_id)
    return event_dict
