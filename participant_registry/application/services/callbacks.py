"""Completion-callback adapter for lifecycle operations.

Lifecycle operations are coroutines. Collaborators built around completion
callbacks (UI event handlers, for instance) schedule them with dispatch():
the operation runs as a task and exactly one of on_success or on_error is
called when it finishes. Failures never raise at the call site.

Usage:
    dispatch(
        service.add_new({"name": "Alice"}),
        on_success=lambda doc_id: show(doc_id),
        on_error=lambda error: report(error),
    )
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

T = TypeVar("T")

logger = structlog.get_logger()


def dispatch(
    operation: Awaitable[T],
    on_success: Callable[[T], None] | None = None,
    on_error: Callable[[Exception], None] | None = None,
) -> asyncio.Task[T]:
    """Run operation in the background and report its outcome via callbacks.

    Must be called with a running event loop. Cancelling the returned task
    cancels the operation; neither callback runs in that case.

    Args:
        operation: Awaitable returned by a lifecycle operation.
        on_success: Called with the operation's result.
        on_error: Called with the operation's exception. Without it the
            failure is logged.

    Returns:
        The task running the operation.
    """

    async def _run() -> T:
        return await operation

    task = asyncio.ensure_future(_run())

    def _done(finished: asyncio.Task[T]) -> None:
        if finished.cancelled():
            return
        error = finished.exception()
        if error is None:
            if on_success is not None:
                on_success(finished.result())
            return
        if not isinstance(error, Exception):
            raise error
        if on_error is not None:
            on_error(error)
        else:
            logger.warning(
                "operation_failed_without_error_callback",
                error=str(error),
                error_type=type(error).__name__,
            )

    task.add_done_callback(_done)
    return task
