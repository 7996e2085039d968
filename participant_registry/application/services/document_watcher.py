"""Single-document watcher.

Watches one document and hands its decoded value to the consumer on every
change. A missing document is reported as DocumentNotFoundError through
the error callback instead of delivering an empty value; the watch stays
open, so the document is delivered if it is created later. A store error
terminates the watcher.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Generic, TypeVar

import structlog

from participant_registry.application.ports.document_store import (
    DocumentRef,
    DocumentStoreProtocol,
)
from participant_registry.domain.errors.document import DocumentNotFoundError
from participant_registry.domain.models.change import DocumentSnapshot

T = TypeVar("T")

logger = structlog.get_logger()


class DocumentWatcher(Generic[T]):
    """Live view of one document.

    Attributes:
        ref: The watched document.
    """

    def __init__(
        self,
        store: DocumentStoreProtocol,
        ref: DocumentRef,
        on_next: Callable[[T], None],
        on_error: Callable[[Exception], None] | None,
        decoder: Callable[[DocumentSnapshot], T],
    ) -> None:
        """Start watching ref.

        Must be called with a running event loop.

        Args:
            store: Document store to subscribe to.
            ref: Document to watch.
            on_next: Receives the decoded document on every change.
            on_error: Receives DocumentNotFoundError while the document is
                absent, and the terminal store error if the watch fails.
            decoder: Converts a snapshot to the consumer's value type.
        """
        self.ref = ref
        self._on_next = on_next
        self._on_error = on_error
        self._decoder = decoder
        self._stopped = False
        self._log = logger.bind(component="document_watcher", document=str(ref))
        self._subscription = store.watch_document(
            ref, self._handle_snapshot, self._handle_error
        )

    @property
    def active(self) -> bool:
        """Whether the watcher may still deliver values."""
        return not self._stopped

    def cancel(self) -> None:
        """Stop delivery and release the subscription. Idempotent."""
        if self._stopped:
            return
        self._stopped = True
        self._subscription.unsubscribe()
        self._log.debug("document_watch_cancelled")

    # Callable handle, so a watcher can be used where an unsubscribe
    # function is expected.
    __call__ = cancel

    def _handle_snapshot(self, snapshot: DocumentSnapshot) -> None:
        if self._stopped:
            return
        if not snapshot.exists:
            if self._on_error is not None:
                self._on_error(DocumentNotFoundError(snapshot.collection, snapshot.id))
            return
        self._on_next(self._decoder(snapshot))

    def _handle_error(self, error: Exception) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._log.warning("document_watch_failed", error=str(error))
        if self._on_error is not None:
            self._on_error(error)
