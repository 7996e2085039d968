"""Live list controller.

Keeps a consumer-visible, ordered and paginated view of one collection in
sync with the store. Every change to the visible window is reported as

    on_change(document, new_index, old_index, change_type)

with indices relative to the window at the time of the event, so replaying
the events in arrival order reconstructs the current list exactly. A move
is reported as MODIFIED with new_index != old_index; old_index is -1 for
additions and new_index is -1 for removals.

Paging: the window grows by one page per load_more() call. The controller
re-subscribes with the larger window and diffs the new initial snapshot
against what the consumer already has, so documents that did not change
produce no events. The order is total (document id breaks ties), so
advancing is deterministic and gap-free.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Generic, TypeVar

import structlog

from participant_registry.application.ports.document_store import (
    DocumentStoreProtocol,
    SubscriptionProtocol,
)
from participant_registry.domain.models.change import (
    ChangeType,
    DocumentChange,
    DocumentSnapshot,
    QuerySnapshot,
    diff_documents,
)
from participant_registry.domain.models.query import (
    FilterInput,
    QuerySpec,
    SorterInput,
    build_filters,
    build_sort_fields,
)

T = TypeVar("T")

ChangeListener = Callable[[T, int, int, ChangeType], None]

logger = structlog.get_logger()


class LiveListController(Generic[T]):
    """Paginated live view of a filtered and sorted collection.

    Attributes:
        collection: Collection being watched.
        query: Normalized filter and sort order, without the window limit.
        page_size: Documents per page, None for an unbounded window.
    """

    def __init__(
        self,
        store: DocumentStoreProtocol,
        collection: str,
        on_change: ChangeListener[T],
        decoder: Callable[[DocumentSnapshot], T],
        filter: FilterInput = None,
        sorter: SorterInput = None,
        page_size: int | None = None,
        on_error: Callable[[Exception], None] | None = None,
    ) -> None:
        """Subscribe to the first page.

        Must be called with a running event loop.

        Args:
            store: Document store to subscribe to.
            collection: Collection to list.
            on_change: Receives every change to the visible window.
            decoder: Converts a snapshot to the consumer's value type.
            filter: Mapping of field to required value or (operator, value)
                pair, or a sequence of FieldFilter.
            sorter: Sort fields, most significant first.
            page_size: Documents per page, None for no paging.
            on_error: Receives the store error that terminates the list.

        Raises:
            ValueError: If page_size is not positive or the filter is invalid.
        """
        if page_size is not None and page_size < 1:
            raise ValueError(f"page_size must be positive, got {page_size}")

        self._store = store
        self.collection = collection
        self.query = QuerySpec(
            filters=build_filters(filter),
            order_by=build_sort_fields(sorter),
        )
        self.page_size = page_size
        self._on_change = on_change
        self._on_error = on_error
        self._decoder = decoder

        self._pages = 1
        self._visible: list[DocumentSnapshot] = []
        self._has_more = False
        self._stopped = False
        self._reconcile_next = True
        self._log = logger.bind(component="live_list", collection=collection)
        self._subscription: SubscriptionProtocol = self._subscribe()

    @property
    def pages(self) -> int:
        """Number of pages currently requested."""
        return self._pages

    @property
    def window(self) -> int | None:
        """Maximum number of visible documents, None if unbounded."""
        if self.page_size is None:
            return None
        return self.page_size * self._pages

    @property
    def has_more(self) -> bool:
        """Whether the last snapshot filled the window, so another page may exist."""
        return self._has_more

    @property
    def active(self) -> bool:
        """Whether the list may still deliver events."""
        return not self._stopped

    @property
    def documents(self) -> list[T]:
        """Current visible window, decoded, in list order."""
        return [self._decoder(snapshot) for snapshot in self._visible]

    @property
    def snapshots(self) -> tuple[DocumentSnapshot, ...]:
        """Current visible window as raw snapshots."""
        return tuple(self._visible)

    def load_more(self) -> None:
        """Grow the window by one page.

        Raises:
            RuntimeError: If the list was stopped or failed.
        """
        if self._stopped:
            raise RuntimeError("Live list is no longer active")
        if self.page_size is None:
            return

        self._pages += 1
        self._subscription.unsubscribe()
        self._reconcile_next = True
        self._subscription = self._subscribe()
        self._log.debug("live_list_page_requested", pages=self._pages)

    def stop(self) -> None:
        """Cancel the subscription; no event is delivered afterwards. Idempotent."""
        if self._stopped:
            return
        self._stopped = True
        self._subscription.unsubscribe()
        self._log.debug("live_list_stopped")

    def _subscribe(self) -> SubscriptionProtocol:
        return self._store.watch_query(
            self.collection,
            self.query.with_limit(self.window),
            self._handle_snapshot,
            self._handle_error,
        )

    def _handle_snapshot(self, snapshot: QuerySnapshot) -> None:
        if self._stopped:
            return

        changes: list[DocumentChange] | tuple[DocumentChange, ...]
        if self._reconcile_next:
            # First snapshot of a (re)subscription: diff against what the
            # consumer already holds instead of replaying every document.
            changes = diff_documents(self._visible, snapshot.documents)
            self._reconcile_next = False
        else:
            changes = snapshot.changes

        self._visible = list(snapshot.documents)
        window = self.window
        self._has_more = window is not None and len(snapshot) >= window

        for change in changes:
            if self._stopped:
                return
            self._on_change(
                self._decoder(change.document),
                change.new_index,
                change.old_index,
                change.type,
            )

    def _handle_error(self, error: Exception) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._log.warning("live_list_failed", error=str(error))
        if self._on_error is not None:
            self._on_error(error)
