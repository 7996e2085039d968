"""Subscription fan-out shared by the document store implementations.

Stores register a subscription, prime it with the current state, and
publish the new state of every document or collection a commit touched.
The registry turns that into per-subscription snapshots and delivers them
through the event loop.

Delivery rules:
- Callbacks run via loop.call_soon, so deliveries of one subscription
  keep commit order and never run inside the store's commit.
- Publishes that arrive before a subscription is primed are ignored; the
  priming state already reflects them.
- A delivery scheduled before unsubscribe() is dropped when it runs.
- An error closes the subscription; it is delivered after any snapshot
  already scheduled.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import cast

import structlog

from participant_registry.application.ports.document_store import (
    DocumentRef,
    ErrorListener,
    QueryListener,
    SnapshotListener,
)
from participant_registry.domain.models.change import (
    DocumentSnapshot,
    QuerySnapshot,
    diff_documents,
)
from participant_registry.domain.models.query import QuerySpec

logger = structlog.get_logger()


class Subscription:
    """Base subscription with cancel and error semantics."""

    def __init__(
        self,
        registry: SubscriptionRegistry,
        on_error: ErrorListener | None,
    ) -> None:
        self._registry = registry
        self._on_error = on_error
        self._loop = asyncio.get_running_loop()
        self._cancelled = False
        self._closed = False
        self._primed = False

    @property
    def active(self) -> bool:
        """Whether the subscription may still deliver callbacks."""
        return not self._cancelled and not self._closed

    @property
    def primed(self) -> bool:
        """Whether the initial snapshot has been produced."""
        return self._primed

    def unsubscribe(self) -> None:
        """Stop delivery; pending deliveries are dropped."""
        if self._cancelled:
            return
        self._cancelled = True
        self._registry.remove(self)

    def fail(self, error: Exception) -> None:
        """Close the subscription and deliver error to its error listener."""
        if not self.active:
            return
        self._closed = True
        self._registry.remove(self)
        self._loop.call_soon(self._deliver_error, error)

    def _schedule(self, payload: object) -> None:
        self._loop.call_soon(self._deliver, payload)

    def _deliver(self, payload: object) -> None:
        if self._cancelled:
            return
        self._dispatch(payload)

    def _dispatch(self, payload: object) -> None:
        raise NotImplementedError

    def _deliver_error(self, error: Exception) -> None:
        if self._cancelled:
            return
        if self._on_error is None:
            logger.warning(
                "subscription_error_unhandled",
                subscription=repr(self),
                error=str(error),
            )
            return
        self._on_error(error)


class DocumentSubscription(Subscription):
    """Subscription to a single document."""

    def __init__(
        self,
        registry: SubscriptionRegistry,
        ref: DocumentRef,
        on_snapshot: SnapshotListener,
        on_error: ErrorListener | None,
    ) -> None:
        super().__init__(registry, on_error)
        self.ref = ref
        self._on_snapshot = on_snapshot

    def prime(self, snapshot: DocumentSnapshot) -> None:
        """Deliver the initial snapshot."""
        if not self.active or self._primed:
            return
        self._primed = True
        self._schedule(snapshot)

    def publish(self, snapshot: DocumentSnapshot) -> None:
        """Deliver the document's state after a commit."""
        if not self.active or not self._primed:
            return
        self._schedule(snapshot)

    def _dispatch(self, payload: object) -> None:
        self._on_snapshot(cast(DocumentSnapshot, payload))

    def __repr__(self) -> str:
        return f"DocumentSubscription({self.ref})"


class QuerySubscription(Subscription):
    """Subscription to a query result window over one collection."""

    def __init__(
        self,
        registry: SubscriptionRegistry,
        collection: str,
        query: QuerySpec,
        on_snapshot: QueryListener,
        on_error: ErrorListener | None,
    ) -> None:
        super().__init__(registry, on_error)
        self.collection = collection
        self.query = query
        self._on_snapshot = on_snapshot
        self._window: list[DocumentSnapshot] = []

    def prime(self, documents: Iterable[DocumentSnapshot]) -> None:
        """Deliver the initial window; every document is reported as added."""
        if not self.active or self._primed:
            return
        self._primed = True
        self._window = self.query.apply(documents)
        self._schedule(
            QuerySnapshot(
                documents=tuple(self._window),
                changes=tuple(diff_documents([], self._window)),
            )
        )

    def publish(self, documents: Iterable[DocumentSnapshot]) -> None:
        """Recompute the window from the collection and deliver any changes."""
        if not self.active or not self._primed:
            return
        window = self.query.apply(documents)
        changes = diff_documents(self._window, window)
        if not changes:
            return
        self._window = window
        self._schedule(QuerySnapshot(documents=tuple(window), changes=tuple(changes)))

    def _dispatch(self, payload: object) -> None:
        self._on_snapshot(cast(QuerySnapshot, payload))

    def __repr__(self) -> str:
        return f"QuerySubscription({self.collection})"


class SubscriptionRegistry:
    """Active subscriptions of one store."""

    def __init__(self) -> None:
        self._documents: dict[DocumentRef, list[DocumentSubscription]] = {}
        self._queries: dict[str, list[QuerySubscription]] = {}

    def watch_document(
        self,
        ref: DocumentRef,
        on_snapshot: SnapshotListener,
        on_error: ErrorListener | None,
    ) -> DocumentSubscription:
        """Register an unprimed document subscription."""
        subscription = DocumentSubscription(self, ref, on_snapshot, on_error)
        self._documents.setdefault(ref, []).append(subscription)
        return subscription

    def watch_query(
        self,
        collection: str,
        query: QuerySpec,
        on_snapshot: QueryListener,
        on_error: ErrorListener | None,
    ) -> QuerySubscription:
        """Register an unprimed query subscription."""
        subscription = QuerySubscription(self, collection, query, on_snapshot, on_error)
        self._queries.setdefault(collection, []).append(subscription)
        return subscription

    def remove(self, subscription: Subscription) -> None:
        """Forget a cancelled or failed subscription."""
        if isinstance(subscription, DocumentSubscription):
            subscriptions = self._documents.get(subscription.ref, [])
        elif isinstance(subscription, QuerySubscription):
            subscriptions = self._queries.get(subscription.collection, [])
        else:
            return
        if subscription in subscriptions:
            subscriptions.remove(subscription)

    def is_watched(self, ref: DocumentRef) -> bool:
        """Whether any document subscription targets ref."""
        return bool(self._documents.get(ref))

    def has_queries(self, collection: str) -> bool:
        """Whether any query subscription targets collection."""
        return bool(self._queries.get(collection))

    def publish_document(self, snapshot: DocumentSnapshot) -> None:
        """Fan out a committed document state."""
        ref = DocumentRef(snapshot.collection, snapshot.id)
        for subscription in list(self._documents.get(ref, [])):
            subscription.publish(snapshot)

    def publish_collection(
        self, collection: str, documents: Iterable[DocumentSnapshot]
    ) -> None:
        """Fan out the committed state of a whole collection."""
        subscriptions = list(self._queries.get(collection, []))
        if not subscriptions:
            return
        documents = list(documents)
        for subscription in subscriptions:
            subscription.publish(documents)

    def fail_collection(self, collection: str, error: Exception) -> None:
        """Close every query subscription on collection with error."""
        for subscription in list(self._queries.get(collection, [])):
            subscription.fail(error)

    def fail_all(self, error: Exception) -> None:
        """Close every subscription with error."""
        for subscriptions in list(self._documents.values()):
            for subscription in list(subscriptions):
                subscription.fail(error)
        for query_subscriptions in list(self._queries.values()):
            for query_subscription in list(query_subscriptions):
                query_subscription.fail(error)

    def __len__(self) -> int:
        return sum(len(s) for s in self._documents.values()) + sum(
            len(s) for s in self._queries.values()
        )
