"""Document store port.

This module defines the abstract interface of the external document
database the registry is built on: point reads and writes, atomic
multi-document batches, serializable transactions retried on conflict,
and subscriptions that deliver an initial snapshot followed by ordered
incremental changes.

Developer Golden Rules:
1. ALL OR NOTHING - Batches and transactions apply every write or none
2. FAIL LOUD - Stores raise DocumentNotFoundError, TransactionConflictError
   or StoreUnavailableError; they never return partial results
3. SIDE-EFFECT FREE BODIES - Transaction functions may run several times
4. CANCEL MEANS SILENCE - No callback runs after unsubscribe() returns
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar

from participant_registry.domain.models.change import DocumentSnapshot, QuerySnapshot
from participant_registry.domain.models.query import QuerySpec

T = TypeVar("T")

DEFAULT_TRANSACTION_ATTEMPTS = 5


@dataclass(frozen=True)
class DocumentRef:
    """Reference to a document by collection and id."""

    collection: str
    id: str

    def __str__(self) -> str:
        return f"{self.collection}/{self.id}"


class _ServerTimestamp:
    """Sentinel resolved to the commit time by the store."""

    _instance: _ServerTimestamp | None = None

    def __new__(cls) -> _ServerTimestamp:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class Increment:
    """Atomically add amount to a numeric field (missing fields count as 0)."""

    amount: int | float


@dataclass(frozen=True)
class ArrayUnion:
    """Atomically append values not already present to an array field."""

    values: tuple[Any, ...]

    def __init__(self, values: Sequence[Any]) -> None:
        object.__setattr__(self, "values", tuple(values))


SnapshotListener = Callable[[DocumentSnapshot], None]
QueryListener = Callable[[QuerySnapshot], None]
ErrorListener = Callable[[Exception], None]


class SubscriptionProtocol(Protocol):
    """Cancel handle of a live subscription."""

    @property
    def active(self) -> bool:
        """Whether the subscription may still deliver callbacks."""
        ...

    def unsubscribe(self) -> None:
        """Stop delivery.

        After this returns no callback of the subscription runs, including
        deliveries that were already scheduled. Idempotent.
        """
        ...


class WriteBatchProtocol(Protocol):
    """Accumulates writes across documents and commits them atomically."""

    def set(
        self, ref: DocumentRef, data: dict[str, Any], merge: bool = False
    ) -> WriteBatchProtocol:
        """Create or overwrite a document (or merge into it if merge=True)."""
        ...

    def update(self, ref: DocumentRef, data: dict[str, Any]) -> WriteBatchProtocol:
        """Merge fields into an existing document."""
        ...

    def delete(self, ref: DocumentRef) -> WriteBatchProtocol:
        """Delete a document (no error if already absent)."""
        ...

    async def commit(self) -> None:
        """Apply all accumulated writes atomically.

        Raises:
            DocumentNotFoundError: If an updated document is absent at commit.
            StoreUnavailableError: If the backend cannot be reached.
        """
        ...


class TransactionProtocol(Protocol):
    """Handle passed to a transaction function.

    Reads observe a consistent view; writes are staged and applied at
    commit. All reads must happen before the first write.
    """

    async def get(self, ref: DocumentRef) -> DocumentSnapshot:
        """Read a document as part of the transaction."""
        ...

    def set(self, ref: DocumentRef, data: dict[str, Any], merge: bool = False) -> None:
        """Stage a create or overwrite."""
        ...

    def update(self, ref: DocumentRef, data: dict[str, Any]) -> None:
        """Stage a merge into an existing document."""
        ...

    def delete(self, ref: DocumentRef) -> None:
        """Stage a delete."""
        ...


TransactionFunction = Callable[[TransactionProtocol], Awaitable[T]]


class DocumentStoreProtocol(Protocol):
    """Protocol for the document store collaborator.

    Implementations may use an in-memory map, a SQL database, or a hosted
    document database.
    """

    def new_id(self, collection: str) -> str:
        """Generate a fresh document id for the collection."""
        ...

    async def get(self, ref: DocumentRef) -> DocumentSnapshot:
        """Read a document; the snapshot reports exists=False if absent."""
        ...

    async def set(
        self, ref: DocumentRef, data: dict[str, Any], merge: bool = False
    ) -> None:
        """Create or overwrite a document."""
        ...

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        """Create a document under a store-assigned id and return the id."""
        ...

    async def update(self, ref: DocumentRef, data: dict[str, Any]) -> None:
        """Merge fields into an existing document.

        Raises:
            DocumentNotFoundError: If the document does not exist.
        """
        ...

    async def delete(self, ref: DocumentRef) -> None:
        """Delete a document (no error if already absent)."""
        ...

    def batch(self) -> WriteBatchProtocol:
        """Start an atomic write batch."""
        ...

    async def run_transaction(
        self,
        function: TransactionFunction[T],
        max_attempts: int = DEFAULT_TRANSACTION_ATTEMPTS,
    ) -> T:
        """Run function in a serializable transaction.

        The function is re-executed when a concurrent writer changed any
        document it read.

        Returns:
            The function's return value from the committed attempt.

        Raises:
            TransactionConflictError: If every attempt lost a race.
        """
        ...

    def watch_document(
        self,
        ref: DocumentRef,
        on_snapshot: SnapshotListener,
        on_error: ErrorListener | None = None,
    ) -> SubscriptionProtocol:
        """Subscribe to one document.

        Delivers the current snapshot, then a snapshot after every commit
        that touched the document. Must be called with a running event loop.
        """
        ...

    def watch_query(
        self,
        collection: str,
        query: QuerySpec,
        on_snapshot: QueryListener,
        on_error: ErrorListener | None = None,
    ) -> SubscriptionProtocol:
        """Subscribe to a query result window.

        Delivers the initial window (every document reported as added),
        then a snapshot with the indexed changes after every commit that
        altered the window. Must be called with a running event loop.
        """
        ...
