"""In-memory document store stub.

This module provides an in-memory implementation of DocumentStoreProtocol
for development and testing purposes. It follows the hosted store's
semantics closely enough for the lifecycle layer to be exercised end to
end: atomic batches, optimistic transactions retried on conflict,
server timestamps, increments, array unions and live subscriptions.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any, TypeVar

import structlog
from uuid6 import uuid7

from participant_registry.application.ports.document_store import (
    DEFAULT_TRANSACTION_ATTEMPTS,
    DocumentRef,
    DocumentStoreProtocol,
    ErrorListener,
    QueryListener,
    SnapshotListener,
    SubscriptionProtocol,
    TransactionFunction,
)
from participant_registry.domain.errors.store import TransactionConflictError
from participant_registry.domain.models.change import DocumentSnapshot
from participant_registry.domain.models.query import QuerySpec
from participant_registry.infrastructure.document_writes import (
    StagedTransaction,
    StagedWriteBatch,
    WriteKind,
    WriteOp,
    apply_write,
)
from participant_registry.infrastructure.subscriptions import SubscriptionRegistry

T = TypeVar("T")

logger = structlog.get_logger()


class InMemoryDocumentStore(DocumentStoreProtocol):
    """In-memory stub implementation of DocumentStoreProtocol.

    This stub stores documents in memory for development and testing.
    It is NOT suitable for production use.

    Snapshots handed out share their data with the store and must be
    treated as read-only; use DocumentSnapshot.to_dict() for a copy.

    Attributes:
        _collections: Collection name to {document id: snapshot}.
        _version: Last assigned write version.
        _commit_lock: Serializes commits (in-memory equivalent of row locks).
        _failure_mode: Exception raised by every operation when set.
    """

    def __init__(self) -> None:
        """Initialize the stub with empty storage."""
        self._collections: dict[str, dict[str, DocumentSnapshot]] = {}
        self._version = 0
        self._commit_lock = asyncio.Lock()
        self._subscriptions = SubscriptionRegistry()
        self._failure_mode: Exception | None = None
        self._commit_count = 0

    # ------------------------------------------------------------------
    # Point operations
    # ------------------------------------------------------------------

    def new_id(self, collection: str) -> str:
        """Generate a fresh, time-ordered document id."""
        return str(uuid7())

    async def get(self, ref: DocumentRef) -> DocumentSnapshot:
        """Read a document."""
        self._raise_if_failing()
        return self._snapshot(ref)

    async def set(
        self, ref: DocumentRef, data: dict[str, Any], merge: bool = False
    ) -> None:
        """Create or overwrite a document."""
        await self._commit((WriteOp(WriteKind.SET, ref, data, merge),))

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        """Create a document under a generated id."""
        ref = DocumentRef(collection, self.new_id(collection))
        await self._commit((WriteOp(WriteKind.SET, ref, data),))
        return ref.id

    async def update(self, ref: DocumentRef, data: dict[str, Any]) -> None:
        """Merge fields into an existing document."""
        await self._commit((WriteOp(WriteKind.UPDATE, ref, data),))

    async def delete(self, ref: DocumentRef) -> None:
        """Delete a document."""
        await self._commit((WriteOp(WriteKind.DELETE, ref),))

    # ------------------------------------------------------------------
    # Batches and transactions
    # ------------------------------------------------------------------

    def batch(self) -> StagedWriteBatch:
        """Start an atomic write batch."""
        return StagedWriteBatch(self._commit)

    async def run_transaction(
        self,
        function: TransactionFunction[T],
        max_attempts: int = DEFAULT_TRANSACTION_ATTEMPTS,
    ) -> T:
        """Run function with optimistic concurrency control.

        Each attempt records the version of every document it read. The
        commit succeeds only if none of them changed in the meantime;
        otherwise the function is run again.
        """
        for attempt in range(1, max_attempts + 1):
            self._raise_if_failing()
            transaction = StagedTransaction(self.get)
            result = await function(transaction)

            async with self._commit_lock:
                self._raise_if_failing()
                stale = [
                    ref
                    for ref, version in transaction.read_versions.items()
                    if self._snapshot(ref).version != version
                ]
                if not stale:
                    self._apply(transaction.writes)
                    return result

            logger.debug(
                "transaction_conflict",
                attempt=attempt,
                stale_documents=[str(ref) for ref in stale],
            )

        raise TransactionConflictError(attempts=max_attempts)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def watch_document(
        self,
        ref: DocumentRef,
        on_snapshot: SnapshotListener,
        on_error: ErrorListener | None = None,
    ) -> SubscriptionProtocol:
        """Subscribe to one document."""
        subscription = self._subscriptions.watch_document(ref, on_snapshot, on_error)
        if self._failure_mode is not None:
            subscription.fail(self._failure_mode)
        else:
            subscription.prime(self._snapshot(ref))
        return subscription

    def watch_query(
        self,
        collection: str,
        query: QuerySpec,
        on_snapshot: QueryListener,
        on_error: ErrorListener | None = None,
    ) -> SubscriptionProtocol:
        """Subscribe to a query result window."""
        subscription = self._subscriptions.watch_query(
            collection, query, on_snapshot, on_error
        )
        if self._failure_mode is not None:
            subscription.fail(self._failure_mode)
        else:
            subscription.prime(self._collections.get(collection, {}).values())
        return subscription

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _snapshot(self, ref: DocumentRef) -> DocumentSnapshot:
        snapshot = self._collections.get(ref.collection, {}).get(ref.id)
        if snapshot is None:
            return DocumentSnapshot(collection=ref.collection, id=ref.id)
        return snapshot

    async def _commit(self, ops: Sequence[WriteOp]) -> None:
        self._raise_if_failing()
        async with self._commit_lock:
            self._apply(ops)

    def _apply(self, ops: Sequence[WriteOp]) -> None:
        """Stage every write, then make all of them visible at once.

        Must be called with the commit lock held. Raises before touching
        any state if one write cannot be applied.
        """
        now = datetime.now(timezone.utc)
        staged: dict[DocumentRef, DocumentSnapshot] = {}
        for op in ops:
            current = staged[op.ref] if op.ref in staged else self._snapshot(op.ref)
            data = apply_write(op, current.data, now)
            if data is None:
                staged[op.ref] = DocumentSnapshot(op.ref.collection, op.ref.id)
            else:
                self._version += 1
                staged[op.ref] = DocumentSnapshot(
                    op.ref.collection, op.ref.id, data, self._version
                )

        for ref, snapshot in staged.items():
            documents = self._collections.setdefault(ref.collection, {})
            if snapshot.exists:
                documents[ref.id] = snapshot
            else:
                documents.pop(ref.id, None)
        self._commit_count += 1

        for snapshot in staged.values():
            self._subscriptions.publish_document(snapshot)
        for collection in {ref.collection for ref in staged}:
            self._subscriptions.publish_collection(
                collection, self._collections.get(collection, {}).values()
            )

    def _raise_if_failing(self) -> None:
        if self._failure_mode is not None:
            raise self._failure_mode

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def set_failure_mode(self, error: Exception | None) -> None:
        """Set an exception to raise on all operations (for testing failures).

        Args:
            error: Exception to raise, or None to clear failure mode.
        """
        self._failure_mode = error

    def clear_failure_mode(self) -> None:
        """Clear failure mode (resume normal operation)."""
        self._failure_mode = None

    def fail_subscriptions(self, error: Exception) -> None:
        """Terminate every live subscription with error (for testing)."""
        self._subscriptions.fail_all(error)

    def document_count(self, collection: str) -> int:
        """Number of documents currently in a collection."""
        return len(self._collections.get(collection, {}))

    def get_commit_count(self) -> int:
        """Number of successful commits."""
        return self._commit_count

    def get_subscription_count(self) -> int:
        """Number of live subscriptions."""
        return len(self._subscriptions)

    def clear(self) -> None:
        """Clear all documents (for testing)."""
        self._collections.clear()
