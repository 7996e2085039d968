"""SQLAlchemy document store adapter.

Implements DocumentStoreProtocol on a relational database. Every document
is one row of the registry_documents table, keyed by (collection, id),
with its fields as JSON and an integer version bumped on every write.

Consistency:
- Batches and transaction commits run in one database transaction.
- Every write is version checked (UPDATE ... WHERE version = :expected),
  so a concurrent writer from another process aborts the commit instead
  of being overwritten; the commit is then retried.
- Change notifications are fanned out to subscriptions in this process
  after each commit. Writes made by other processes are not observed.

Environment Variables:
- DATABASE_URL: selects this adapter in bootstrap (see bootstrap.database)
"""

from __future__ import annotations

import asyncio
import base64
import time
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any, TypeVar

import structlog
from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    MetaData,
    String,
    Table,
    and_,
    delete,
    insert,
    select,
    update,
)
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
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
from participant_registry.domain.errors.store import (
    StoreUnavailableError,
    TransactionConflictError,
)
from participant_registry.domain.models.change import DocumentSnapshot
from participant_registry.domain.models.query import QuerySpec
from participant_registry.infrastructure.document_writes import (
    StagedTransaction,
    StagedWriteBatch,
    WriteKind,
    WriteOp,
    apply_write,
)
from participant_registry.infrastructure.subscriptions import (
    DocumentSubscription,
    QuerySubscription,
    SubscriptionRegistry,
)

T = TypeVar("T")

logger = structlog.get_logger()

metadata = MetaData()

documents_table = Table(
    "registry_documents",
    metadata,
    Column("collection", String(255), primary_key=True),
    Column("id", String(255), primary_key=True),
    Column("data", JSON, nullable=False),
    Column("version", BigInteger, nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

# JSON has no timestamp or bytes type; both are stored as tagged strings
_TIMESTAMP_TAG = "$timestamp"
_BYTES_TAG = "$bytes"


def encode_value(value: Any) -> Any:
    """Convert document data to its JSON column representation."""
    if isinstance(value, datetime):
        return {_TIMESTAMP_TAG: value.isoformat()}
    if isinstance(value, (bytes, bytearray)):
        return {_BYTES_TAG: base64.b64encode(value).decode("ascii")}
    if isinstance(value, dict):
        return {k: encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    return value


def decode_value(value: Any) -> Any:
    """Inverse of encode_value()."""
    if isinstance(value, dict):
        if set(value) == {_TIMESTAMP_TAG}:
            return datetime.fromisoformat(value[_TIMESTAMP_TAG])
        if set(value) == {_BYTES_TAG}:
            return base64.b64decode(value[_BYTES_TAG])
        return {k: decode_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [decode_value(v) for v in value]
    return value


class _VersionConflict(Exception):
    """A version-checked write matched no row."""


class SqlAlchemyDocumentStore(DocumentStoreProtocol):
    """Document store backed by a SQL database through SQLAlchemy.

    Attributes:
        _session_factory: Factory for async sessions.
        _commit_lock: Serializes commits and subscription priming in this
            process so notifications follow commit order.
        _commit_attempts: Retry budget for batches that hit a version conflict.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        commit_attempts: int = DEFAULT_TRANSACTION_ATTEMPTS,
    ) -> None:
        self._session_factory = session_factory
        self._commit_attempts = commit_attempts
        self._commit_lock = asyncio.Lock()
        self._subscriptions = SubscriptionRegistry()
        self._last_version = 0
        self._background: set[asyncio.Task[None]] = set()
        self._log = logger.bind(component="document_store", backend="sqlalchemy")

    async def create_schema(self) -> None:
        """Create the documents table if it does not exist."""
        async with self._session_factory() as session:
            async with session.begin():
                await session.run_sync(
                    lambda sync_session: metadata.create_all(sync_session.connection())
                )
        self._log.info("document_schema_ready", table=documents_table.name)

    # ------------------------------------------------------------------
    # Point operations
    # ------------------------------------------------------------------

    def new_id(self, collection: str) -> str:
        """Generate a fresh, time-ordered document id."""
        return str(uuid7())

    async def get(self, ref: DocumentRef) -> DocumentSnapshot:
        """Read a document."""
        try:
            async with self._session_factory() as session:
                return await self._load(session, ref)
        except DBAPIError as e:
            raise StoreUnavailableError(f"Document read failed: {e}") from e

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

        Reads happen outside the commit; the commit re-checks the version
        of every document read and applies the staged writes only if none
        changed.
        """
        for attempt in range(1, max_attempts + 1):
            transaction = StagedTransaction(self.get)
            result = await function(transaction)
            try:
                await self._write(transaction.writes, transaction.read_versions)
                return result
            except _VersionConflict:
                self._log.debug("transaction_conflict", attempt=attempt)

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
        """Subscribe to one document; the initial snapshot is loaded in the background."""
        subscription = self._subscriptions.watch_document(ref, on_snapshot, on_error)
        self._spawn(self._prime_document(subscription))
        return subscription

    def watch_query(
        self,
        collection: str,
        query: QuerySpec,
        on_snapshot: QueryListener,
        on_error: ErrorListener | None = None,
    ) -> SubscriptionProtocol:
        """Subscribe to a query window; the initial window is loaded in the background."""
        subscription = self._subscriptions.watch_query(
            collection, query, on_snapshot, on_error
        )
        self._spawn(self._prime_query(subscription))
        return subscription

    def _spawn(self, coroutine: Any) -> None:
        task = asyncio.get_running_loop().create_task(coroutine)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _prime_document(self, subscription: DocumentSubscription) -> None:
        async with self._commit_lock:
            try:
                snapshot = await self.get(subscription.ref)
            except StoreUnavailableError as e:
                subscription.fail(e)
                return
            subscription.prime(snapshot)

    async def _prime_query(self, subscription: QuerySubscription) -> None:
        async with self._commit_lock:
            try:
                documents = await self._load_collection(subscription.collection)
            except StoreUnavailableError as e:
                subscription.fail(e)
                return
            subscription.prime(documents)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _next_version(self) -> int:
        self._last_version = max(time.time_ns(), self._last_version + 1)
        return self._last_version

    @staticmethod
    def _row_to_snapshot(ref: DocumentRef, row: Any) -> DocumentSnapshot:
        if row is None:
            return DocumentSnapshot(collection=ref.collection, id=ref.id)
        return DocumentSnapshot(
            collection=ref.collection,
            id=ref.id,
            data=decode_value(row.data),
            version=row.version,
        )

    async def _load(self, session: AsyncSession, ref: DocumentRef) -> DocumentSnapshot:
        result = await session.execute(
            select(documents_table.c.data, documents_table.c.version).where(
                and_(
                    documents_table.c.collection == ref.collection,
                    documents_table.c.id == ref.id,
                )
            )
        )
        return self._row_to_snapshot(ref, result.first())

    async def _load_collection(self, collection: str) -> list[DocumentSnapshot]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(
                        documents_table.c.id,
                        documents_table.c.data,
                        documents_table.c.version,
                    ).where(documents_table.c.collection == collection)
                )
                return [
                    self._row_to_snapshot(DocumentRef(collection, row.id), row)
                    for row in result
                ]
        except DBAPIError as e:
            raise StoreUnavailableError(f"Collection read failed: {e}") from e

    async def _commit(self, ops: Sequence[WriteOp]) -> None:
        for attempt in range(1, self._commit_attempts + 1):
            try:
                await self._write(ops, {})
                return
            except _VersionConflict:
                self._log.debug("batch_conflict", attempt=attempt)
        raise TransactionConflictError(attempts=self._commit_attempts)

    async def _write(
        self,
        ops: Sequence[WriteOp],
        read_versions: dict[DocumentRef, int],
    ) -> None:
        """Validate reads, stage writes and commit them in one DB transaction.

        Raises:
            _VersionConflict: If a read or written document changed concurrently.
            DocumentNotFoundError: If an update targets a missing document.
            StoreUnavailableError: On database failures.
        """
        async with self._commit_lock:
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        for ref, version in read_versions.items():
                            if (await self._load(session, ref)).version != version:
                                raise _VersionConflict()
                        staged = await self._stage(session, ops)
            except IntegrityError as e:
                raise _VersionConflict() from e
            except DBAPIError as e:
                raise StoreUnavailableError(f"Commit failed: {e}") from e

            await self._publish(staged)

    async def _stage(
        self, session: AsyncSession, ops: Sequence[WriteOp]
    ) -> dict[DocumentRef, DocumentSnapshot]:
        now = datetime.now(timezone.utc)
        loaded: dict[DocumentRef, DocumentSnapshot] = {}
        staged: dict[DocumentRef, DocumentSnapshot] = {}

        for op in ops:
            if op.ref not in loaded:
                loaded[op.ref] = await self._load(session, op.ref)
            current = staged.get(op.ref, loaded[op.ref])
            data = apply_write(op, current.data, now)
            if data is None:
                staged[op.ref] = DocumentSnapshot(op.ref.collection, op.ref.id)
            else:
                staged[op.ref] = DocumentSnapshot(
                    op.ref.collection, op.ref.id, data, self._next_version()
                )

        for ref, snapshot in staged.items():
            await self._persist(session, loaded[ref], snapshot, now)
        return staged

    async def _persist(
        self,
        session: AsyncSession,
        original: DocumentSnapshot,
        snapshot: DocumentSnapshot,
        now: datetime,
    ) -> None:
        key = and_(
            documents_table.c.collection == snapshot.collection,
            documents_table.c.id == snapshot.id,
        )
        if not original.exists:
            if snapshot.exists:
                await session.execute(
                    insert(documents_table).values(
                        collection=snapshot.collection,
                        id=snapshot.id,
                        data=encode_value(snapshot.data),
                        version=snapshot.version,
                        updated_at=now,
                    )
                )
            return

        guarded = and_(key, documents_table.c.version == original.version)
        if snapshot.exists:
            result = await session.execute(
                update(documents_table)
                .where(guarded)
                .values(
                    data=encode_value(snapshot.data),
                    version=snapshot.version,
                    updated_at=now,
                )
            )
        else:
            result = await session.execute(delete(documents_table).where(guarded))
        if result.rowcount != 1:
            raise _VersionConflict()

    async def _publish(self, staged: dict[DocumentRef, DocumentSnapshot]) -> None:
        for snapshot in staged.values():
            self._subscriptions.publish_document(snapshot)
        for collection in {ref.collection for ref in staged}:
            if not self._subscriptions.has_queries(collection):
                continue
            try:
                documents = await self._load_collection(collection)
            except StoreUnavailableError as e:
                self._log.error(
                    "query_refresh_failed", collection=collection, error=str(e)
                )
                self._subscriptions.fail_collection(collection, e)
                continue
            self._subscriptions.publish_collection(collection, documents)
