"""Unit tests for InMemoryDocumentStore.

Covers point operations, atomic batches, optimistic transactions,
failure injection and live subscriptions.
"""

from __future__ import annotations

import pytest

from participant_registry.application.ports.document_store import (
    DocumentRef,
    Increment,
    TransactionProtocol,
)
from participant_registry.domain.errors import (
    DocumentNotFoundError,
    StoreUnavailableError,
    TransactionConflictError,
)
from participant_registry.domain.models.change import (
    ChangeType,
    DocumentSnapshot,
    QuerySnapshot,
)
from participant_registry.domain.models.query import QuerySpec, SortField
from participant_registry.infrastructure.stubs.document_store_stub import (
    InMemoryDocumentStore,
)
from tests.helpers import drain_callbacks

STATS = DocumentRef("statistics", "participant")


class TestPointOperations:
    """Tests for get/set/add/update/delete."""

    @pytest.mark.asyncio
    async def test_get_missing_document(self, store: InMemoryDocumentStore) -> None:
        snapshot = await store.get(DocumentRef("new", "nope"))
        assert not snapshot.exists
        assert snapshot.version == 0

    @pytest.mark.asyncio
    async def test_add_assigns_unique_ids(self, store: InMemoryDocumentStore) -> None:
        first = await store.add("new", {"name": "Alice"})
        second = await store.add("new", {"name": "Bob"})

        assert first != second
        assert (await store.get(DocumentRef("new", first))).get("name") == "Alice"
        assert store.document_count("new") == 2

    @pytest.mark.asyncio
    async def test_bytes_fields_round_trip(self, store: InMemoryDocumentStore) -> None:
        ref = DocumentRef("new", "p1")
        await store.set(ref, {"name": "Alice", "photo": b"\x89PNG\r\n"})

        assert (await store.get(ref)).get("photo") == b"\x89PNG\r\n"

    @pytest.mark.asyncio
    async def test_update_merges_and_bumps_version(
        self, store: InMemoryDocumentStore
    ) -> None:
        ref = DocumentRef("new", "p1")
        await store.set(ref, {"name": "Alice", "age": 30})
        before = await store.get(ref)

        await store.update(ref, {"age": 31})
        after = await store.get(ref)

        assert after.data == {"name": "Alice", "age": 31}
        assert after.version > before.version

    @pytest.mark.asyncio
    async def test_update_missing_document_raises(
        self, store: InMemoryDocumentStore
    ) -> None:
        with pytest.raises(DocumentNotFoundError):
            await store.update(DocumentRef("new", "nope"), {"a": 1})

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, store: InMemoryDocumentStore) -> None:
        ref = DocumentRef("new", "p1")
        await store.set(ref, {"a": 1})

        await store.delete(ref)
        await store.delete(ref)

        assert not (await store.get(ref)).exists


class TestBatch:
    """Tests for atomic batches."""

    @pytest.mark.asyncio
    async def test_batch_applies_every_write(
        self, store: InMemoryDocumentStore
    ) -> None:
        ref = DocumentRef("new", "p1")
        batch = store.batch()
        batch.set(ref, {"name": "Alice"})
        batch.set(STATS, {"numOfNew": Increment(1)}, merge=True)
        await batch.commit()

        assert (await store.get(ref)).exists
        assert (await store.get(STATS)).get("numOfNew") == 1
        assert store.get_commit_count() == 1

    @pytest.mark.asyncio
    async def test_failing_write_leaves_no_partial_state(
        self, store: InMemoryDocumentStore
    ) -> None:
        """An update of a missing document aborts the whole batch."""
        batch = store.batch()
        batch.set(DocumentRef("new", "p1"), {"name": "Alice"})
        batch.set(STATS, {"numOfNew": Increment(1)}, merge=True)
        batch.update(DocumentRef("new", "missing"), {"a": 1})

        with pytest.raises(DocumentNotFoundError):
            await batch.commit()

        assert store.document_count("new") == 0
        assert not (await store.get(STATS)).exists
        assert store.get_commit_count() == 0

    @pytest.mark.asyncio
    async def test_later_writes_see_earlier_ones(
        self, store: InMemoryDocumentStore
    ) -> None:
        ref = DocumentRef("new", "p1")
        batch = store.batch()
        batch.set(ref, {"n": 1})
        batch.update(ref, {"n": Increment(2)})
        await batch.commit()

        assert (await store.get(ref)).get("n") == 3


class TestTransactions:
    """Tests for run_transaction()."""

    @pytest.mark.asyncio
    async def test_returns_function_result(self, store: InMemoryDocumentStore) -> None:
        ref = DocumentRef("new", "p1")
        await store.set(ref, {"n": 1})

        async def bump(transaction: TransactionProtocol) -> int:
            snapshot = await transaction.get(ref)
            value = snapshot.get("n") + 1
            transaction.update(ref, {"n": value})
            return value

        assert await store.run_transaction(bump) == 2
        assert (await store.get(ref)).get("n") == 2

    @pytest.mark.asyncio
    async def test_retries_after_concurrent_write(
        self, store: InMemoryDocumentStore
    ) -> None:
        """A write between read and commit re-runs the function."""
        ref = DocumentRef("new", "p1")
        await store.set(ref, {"n": 1})
        attempts = 0

        async def bump(transaction: TransactionProtocol) -> None:
            nonlocal attempts
            attempts += 1
            snapshot = await transaction.get(ref)
            if attempts == 1:
                await store.update(ref, {"n": 10})
            transaction.update(ref, {"n": snapshot.get("n") + 1})

        await store.run_transaction(bump)

        assert attempts == 2
        assert (await store.get(ref)).get("n") == 11

    @pytest.mark.asyncio
    async def test_conflict_after_retry_budget(
        self, store: InMemoryDocumentStore
    ) -> None:
        ref = DocumentRef("new", "p1")
        await store.set(ref, {"n": 1})

        async def always_loses(transaction: TransactionProtocol) -> None:
            snapshot = await transaction.get(ref)
            await store.update(ref, {"n": snapshot.get("n") + 1})
            transaction.update(ref, {"n": 0})

        with pytest.raises(TransactionConflictError) as exc_info:
            await store.run_transaction(always_loses, max_attempts=3)

        assert exc_info.value.attempts == 3
        assert (await store.get(ref)).get("n") == 4

    @pytest.mark.asyncio
    async def test_error_in_function_aborts_without_writes(
        self, store: InMemoryDocumentStore
    ) -> None:
        ref = DocumentRef("new", "p1")

        async def fails(transaction: TransactionProtocol) -> None:
            await transaction.get(ref)
            transaction.set(ref, {"a": 1})
            raise DocumentNotFoundError("new", "other")

        with pytest.raises(DocumentNotFoundError):
            await store.run_transaction(fails)

        assert not (await store.get(ref)).exists


class TestFailureMode:
    """Tests for failure injection."""

    @pytest.mark.asyncio
    async def test_failure_mode_rejects_operations(
        self, store: InMemoryDocumentStore
    ) -> None:
        store.set_failure_mode(StoreUnavailableError("backend down"))

        with pytest.raises(StoreUnavailableError):
            await store.set(DocumentRef("new", "p1"), {"a": 1})
        with pytest.raises(StoreUnavailableError):
            await store.get(DocumentRef("new", "p1"))

        store.clear_failure_mode()
        await store.set(DocumentRef("new", "p1"), {"a": 1})
        assert store.document_count("new") == 1

    @pytest.mark.asyncio
    async def test_watch_fails_immediately_in_failure_mode(
        self, store: InMemoryDocumentStore
    ) -> None:
        errors: list[Exception] = []
        store.set_failure_mode(StoreUnavailableError())

        subscription = store.watch_query(
            "new", QuerySpec(), lambda snapshot: None, errors.append
        )
        await drain_callbacks()

        assert len(errors) == 1
        assert not subscription.active


class TestDocumentSubscriptions:
    """Tests for watch_document()."""

    @pytest.mark.asyncio
    async def test_initial_snapshot_then_updates(
        self, store: InMemoryDocumentStore
    ) -> None:
        ref = DocumentRef("new", "p1")
        received: list[DocumentSnapshot] = []

        store.watch_document(ref, received.append)
        await store.set(ref, {"n": 1})
        await store.update(ref, {"n": 2})
        await store.delete(ref)
        await drain_callbacks()

        assert [s.get("n") for s in received] == [None, 1, 2, None]
        assert [s.exists for s in received] == [False, True, True, False]

    @pytest.mark.asyncio
    async def test_unsubscribe_drops_pending_deliveries(
        self, store: InMemoryDocumentStore
    ) -> None:
        """Deliveries already scheduled are dropped after unsubscribe()."""
        ref = DocumentRef("new", "p1")
        received: list[DocumentSnapshot] = []

        subscription = store.watch_document(ref, received.append)
        await store.set(ref, {"n": 1})
        subscription.unsubscribe()
        await drain_callbacks()

        assert received == []
        assert store.get_subscription_count() == 0

    @pytest.mark.asyncio
    async def test_fail_subscriptions_closes_and_reports(
        self, store: InMemoryDocumentStore
    ) -> None:
        ref = DocumentRef("new", "p1")
        received: list[DocumentSnapshot] = []
        errors: list[Exception] = []
        subscription = store.watch_document(ref, received.append, errors.append)
        await drain_callbacks()

        store.fail_subscriptions(StoreUnavailableError("lost connection"))
        await store.set(ref, {"n": 1})
        await drain_callbacks()

        assert len(received) == 1
        assert isinstance(errors[0], StoreUnavailableError)
        assert not subscription.active


class TestQuerySubscriptions:
    """Tests for watch_query()."""

    @pytest.mark.asyncio
    async def test_window_changes_are_indexed(
        self, store: InMemoryDocumentStore
    ) -> None:
        snapshots: list[QuerySnapshot] = []
        for name in ("b", "d"):
            await store.set(DocumentRef("new", name), {"name": name})

        store.watch_query(
            "new", QuerySpec(order_by=(SortField("name"),), limit=2), snapshots.append
        )
        await store.set(DocumentRef("new", "a"), {"name": "a"})
        await drain_callbacks()

        initial, after_insert = snapshots
        assert [c.type for c in initial.changes] == [ChangeType.ADDED] * 2
        assert [d.id for d in after_insert.documents] == ["a", "b"]
        assert [(c.type, c.document.id) for c in after_insert.changes] == [
            (ChangeType.REMOVED, "d"),
            (ChangeType.ADDED, "a"),
        ]

    @pytest.mark.asyncio
    async def test_writes_outside_window_are_silent(
        self, store: InMemoryDocumentStore
    ) -> None:
        snapshots: list[QuerySnapshot] = []
        store.watch_query(
            "new",
            QuerySpec(filters=(), order_by=(SortField("name"),)),
            snapshots.append,
        )
        await store.set(DocumentRef("new", "x"), {"other": 1})
        await store.set(DocumentRef("permanent", "y"), {"name": "y"})
        await drain_callbacks()

        assert len(snapshots) == 1
        assert len(snapshots[0]) == 0
