"""Unit tests for ParticipantLifecycleService.

Runs the service against the in-memory document store so batch,
transaction and counter semantics are exercised for real.
"""

from __future__ import annotations

import asyncio

import pytest

from participant_registry.application.ports.document_store import DocumentRef
from participant_registry.application.services.participant_lifecycle_service import (
    ParticipantLifecycleService,
)
from participant_registry.config.registry_config import RegistryConfig
from participant_registry.domain.errors import (
    DocumentNotFoundError,
    InvalidStateTransitionError,
    StoreUnavailableError,
)
from participant_registry.domain.models.participant import (
    LifecycleEvent,
    ParticipantStatus,
)
from participant_registry.infrastructure.stubs.document_store_stub import (
    InMemoryDocumentStore,
)


async def _num_of_new(service: ParticipantLifecycleService) -> int:
    try:
        return (await service.fetch_statistics()).num_of_new
    except DocumentNotFoundError:
        return 0


class TestAddNew:
    """Tests for add_new()."""

    @pytest.mark.asyncio
    async def test_creates_pending_record_and_counts_it(
        self, service: ParticipantLifecycleService
    ) -> None:
        before = await _num_of_new(service)

        document_id = await service.add_new({"name": "Alice"})
        participant = await service.fetch_new(document_id)

        assert await _num_of_new(service) == before + 1
        assert participant.status is ParticipantStatus.PENDING
        assert participant.fields == {"name": "Alice"}
        assert participant.created_at is not None
        assert len(participant.history) == 1
        assert participant.history[0].event == LifecycleEvent.RECEIVED.value
        assert participant.history[0].actor == "System"

    @pytest.mark.asyncio
    async def test_failed_batch_changes_nothing(
        self,
        service: ParticipantLifecycleService,
        store: InMemoryDocumentStore,
    ) -> None:
        store.set_failure_mode(StoreUnavailableError("backend down"))

        with pytest.raises(StoreUnavailableError):
            await service.add_new({"name": "Alice"})

        store.clear_failure_mode()
        assert store.document_count("new") == 0
        assert await _num_of_new(service) == 0

    @pytest.mark.asyncio
    async def test_rejects_lifecycle_fields(
        self,
        service: ParticipantLifecycleService,
        store: InMemoryDocumentStore,
    ) -> None:
        with pytest.raises(ValueError, match="status"):
            await service.add_new({"name": "Mallory", "status": "Approved"})

        assert store.get_commit_count() == 0

    @pytest.mark.asyncio
    async def test_actor_is_recorded(self, service: ParticipantLifecycleService) -> None:
        document_id = await service.add_new({"name": "Alice"}, actor="kiosk-3")
        participant = await service.fetch_new(document_id)
        assert participant.history[0].actor == "kiosk-3"


class TestAddPermanent:
    """Tests for add_permanent()."""

    @pytest.mark.asyncio
    async def test_does_not_touch_counter(
        self, service: ParticipantLifecycleService
    ) -> None:
        document_id = await service.add_permanent({"name": "Bob"})
        participant = await service.fetch_permanent(document_id)

        assert participant.status is ParticipantStatus.PENDING
        assert participant.history[0].event == LifecycleEvent.CREATED.value
        assert await _num_of_new(service) == 0


class TestUpdates:
    """Tests for update_new() and update_permanent()."""

    @pytest.mark.asyncio
    async def test_merges_fields_and_appends_history(
        self, service: ParticipantLifecycleService
    ) -> None:
        document_id = await service.add_permanent({"name": "Bob", "age": 30})

        await service.update_permanent(document_id, {"age": 31}, actor="staff")
        participant = await service.fetch_permanent(document_id)

        assert participant.fields == {"name": "Bob", "age": 31}
        assert [e.event for e in participant.history] == [
            LifecycleEvent.CREATED.value,
            LifecycleEvent.UPDATED.value,
        ]
        assert participant.history[1].actor == "staff"

    @pytest.mark.asyncio
    async def test_update_missing_record(
        self, service: ParticipantLifecycleService
    ) -> None:
        with pytest.raises(DocumentNotFoundError):
            await service.update_new("missing", {"age": 31})

    @pytest.mark.asyncio
    async def test_update_cannot_overwrite_history(
        self, service: ParticipantLifecycleService
    ) -> None:
        document_id = await service.add_new({"name": "Alice"})
        with pytest.raises(ValueError):
            await service.update_new(document_id, {"history": []})


class TestDeleteNew:
    """Tests for delete_new()."""

    @pytest.mark.asyncio
    async def test_removes_record_and_decrements_counter(
        self, service: ParticipantLifecycleService
    ) -> None:
        document_id = await service.add_new({"name": "Alice"})
        before = await _num_of_new(service)

        await service.delete_new(document_id)

        assert await _num_of_new(service) == before - 1
        with pytest.raises(DocumentNotFoundError):
            await service.fetch_new(document_id)

    @pytest.mark.asyncio
    async def test_missing_record_leaves_counter_alone(
        self, service: ParticipantLifecycleService
    ) -> None:
        await service.add_new({"name": "Alice"})

        with pytest.raises(DocumentNotFoundError):
            await service.delete_new("missing")

        assert await _num_of_new(service) == 1

    @pytest.mark.asyncio
    async def test_concurrent_deletes_decrement_once(
        self, service: ParticipantLifecycleService
    ) -> None:
        document_id = await service.add_new({"name": "Alice"})

        results = await asyncio.gather(
            service.delete_new(document_id),
            service.delete_new(document_id),
            return_exceptions=True,
        )

        assert sum(r is None for r in results) == 1
        assert sum(isinstance(r, DocumentNotFoundError) for r in results) == 1
        assert await _num_of_new(service) == 0


class TestPermanentTransitions:
    """Tests for delete/restore/approve/decline on permanent records."""

    @pytest.mark.asyncio
    async def test_approve_and_decline_append_one_entry(
        self, service: ParticipantLifecycleService
    ) -> None:
        approved = await service.add_permanent({"name": "A"})
        declined = await service.add_permanent({"name": "D"})

        await service.approve_pending(approved)
        await service.decline_pending(declined)

        approved_record = await service.fetch_permanent(approved)
        declined_record = await service.fetch_permanent(declined)
        assert approved_record.status is ParticipantStatus.APPROVED
        assert declined_record.status is ParticipantStatus.DECLINED
        assert len(approved_record.history) == 2
        assert approved_record.history[-1].event == LifecycleEvent.APPROVED.value
        assert declined_record.history[-1].event == LifecycleEvent.DECLINED.value

    @pytest.mark.asyncio
    async def test_unguarded_approve_ignores_prior_status(
        self, service: ParticipantLifecycleService
    ) -> None:
        """Without enforcement a Declined record can still be approved."""
        document_id = await service.add_permanent({"name": "A"})
        await service.decline_pending(document_id)

        await service.approve_pending(document_id)

        participant = await service.fetch_permanent(document_id)
        assert participant.status is ParticipantStatus.APPROVED
        assert len(participant.history) == 3

    @pytest.mark.asyncio
    async def test_delete_then_restore_grows_history(
        self, service: ParticipantLifecycleService
    ) -> None:
        document_id = await service.add_permanent({"name": "A"})
        await service.approve_pending(document_id)
        before = len((await service.fetch_permanent(document_id)).history)

        await service.delete_permanent(document_id)
        deleted = await service.fetch_permanent(document_id)
        await service.undo_delete_permanent(document_id)
        restored = await service.fetch_permanent(document_id)

        assert deleted.status is ParticipantStatus.DELETED
        assert restored.status is ParticipantStatus.PENDING
        assert len(deleted.history) == before + 1
        assert len(restored.history) == before + 2
        assert restored.history[-1].event == LifecycleEvent.RESTORED.value

    @pytest.mark.asyncio
    async def test_transition_of_missing_record(
        self, service: ParticipantLifecycleService
    ) -> None:
        with pytest.raises(DocumentNotFoundError):
            await service.approve_pending("missing")


class TestGuardedTransitions:
    """Tests with enforce_transitions enabled."""

    @pytest.mark.asyncio
    async def test_rejects_transition_outside_matrix(
        self, guarded_service: ParticipantLifecycleService
    ) -> None:
        document_id = await guarded_service.add_permanent({"name": "A"})
        await guarded_service.decline_pending(document_id)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await guarded_service.approve_pending(document_id)

        assert exc_info.value.from_status is ParticipantStatus.DECLINED
        assert exc_info.value.allowed_transitions == [ParticipantStatus.DELETED]
        participant = await guarded_service.fetch_permanent(document_id)
        assert participant.status is ParticipantStatus.DECLINED
        assert len(participant.history) == 2

    @pytest.mark.asyncio
    async def test_allows_matrix_transitions(
        self, guarded_service: ParticipantLifecycleService
    ) -> None:
        document_id = await guarded_service.add_permanent({"name": "A"})

        await guarded_service.approve_pending(document_id)
        await guarded_service.delete_permanent(document_id)
        await guarded_service.undo_delete_permanent(document_id)

        participant = await guarded_service.fetch_permanent(document_id)
        assert participant.status is ParticipantStatus.PENDING

    @pytest.mark.asyncio
    async def test_restore_requires_deleted(
        self, guarded_service: ParticipantLifecycleService
    ) -> None:
        document_id = await guarded_service.add_permanent({"name": "A"})
        with pytest.raises(InvalidStateTransitionError):
            await guarded_service.undo_delete_permanent(document_id)

    @pytest.mark.asyncio
    async def test_missing_record(
        self, guarded_service: ParticipantLifecycleService
    ) -> None:
        with pytest.raises(DocumentNotFoundError):
            await guarded_service.decline_pending("missing")


class TestMoveToPermanent:
    """Tests for move_to_permanent()."""

    @pytest.mark.asyncio
    async def test_moves_record_under_new_id(
        self, service: ParticipantLifecycleService
    ) -> None:
        document_id = await service.add_new({"name": "Alice"})
        await service.update_new(document_id, {"email": "alice@example.com"})
        original = await service.fetch_new(document_id)

        new_id = await service.move_to_permanent(document_id, actor="staff")

        assert new_id != document_id
        with pytest.raises(DocumentNotFoundError):
            await service.fetch_new(document_id)
        moved = await service.fetch_permanent(new_id)
        assert moved.status is ParticipantStatus.PENDING
        assert moved.fields == original.fields
        assert moved.created_at == original.created_at
        assert len(moved.history) == len(original.history) + 1
        assert moved.history[:-1] == original.history
        assert moved.history[-1].event == LifecycleEvent.MOVED.value
        assert moved.history[-1].actor == "staff"
        assert await _num_of_new(service) == 0

    @pytest.mark.asyncio
    async def test_missing_record_changes_nothing(
        self,
        service: ParticipantLifecycleService,
        store: InMemoryDocumentStore,
    ) -> None:
        await service.add_new({"name": "Alice"})

        with pytest.raises(DocumentNotFoundError):
            await service.move_to_permanent("missing")

        assert store.document_count("permanent") == 0
        assert await _num_of_new(service) == 1

    @pytest.mark.asyncio
    async def test_concurrent_moves_produce_one_copy(
        self,
        service: ParticipantLifecycleService,
        store: InMemoryDocumentStore,
    ) -> None:
        document_id = await service.add_new({"name": "Alice"})

        results = await asyncio.gather(
            service.move_to_permanent(document_id),
            service.move_to_permanent(document_id),
            return_exceptions=True,
        )

        assert sum(isinstance(r, str) for r in results) == 1
        assert sum(isinstance(r, DocumentNotFoundError) for r in results) == 1
        assert store.document_count("permanent") == 1
        assert await _num_of_new(service) == 0


class TestConfiguredCollections:
    """Tests that collection names come from configuration."""

    @pytest.mark.asyncio
    async def test_uses_configured_names(self, store: InMemoryDocumentStore) -> None:
        config = RegistryConfig(
            new_collection="intake",
            permanent_collection="members",
            statistics_collection="stats",
            statistics_document="counters",
            default_actor="registrar",
        )
        service = ParticipantLifecycleService(store, config)

        document_id = await service.add_new({"name": "Alice"})

        assert store.document_count("intake") == 1
        stats = await store.get(DocumentRef("stats", "counters"))
        assert stats.get("numOfNew") == 1
        participant = await service.fetch_new(document_id)
        assert participant.history[0].actor == "registrar"

