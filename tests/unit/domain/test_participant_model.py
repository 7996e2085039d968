"""Unit tests for the participant domain model.

Tests the status transition matrix, audit entries and document decoding.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from participant_registry.domain.models.change import DocumentSnapshot
from participant_registry.domain.models.participant import (
    RESERVED_FIELDS,
    STATUS_TRANSITION_MATRIX,
    AuditEntry,
    LifecycleEvent,
    Participant,
    ParticipantStatistics,
    ParticipantStatus,
)


class TestParticipantStatus:
    """Tests for the status state machine."""

    def test_pending_can_be_reviewed_or_deleted(self) -> None:
        """Pending may become Approved, Declined or Deleted."""
        assert ParticipantStatus.PENDING.valid_transitions() == frozenset(
            {
                ParticipantStatus.APPROVED,
                ParticipantStatus.DECLINED,
                ParticipantStatus.DELETED,
            }
        )

    @pytest.mark.parametrize(
        "status", [ParticipantStatus.APPROVED, ParticipantStatus.DECLINED]
    )
    def test_reviewed_records_can_only_be_deleted(
        self, status: ParticipantStatus
    ) -> None:
        """Approved and Declined records only transition to Deleted."""
        assert status.valid_transitions() == frozenset({ParticipantStatus.DELETED})
        assert not status.can_transition_to(ParticipantStatus.PENDING)

    def test_deleted_restores_to_pending(self) -> None:
        """Undo delete goes back to Pending and nowhere else."""
        assert ParticipantStatus.DELETED.can_transition_to(ParticipantStatus.PENDING)
        assert not ParticipantStatus.DELETED.can_transition_to(
            ParticipantStatus.APPROVED
        )

    def test_matrix_covers_every_status(self) -> None:
        """Every status has an entry in the transition matrix."""
        assert set(STATUS_TRANSITION_MATRIX) == set(ParticipantStatus)

    def test_stored_values(self) -> None:
        """Status values match the stored strings."""
        assert [s.value for s in ParticipantStatus] == [
            "Pending",
            "Approved",
            "Declined",
            "Deleted",
        ]


class TestAuditEntry:
    """Tests for AuditEntry."""

    def test_record_uses_event_phrase_and_utc_time(self) -> None:
        """record() stores the canonical phrase with an aware timestamp."""
        entry = AuditEntry.record("alice", LifecycleEvent.APPROVED)

        assert entry.actor == "alice"
        assert entry.event == "Approved participant."
        assert entry.timestamp.tzinfo is not None

    def test_document_round_trip(self) -> None:
        """from_document() restores what to_document() wrote."""
        entry = AuditEntry(
            actor="System",
            event=LifecycleEvent.RECEIVED.value,
            timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )

        assert AuditEntry.from_document(entry.to_document()) == entry

    def test_event_phrases_are_distinct(self) -> None:
        """Each lifecycle event has its own phrase."""
        phrases = [event.value for event in LifecycleEvent]
        assert len(phrases) == len(set(phrases))


class TestParticipant:
    """Tests for Participant decoding."""

    def test_from_document_separates_lifecycle_fields(self) -> None:
        """Reserved fields are decoded; everything else stays in fields."""
        created = datetime(2024, 5, 1, tzinfo=timezone.utc)
        participant = Participant.from_document(
            "p1",
            {
                "name": "Alice",
                "email": "alice@example.com",
                "status": "Pending",
                "createdAt": created,
                "history": [
                    {"actor": "System", "event": "Received.", "timestamp": created}
                ],
            },
        )

        assert participant.id == "p1"
        assert participant.status is ParticipantStatus.PENDING
        assert participant.created_at == created
        assert participant.history == (AuditEntry("System", "Received.", created),)
        assert participant.fields == {"name": "Alice", "email": "alice@example.com"}
        assert not RESERVED_FIELDS.intersection(participant.fields)

    def test_from_snapshot_copies_data(self) -> None:
        """Decoded fields do not alias the snapshot data."""
        snapshot = DocumentSnapshot(
            "permanent", "p2", {"status": "Approved", "tags": ["a"]}, 3
        )

        participant = Participant.from_snapshot(snapshot)
        participant.fields["tags"].append("b")

        assert snapshot.data == {"status": "Approved", "tags": ["a"]}
        assert participant.history == ()

    def test_unknown_status_is_rejected(self) -> None:
        """A status outside the enumeration is a decoding error."""
        with pytest.raises(ValueError):
            Participant.from_document("p3", {"status": "Archived"})


class TestParticipantStatistics:
    """Tests for ParticipantStatistics."""

    def test_reads_counter(self) -> None:
        snapshot = DocumentSnapshot("statistics", "participant", {"numOfNew": 4}, 1)
        assert ParticipantStatistics.from_snapshot(snapshot).num_of_new == 4

    def test_missing_counter_is_zero(self) -> None:
        snapshot = DocumentSnapshot("statistics", "participant", {}, 1)
        assert ParticipantStatistics.from_snapshot(snapshot).num_of_new == 0
