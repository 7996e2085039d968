"""Participant record domain model.

A participant document lives in either the "new" intake collection or the
"permanent" collection. Its lifecycle-owned fields (status, createdAt and
the audit history) are written only through the lifecycle service; every
other field is opaque caller data.

State Machine:
    Pending -> Approved (approve)
    Pending -> Declined (decline)
    Pending | Approved | Declined -> Deleted (soft delete)
    Deleted -> Pending (undo delete)

    Moving a record from "new" to "permanent" keeps it Pending.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from participant_registry.domain.models.change import DocumentSnapshot

# Document field names owned by the lifecycle layer
STATUS_FIELD = "status"
CREATED_AT_FIELD = "createdAt"
HISTORY_FIELD = "history"

RESERVED_FIELDS: frozenset[str] = frozenset(
    {STATUS_FIELD, CREATED_AT_FIELD, HISTORY_FIELD}
)


class ParticipantStatus(Enum):
    """Lifecycle status of a participant record.

    States:
        PENDING: Initial state, awaiting review
        APPROVED: Accepted by staff
        DECLINED: Rejected by staff
        DELETED: Soft-deleted, retained in the permanent collection
    """

    PENDING = "Pending"
    APPROVED = "Approved"
    DECLINED = "Declined"
    DELETED = "Deleted"

    def valid_transitions(self) -> frozenset[ParticipantStatus]:
        """Get valid transitions from this status.

        Returns:
            Frozenset of statuses this status can transition to.
        """
        return STATUS_TRANSITION_MATRIX.get(self, frozenset())

    def can_transition_to(self, target: ParticipantStatus) -> bool:
        """Check whether a transition to target is permitted."""
        return target in self.valid_transitions()


STATUS_TRANSITION_MATRIX: dict[ParticipantStatus, frozenset[ParticipantStatus]] = {
    ParticipantStatus.PENDING: frozenset(
        {
            ParticipantStatus.APPROVED,
            ParticipantStatus.DECLINED,
            ParticipantStatus.DELETED,
        }
    ),
    ParticipantStatus.APPROVED: frozenset({ParticipantStatus.DELETED}),
    ParticipantStatus.DECLINED: frozenset({ParticipantStatus.DELETED}),
    ParticipantStatus.DELETED: frozenset({ParticipantStatus.PENDING}),
}


class LifecycleEvent(Enum):
    """Canonical audit phrasing for each lifecycle transition."""

    RECEIVED = "Received registration data from participant."
    CREATED = "Created participant record."
    UPDATED = "Updated participant record."
    DELETED = "Deleted participant record."
    RESTORED = "Restored deleted participant record."
    MOVED = "Moved participant record to permanent collection."
    APPROVED = "Approved participant."
    DECLINED = "Declined participant."


def _utc_now() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True, eq=True)
class AuditEntry:
    """One entry of a participant's append-only audit history.

    Attributes:
        actor: Who performed the action.
        event: Human-readable description of the action.
        timestamp: When the action was performed (client clock, UTC).
    """

    actor: str
    event: str
    timestamp: datetime = field(default_factory=_utc_now)

    @classmethod
    def record(cls, actor: str, event: LifecycleEvent) -> AuditEntry:
        """Create an entry for a lifecycle event stamped with the current time."""
        return cls(actor=actor, event=event.value, timestamp=_utc_now())

    def to_document(self) -> dict[str, Any]:
        """Serialize to the document representation."""
        return {
            "actor": self.actor,
            "event": self.event,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> AuditEntry:
        """Deserialize from the document representation."""
        return cls(
            actor=data["actor"],
            event=data["event"],
            timestamp=data["timestamp"],
        )


@dataclass(frozen=True)
class Participant:
    """A participant record as read from the store.

    Attributes:
        id: Document identifier, unique within its collection.
        status: Current lifecycle status.
        created_at: Server-assigned creation time.
        history: Audit entries, oldest first.
        fields: Caller-supplied domain fields (name, contact info, ...).
    """

    id: str
    status: ParticipantStatus
    created_at: datetime | None
    history: tuple[AuditEntry, ...] = ()
    fields: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_document(cls, document_id: str, data: Mapping[str, Any]) -> Participant:
        """Build a participant from raw document data.

        Args:
            document_id: Identifier of the document.
            data: Raw document fields.

        Returns:
            The decoded Participant.
        """
        return cls(
            id=document_id,
            status=ParticipantStatus(data[STATUS_FIELD]),
            created_at=data.get(CREATED_AT_FIELD),
            history=tuple(
                AuditEntry.from_document(entry) for entry in data.get(HISTORY_FIELD, [])
            ),
            fields={k: v for k, v in data.items() if k not in RESERVED_FIELDS},
        )

    @classmethod
    def from_snapshot(cls, snapshot: DocumentSnapshot) -> Participant:
        """Build a participant from an existing document snapshot."""
        return cls.from_document(snapshot.id, snapshot.to_dict())


@dataclass(frozen=True)
class ParticipantStatistics:
    """Aggregates kept in the statistics singleton document.

    Attributes:
        num_of_new: Number of records currently in the "new" collection.
    """

    num_of_new: int = 0

    NUM_OF_NEW_FIELD = "numOfNew"

    @classmethod
    def from_snapshot(cls, snapshot: DocumentSnapshot) -> ParticipantStatistics:
        """Build statistics from the singleton document snapshot."""
        data = snapshot.to_dict()
        return cls(num_of_new=int(data.get(cls.NUM_OF_NEW_FIELD, 0)))
