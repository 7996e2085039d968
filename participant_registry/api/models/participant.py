"""Participant registry API request/response models.

Pydantic models for the participant lifecycle endpoints.

Developer Golden Rules:
1. VALIDATE EARLY - Pydantic handles schema validation
2. FAIL LOUD - Invalid requests return 400 with RFC 7807
3. OPAQUE FIELDS - Caller fields are passed through untouched
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import BaseModel, Field, PlainSerializer

from participant_registry.domain.models.change import ChangeType
from participant_registry.domain.models.participant import (
    AuditEntry,
    Participant,
    ParticipantStatistics,
)

# Custom datetime serializer for ISO 8601 with Z suffix (Pydantic v2)
DateTimeWithZ = Annotated[
    datetime,
    PlainSerializer(
        lambda v: v.isoformat().replace("+00:00", "Z") if v else None, return_type=str
    ),
]


class CollectionEnum(str, Enum):
    """Participant collections exposed over HTTP."""

    NEW = "new"
    PERMANENT = "permanent"


class ParticipantStatusEnum(str, Enum):
    """Participant status enumeration.

    Values mirror the stored status strings.
    """

    PENDING = "Pending"
    APPROVED = "Approved"
    DECLINED = "Declined"
    DELETED = "Deleted"


class CreateParticipantRequest(BaseModel):
    """Request body for creating a participant record.

    Attributes:
        fields: Participant data (name, contact details, ...).
        actor: Audit actor; the configured system actor when omitted.
    """

    fields: dict[str, Any] = Field(..., description="Participant data")
    actor: Optional[str] = Field(
        default=None, min_length=1, max_length=255, description="Audit actor"
    )


class UpdateParticipantRequest(CreateParticipantRequest):
    """Request body for merging fields into a participant record."""


class ParticipantActionRequest(BaseModel):
    """Optional request body for status transitions and moves."""

    actor: Optional[str] = Field(
        default=None, min_length=1, max_length=255, description="Audit actor"
    )


class ParticipantCreatedResponse(BaseModel):
    """Response for a created participant record."""

    id: str = Field(..., description="Assigned document id")
    collection: CollectionEnum = Field(..., description="Collection of the record")


class ParticipantMovedResponse(BaseModel):
    """Response for a record moved from intake to permanent.

    The permanent record has a new id; previous_id no longer resolves.
    """

    previous_id: str = Field(..., description="Discarded intake id")
    id: str = Field(..., description="Id in the permanent collection")


class AuditEntryModel(BaseModel):
    """One audit history entry."""

    actor: str
    event: str
    timestamp: DateTimeWithZ

    @classmethod
    def from_domain(cls, entry: AuditEntry) -> AuditEntryModel:
        """Convert a domain audit entry."""
        return cls(actor=entry.actor, event=entry.event, timestamp=entry.timestamp)


class ParticipantResponse(BaseModel):
    """A participant record."""

    id: str
    status: ParticipantStatusEnum
    created_at: Optional[DateTimeWithZ] = None
    history: list[AuditEntryModel] = Field(default_factory=list)
    fields: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_domain(cls, participant: Participant) -> ParticipantResponse:
        """Convert a domain participant."""
        return cls(
            id=participant.id,
            status=ParticipantStatusEnum(participant.status.value),
            created_at=participant.created_at,
            history=[AuditEntryModel.from_domain(e) for e in participant.history],
            fields=dict(participant.fields),
        )


class StatisticsResponse(BaseModel):
    """Registry statistics."""

    num_of_new: int = Field(..., ge=0, description="Records in the intake collection")

    @classmethod
    def from_domain(cls, statistics: ParticipantStatistics) -> StatisticsResponse:
        """Convert domain statistics."""
        return cls(num_of_new=max(statistics.num_of_new, 0))


class ParticipantChangeEvent(BaseModel):
    """One live list change, as sent over Server-Sent Events.

    Replaying events in arrival order (remove at old_index, insert at
    new_index) reconstructs the list.
    """

    type: ChangeType
    new_index: int
    old_index: int
    participant: ParticipantResponse


class ParticipantErrorResponse(BaseModel):
    """Error response for participant operations (RFC 7807).

    Attributes:
        type: Error type URI.
        title: Human-readable error title.
        status: HTTP status code.
        detail: Detailed error message.
        instance: Request path that caused the error.
    """

    type: str = Field(..., description="Error type URI")
    title: str = Field(..., description="Human-readable error title")
    status: int = Field(..., description="HTTP status code")
    detail: str = Field(..., description="Detailed error message")
    instance: str = Field(..., description="Request path that caused the error")
