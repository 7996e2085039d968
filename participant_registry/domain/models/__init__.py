"""Domain models for the participant registry.

Contains value objects and domain models that represent core
concepts. These models are immutable and contain no infrastructure
dependencies.
"""

from participant_registry.domain.models.change import (
    ChangeType,
    DocumentChange,
    DocumentSnapshot,
    QuerySnapshot,
    diff_documents,
)
from participant_registry.domain.models.participant import (
    AuditEntry,
    LifecycleEvent,
    Participant,
    ParticipantStatistics,
    ParticipantStatus,
)
from participant_registry.domain.models.query import (
    FieldFilter,
    FilterOperator,
    QuerySpec,
    SortDirection,
    SortField,
)
from participant_registry.domain.models.view_modes import (
    ParticipantDetailViewMode,
    ViewMode,
)

__all__: list[str] = [
    "AuditEntry",
    "ChangeType",
    "DocumentChange",
    "DocumentSnapshot",
    "FieldFilter",
    "FilterOperator",
    "LifecycleEvent",
    "Participant",
    "ParticipantDetailViewMode",
    "ParticipantStatistics",
    "ParticipantStatus",
    "QuerySnapshot",
    "QuerySpec",
    "SortDirection",
    "SortField",
    "ViewMode",
    "diff_documents",
]
