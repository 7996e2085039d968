"""Participant registry API dependencies.

Routes receive the process-wide lifecycle service built by the bootstrap
module; tests override get_participant_lifecycle_service through
app.dependency_overrides or the bootstrap set_* functions.
"""

from participant_registry.application.ports.document_store import (
    DocumentStoreProtocol,
)
from participant_registry.application.services.participant_lifecycle_service import (
    ParticipantLifecycleService,
)
from participant_registry.bootstrap import participant_registry as bootstrap


def get_participant_lifecycle_service() -> ParticipantLifecycleService:
    """Get the participant lifecycle service."""
    return bootstrap.get_participant_lifecycle_service()


def get_document_store() -> DocumentStoreProtocol:
    """Get the document store backing the registry."""
    return bootstrap.get_document_store()
