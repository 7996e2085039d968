"""Application services for the participant registry."""

from participant_registry.application.services.callbacks import dispatch
from participant_registry.application.services.document_watcher import (
    DocumentWatcher,
)
from participant_registry.application.services.live_list_controller import (
    LiveListController,
)
from participant_registry.application.services.participant_lifecycle_service import (
    ParticipantLifecycleService,
)

__all__ = [
    "DocumentWatcher",
    "LiveListController",
    "ParticipantLifecycleService",
    "dispatch",
]
