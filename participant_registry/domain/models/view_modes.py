"""View mode constants consumed by display and routing collaborators."""

from enum import Enum


class ViewMode(str, Enum):
    """Top-level views of the administration front end."""

    PARTICIPANT_LIST = "participantList"
    PARTICIPANT_DETAIL = "participantDetail"
    STAFF_LIST = "staffList"
    STAFF_DETAIL = "staffDetail"
    STATISTICS = "statistics"
    FILE_BACKUP = "backUpFiles"


class ParticipantDetailViewMode(str, Enum):
    """Modes of the participant detail view."""

    VIEW = "view"
    EDIT = "edit"
    CREATE = "create"
