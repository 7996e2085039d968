"""State transition errors for the participant lifecycle.

Raised only when transition enforcement is enabled in the registry
configuration; otherwise transitions are applied as requested.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from participant_registry.domain.exceptions import RegistryError

if TYPE_CHECKING:
    from participant_registry.domain.models.participant import ParticipantStatus


class InvalidStateTransitionError(RegistryError):
    """Raised when a status transition is not in the transition matrix.

    Attributes:
        document_id: Identifier of the participant document.
        from_status: Current status of the participant.
        to_status: Attempted target status.
        allowed_transitions: Valid target statuses from the current status.
    """

    def __init__(
        self,
        document_id: str,
        from_status: ParticipantStatus,
        to_status: ParticipantStatus,
        allowed_transitions: list[ParticipantStatus] | None = None,
    ) -> None:
        """Initialize invalid state transition error.

        Args:
            document_id: Identifier of the participant document.
            from_status: Current participant status.
            to_status: Attempted invalid target status.
            allowed_transitions: Valid statuses from current status (optional).
        """
        self.document_id = document_id
        self.from_status = from_status
        self.to_status = to_status
        self.allowed_transitions = allowed_transitions or []

        allowed_str = (
            f" Valid transitions: {[s.value for s in self.allowed_transitions]}"
            if self.allowed_transitions
            else ""
        )
        super().__init__(
            f"Invalid status transition for {document_id}: "
            f"{from_status.value} -> {to_status.value}.{allowed_str}"
        )
