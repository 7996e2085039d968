"""Domain errors for the participant registry.

Provides specific exception classes for different failure scenarios.
All exceptions inherit from RegistryError.
"""

from participant_registry.domain.errors.document import DocumentNotFoundError
from participant_registry.domain.errors.state_transition import (
    InvalidStateTransitionError,
)
from participant_registry.domain.errors.store import (
    StoreUnavailableError,
    TransactionConflictError,
)

__all__: list[str] = [
    "DocumentNotFoundError",
    "InvalidStateTransitionError",
    "StoreUnavailableError",
    "TransactionConflictError",
]
