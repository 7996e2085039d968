"""Document store failure errors.

Both errors are surfaced verbatim; whether to retry the whole operation
is the caller's decision.
"""

from __future__ import annotations

from participant_registry.domain.exceptions import RegistryError


class StoreUnavailableError(RegistryError):
    """Raised on a transient connectivity or backend failure.

    Attributes:
        reason: Description of the underlying failure.
    """

    def __init__(self, reason: str = "Document store unavailable") -> None:
        self.reason = reason
        super().__init__(reason)


class TransactionConflictError(RegistryError):
    """Raised when a transaction lost every race in its retry budget.

    Attributes:
        attempts: Number of times the transaction body was executed.
    """

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(
            f"Transaction aborted after {attempts} attempts due to "
            "concurrent modification"
        )
