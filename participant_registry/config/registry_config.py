"""Participant registry configuration.

This module defines where participant records live in the document store
and how lifecycle transitions are recorded, with environment variable
overrides for deployment.

Environment Variables:
- REGISTRY_NEW_COLLECTION: Intake collection name (default: new)
- REGISTRY_PERMANENT_COLLECTION: Permanent collection name (default: permanent)
- REGISTRY_STATISTICS_COLLECTION: Statistics collection name (default: statistics)
- REGISTRY_STATISTICS_DOCUMENT: Statistics singleton id (default: participant)
- REGISTRY_DEFAULT_ACTOR: Audit actor when the caller names none (default: System)
- REGISTRY_ENFORCE_TRANSITIONS: Reject transitions outside the status
  matrix (default: false)
- REGISTRY_TRANSACTION_ATTEMPTS: Retry budget for transactions and SQL
  batch commits (default: 5)
- REGISTRY_PAGE_SIZE: Default live list page size (default: 25)
"""

from __future__ import annotations

import os
from dataclasses import dataclass


def _get_int_env(key: str, default: int) -> int:
    """Get integer environment variable with default.

    Args:
        key: Environment variable name.
        default: Default value if not set or invalid.

    Returns:
        Parsed integer value or default.
    """
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_bool_env(key: str, default: bool) -> bool:
    """Get boolean environment variable with default.

    Accepts 1/true/yes/on and 0/false/no/off, case-insensitively.
    """
    value = os.environ.get(key)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in ("1", "true", "yes", "on"):
        return True
    if normalized in ("0", "false", "no", "off"):
        return False
    return default


def _get_str_env(key: str, default: str) -> str:
    """Get non-empty string environment variable with default."""
    value = os.environ.get(key)
    if value is None or not value.strip():
        return default
    return value.strip()


@dataclass(frozen=True)
class RegistryConfig:
    """Configuration for the participant lifecycle layer.

    Attributes:
        new_collection: Collection holding intake records.
        permanent_collection: Collection holding permanent records.
        statistics_collection: Collection holding the statistics singleton.
        statistics_document: Id of the statistics singleton document.
        default_actor: Audit actor used when an operation names none.
        enforce_transitions: Check the current status against the
            transition matrix before applying a transition.
        transaction_max_attempts: Attempts allowed on version conflicts
            for every transaction (intake delete, move, guarded
            transitions) and for SQL batch commits.
        default_page_size: Page size of live lists when none is given.
    """

    new_collection: str = "new"
    permanent_collection: str = "permanent"
    statistics_collection: str = "statistics"
    statistics_document: str = "participant"
    default_actor: str = "System"
    enforce_transitions: bool = False
    transaction_max_attempts: int = 5
    default_page_size: int = 25

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.new_collection == self.permanent_collection:
            raise ValueError(
                "new_collection and permanent_collection must differ, "
                f"both are {self.new_collection!r}"
            )
        if not self.default_actor:
            raise ValueError("default_actor must not be empty")
        if self.transaction_max_attempts < 1:
            raise ValueError(
                "transaction_max_attempts must be at least 1, "
                f"got {self.transaction_max_attempts}"
            )
        if self.default_page_size < 1:
            raise ValueError(
                f"default_page_size must be positive, got {self.default_page_size}"
            )

    @classmethod
    def from_environment(cls) -> RegistryConfig:
        """Create config from environment variables with defaults."""
        return cls(
            new_collection=_get_str_env("REGISTRY_NEW_COLLECTION", cls.new_collection),
            permanent_collection=_get_str_env(
                "REGISTRY_PERMANENT_COLLECTION", cls.permanent_collection
            ),
            statistics_collection=_get_str_env(
                "REGISTRY_STATISTICS_COLLECTION", cls.statistics_collection
            ),
            statistics_document=_get_str_env(
                "REGISTRY_STATISTICS_DOCUMENT", cls.statistics_document
            ),
            default_actor=_get_str_env("REGISTRY_DEFAULT_ACTOR", cls.default_actor),
            enforce_transitions=_get_bool_env(
                "REGISTRY_ENFORCE_TRANSITIONS", cls.enforce_transitions
            ),
            transaction_max_attempts=_get_int_env(
                "REGISTRY_TRANSACTION_ATTEMPTS", cls.transaction_max_attempts
            ),
            default_page_size=_get_int_env(
                "REGISTRY_PAGE_SIZE", cls.default_page_size
            ),
        )


# Default configuration for production
DEFAULT_REGISTRY_CONFIG = RegistryConfig()

# Test configuration with transition guards enabled and small pages
TEST_REGISTRY_CONFIG = RegistryConfig(
    enforce_transitions=True,
    default_page_size=5,
)
