"""Bootstrap wiring for the participant registry.

At most one document store, configuration and lifecycle service exist per
process. They are built lazily on first use; tests replace or reset them
with the set_* and reset_* functions.
"""

from __future__ import annotations

import os

from structlog import get_logger

from participant_registry.application.ports.document_store import (
    DocumentStoreProtocol,
)
from participant_registry.application.services.participant_lifecycle_service import (
    ParticipantLifecycleService,
)
from participant_registry.config.registry_config import RegistryConfig
from participant_registry.infrastructure.stubs.document_store_stub import (
    InMemoryDocumentStore,
)

logger = get_logger()

_document_store: DocumentStoreProtocol | None = None
_registry_config: RegistryConfig | None = None
_lifecycle_service: ParticipantLifecycleService | None = None


def get_registry_config() -> RegistryConfig:
    """Get registry configuration."""
    global _registry_config
    if _registry_config is None:
        _registry_config = RegistryConfig.from_environment()
    return _registry_config


def get_document_store() -> DocumentStoreProtocol:
    """Get document store instance.

    Returns the SQLAlchemy store if DATABASE_URL is configured, otherwise
    the in-memory stub. A misconfigured DATABASE_URL is an error rather
    than a silent fallback, so records are never written to memory by
    accident.
    """
    global _document_store
    if _document_store is None:
        if os.environ.get("DATABASE_URL"):
            from participant_registry.bootstrap.database import get_session_factory
            from participant_registry.infrastructure.adapters.persistence import (
                SqlAlchemyDocumentStore,
            )

            _document_store = SqlAlchemyDocumentStore(
                session_factory=get_session_factory(),
                commit_attempts=get_registry_config().transaction_max_attempts,
            )
            logger.info(
                "document_store_initialized",
                store_type="SQLAlchemy",
                message="Using SQL document store for participant records",
            )
        else:
            logger.warning(
                "document_store_initialized",
                store_type="InMemoryStub",
                message="DATABASE_URL not set - using in-memory store (data will not persist)",
            )
            _document_store = InMemoryDocumentStore()
    return _document_store


def get_participant_lifecycle_service() -> ParticipantLifecycleService:
    """Get the process-wide participant lifecycle service."""
    global _lifecycle_service
    if _lifecycle_service is None:
        _lifecycle_service = ParticipantLifecycleService(
            store=get_document_store(),
            config=get_registry_config(),
        )
    return _lifecycle_service


def set_document_store(store: DocumentStoreProtocol) -> None:
    """Set custom document store for testing.

    Drops the cached service so the next lookup is built on the new store.
    """
    global _document_store, _lifecycle_service
    _document_store = store
    _lifecycle_service = None


def set_registry_config(config: RegistryConfig) -> None:
    """Set custom registry config for testing."""
    global _registry_config, _lifecycle_service
    _registry_config = config
    _lifecycle_service = None


def reset_participant_registry() -> None:
    """Reset participant registry singletons."""
    global _document_store, _registry_config, _lifecycle_service
    _document_store = None
    _registry_config = None
    _lifecycle_service = None
