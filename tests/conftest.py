"""
Pytest configuration and shared fixtures for participant registry tests.

Testing Standards:
- All async tests use pytest.mark.asyncio (auto mode enabled in pyproject.toml)
- Use AsyncMock for async function mocking
- Unit tests go in tests/unit/
- Integration tests go in tests/integration/
- Subscription callbacks run on later loop iterations; await
  drain_callbacks() before asserting on them
"""

import pytest

from participant_registry.application.services.participant_lifecycle_service import (
    ParticipantLifecycleService,
)
from participant_registry.config.registry_config import (
    TEST_REGISTRY_CONFIG,
    RegistryConfig,
)
from participant_registry.infrastructure.stubs.document_store_stub import (
    InMemoryDocumentStore,
)


@pytest.fixture
def store() -> InMemoryDocumentStore:
    """Create a fresh in-memory document store."""
    return InMemoryDocumentStore()


@pytest.fixture
def service(store: InMemoryDocumentStore) -> ParticipantLifecycleService:
    """Lifecycle service that applies transitions unconditionally."""
    return ParticipantLifecycleService(store, RegistryConfig())


@pytest.fixture
def guarded_service(store: InMemoryDocumentStore) -> ParticipantLifecycleService:
    """Lifecycle service with transition enforcement enabled."""
    return ParticipantLifecycleService(store, TEST_REGISTRY_CONFIG)
