"""Infrastructure stubs for development and testing.

Available stubs:
- InMemoryDocumentStore: In-memory document store with batches,
  optimistic transactions, subscriptions and failure injection

WARNING: These stubs are NOT for production use.
Production implementations are in participant_registry/infrastructure/adapters/.
"""

from participant_registry.infrastructure.stubs.document_store_stub import (
    InMemoryDocumentStore,
)

__all__: list[str] = ["InMemoryDocumentStore"]
