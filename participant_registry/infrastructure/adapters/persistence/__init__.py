"""Persistence adapters backed by SQLAlchemy."""

from participant_registry.infrastructure.adapters.persistence.document_store import (
    SqlAlchemyDocumentStore,
)

__all__: list[str] = ["SqlAlchemyDocumentStore"]
