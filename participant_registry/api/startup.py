"""Startup and shutdown hooks for the participant registry API.

Startup builds the document store and, when it is SQL-backed, creates its
table. Shutdown disposes of the database engine if one was created.
"""

from structlog import get_logger

from participant_registry.bootstrap.database import close_database_engine
from participant_registry.bootstrap.participant_registry import get_document_store
from participant_registry.infrastructure.adapters.persistence import (
    SqlAlchemyDocumentStore,
)

logger = get_logger()


async def prepare_document_store() -> None:
    """Build the document store and make sure its schema exists."""
    store = get_document_store()
    if isinstance(store, SqlAlchemyDocumentStore):
        await store.create_schema()
    logger.info("document_store_ready", store_type=type(store).__name__)


async def shutdown() -> None:
    """Release database connections."""
    await close_database_engine()
    logger.info("registry_api_stopped")
