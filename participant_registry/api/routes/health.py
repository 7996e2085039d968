"""Health check endpoint for the participant registry API."""

from fastapi import APIRouter, Depends

from participant_registry.api.dependencies.participant import get_document_store
from participant_registry.api.models.health import HealthResponse
from participant_registry.application.ports.document_store import (
    DocumentStoreProtocol,
)

router = APIRouter(prefix="/v1", tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(
    store: DocumentStoreProtocol = Depends(get_document_store),
) -> HealthResponse:
    """Return health status.

    Returns:
        Health status with 200 OK.
    """
    return HealthResponse(status="healthy", store=type(store).__name__)
