"""Registry statistics endpoint."""

from fastapi import APIRouter, Depends, Request

from participant_registry.api.dependencies.participant import (
    get_participant_lifecycle_service,
)
from participant_registry.api.models.participant import (
    ParticipantErrorResponse,
    StatisticsResponse,
)
from participant_registry.api.routes.participants import problem_response
from participant_registry.application.services.participant_lifecycle_service import (
    ParticipantLifecycleService,
)

router = APIRouter(prefix="/v1", tags=["statistics"])


@router.get(
    "/statistics",
    response_model=StatisticsResponse,
    responses={
        404: {
            "model": ParticipantErrorResponse,
            "description": "No intake record has been counted yet",
        },
    },
    summary="Get registry statistics",
)
async def get_statistics(
    request: Request,
    service: ParticipantLifecycleService = Depends(get_participant_lifecycle_service),
) -> StatisticsResponse:
    """Return the statistics singleton (number of intake records)."""
    try:
        statistics = await service.fetch_statistics()
    except Exception as e:
        raise problem_response(e, request) from None
    return StatisticsResponse.from_domain(statistics)
