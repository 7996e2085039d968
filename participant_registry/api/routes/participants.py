"""Participant lifecycle API routes.

FastAPI router for intake ("new") and permanent participant records, plus
a Server-Sent Events stream of either collection's live list.

Developer Golden Rules:
1. SERVICE OWNS WRITES - Routes never touch the document store directly
2. FAIL LOUD - Return meaningful RFC 7807 error responses
3. STREAM BEFORE ID - The /stream route is declared before /{document_id}
"""

import asyncio
from collections.abc import AsyncIterator
from typing import Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import Response
from sse_starlette.sse import EventSourceResponse

from participant_registry.api.dependencies.participant import (
    get_participant_lifecycle_service,
)
from participant_registry.api.models.participant import (
    CollectionEnum,
    CreateParticipantRequest,
    ParticipantActionRequest,
    ParticipantChangeEvent,
    ParticipantCreatedResponse,
    ParticipantErrorResponse,
    ParticipantMovedResponse,
    ParticipantResponse,
    ParticipantStatusEnum,
    UpdateParticipantRequest,
)
from participant_registry.application.services.participant_lifecycle_service import (
    ParticipantLifecycleService,
)
from participant_registry.domain.errors import (
    DocumentNotFoundError,
    InvalidStateTransitionError,
    StoreUnavailableError,
    TransactionConflictError,
)
from participant_registry.domain.models.change import ChangeType
from participant_registry.domain.models.participant import Participant
from participant_registry.domain.models.query import SortField

router = APIRouter(prefix="/v1/participants", tags=["participants"])

# Seconds between keepalive comments on idle streams
KEEPALIVE_SECONDS = 30.0

_ERROR_RESPONSES: dict[Union[int, str], dict[str, object]] = {
    400: {"model": ParticipantErrorResponse, "description": "Invalid request"},
    404: {"model": ParticipantErrorResponse, "description": "Participant not found"},
    409: {
        "model": ParticipantErrorResponse,
        "description": "Invalid transition or transaction conflict",
    },
    503: {"model": ParticipantErrorResponse, "description": "Store unavailable"},
}


# =============================================================================
# Error Mapping
# =============================================================================


def problem_response(error: Exception, request: Request) -> HTTPException:
    """Translate a registry error to an RFC 7807 HTTPException.

    Raises:
        Exception: error itself, if it has no HTTP mapping.
    """
    headers: Optional[dict[str, str]] = None
    if isinstance(error, DocumentNotFoundError):
        status, slug, title = 404, "participant-not-found", "Participant Not Found"
    elif isinstance(error, InvalidStateTransitionError):
        status, slug, title = 409, "invalid-state-transition", "Invalid State Transition"
    elif isinstance(error, TransactionConflictError):
        status, slug, title = 409, "transaction-conflict", "Transaction Conflict"
    elif isinstance(error, StoreUnavailableError):
        status, slug, title = 503, "store-unavailable", "Store Unavailable"
        headers = {"Retry-After": "5"}
    elif isinstance(error, ValueError):
        status, slug, title = 400, "invalid-participant", "Invalid Participant Data"
    else:
        raise error

    return HTTPException(
        status_code=status,
        detail={
            "type": f"urn:participant-registry:{slug}",
            "title": title,
            "status": status,
            "detail": str(error),
            "instance": str(request.url),
        },
        headers=headers,
    )


def _actor(body: Optional[ParticipantActionRequest]) -> Optional[str]:
    return body.actor if body is not None else None


# =============================================================================
# Live List Stream
# =============================================================================


def parse_sort(sort: Optional[str]) -> list[SortField]:
    """Parse a comma-separated "field:direction" list.

    Raises:
        ValueError: If a direction is not asc or desc.
    """
    if not sort:
        return []
    fields: list[SortField] = []
    for item in sort.split(","):
        name, _, direction = item.strip().partition(":")
        if not name:
            raise ValueError(f"Invalid sort field: {item!r}")
        fields.append(SortField(name, direction or "asc"))
    return fields


async def participant_change_events(
    service: ParticipantLifecycleService,
    collection: CollectionEnum,
    status: Optional[ParticipantStatusEnum] = None,
    sort: Optional[list[SortField]] = None,
    limit: Optional[int] = None,
    keepalive: float = KEEPALIVE_SECONDS,
) -> AsyncIterator[dict[str, str]]:
    """Yield SSE events for every change of a live participant list.

    The live list is stopped when the consumer stops iterating. A store
    error ends the stream with an "error" event.
    """
    queue: asyncio.Queue[Union[ParticipantChangeEvent, Exception]] = asyncio.Queue()

    def on_change(
        participant: Participant, new_index: int, old_index: int, change: ChangeType
    ) -> None:
        queue.put_nowait(
            ParticipantChangeEvent(
                type=change,
                new_index=new_index,
                old_index=old_index,
                participant=ParticipantResponse.from_domain(participant),
            )
        )

    filter_ = {"status": status.value} if status is not None else None
    if collection is CollectionEnum.NEW:
        live_list = service.get_new_list(
            on_change, filter=filter_, sorter=sort, limit=limit, on_error=queue.put_nowait
        )
    else:
        live_list = service.get_permanent_list(
            on_change, filter=filter_, sorter=sort, limit=limit, on_error=queue.put_nowait
        )

    try:
        while True:
            try:
                item = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield {"comment": "keepalive"}
                continue

            if isinstance(item, Exception):
                yield {
                    "event": "error",
                    "data": ParticipantErrorResponse(
                        type="urn:participant-registry:stream-failed",
                        title="Stream Failed",
                        status=503,
                        detail=str(item),
                        instance=f"/v1/participants/{collection.value}/stream",
                    ).model_dump_json(),
                }
                return

            yield {
                "event": item.type.value,
                "data": item.model_dump_json(),
                "id": item.participant.id,
            }
    finally:
        live_list.stop()


@router.get(
    "/{collection}/stream",
    responses={400: _ERROR_RESPONSES[400]},
    summary="Stream a live participant list",
    description=(
        "Server-Sent Events of every change to a filtered, sorted participant "
        "list. The first events add the current page; later events report "
        "additions, modifications and removals with list indices."
    ),
)
async def stream_participants(
    collection: CollectionEnum,
    request: Request,
    status: Optional[ParticipantStatusEnum] = Query(
        default=None, description="Only records with this status"
    ),
    sort: Optional[str] = Query(
        default=None, description="Sort fields, e.g. createdAt:desc,name:asc"
    ),
    limit: Optional[int] = Query(default=None, ge=1, le=500, description="Page size"),
    service: ParticipantLifecycleService = Depends(get_participant_lifecycle_service),
) -> EventSourceResponse:
    """Stream live list changes via Server-Sent Events."""
    try:
        sort_fields = parse_sort(sort)
    except ValueError as e:
        raise problem_response(e, request) from None

    return EventSourceResponse(
        participant_change_events(service, collection, status, sort_fields, limit),
        headers={
            "X-Accel-Buffering": "no",  # Disable nginx buffering
            "Cache-Control": "no-cache",
        },
    )


# =============================================================================
# Intake ("new") Endpoints
# =============================================================================


@router.post(
    "/new",
    response_model=ParticipantCreatedResponse,
    status_code=201,
    responses={400: _ERROR_RESPONSES[400], 503: _ERROR_RESPONSES[503]},
    summary="Register a new participant",
)
async def add_new_participant(
    request_data: CreateParticipantRequest,
    request: Request,
    service: ParticipantLifecycleService = Depends(get_participant_lifecycle_service),
) -> ParticipantCreatedResponse:
    """Create an intake record and count it in the statistics."""
    try:
        document_id = await service.add_new(request_data.fields, request_data.actor)
    except Exception as e:
        raise problem_response(e, request) from None
    return ParticipantCreatedResponse(id=document_id, collection=CollectionEnum.NEW)


@router.get(
    "/new/{document_id}",
    response_model=ParticipantResponse,
    responses={404: _ERROR_RESPONSES[404]},
    summary="Get an intake record",
)
async def get_new_participant(
    document_id: str,
    request: Request,
    service: ParticipantLifecycleService = Depends(get_participant_lifecycle_service),
) -> ParticipantResponse:
    """Read an intake record."""
    try:
        participant = await service.fetch_new(document_id)
    except Exception as e:
        raise problem_response(e, request) from None
    return ParticipantResponse.from_domain(participant)


@router.patch(
    "/new/{document_id}",
    status_code=204,
    responses={400: _ERROR_RESPONSES[400], 404: _ERROR_RESPONSES[404]},
    summary="Update an intake record",
)
async def update_new_participant(
    document_id: str,
    request_data: UpdateParticipantRequest,
    request: Request,
    service: ParticipantLifecycleService = Depends(get_participant_lifecycle_service),
) -> Response:
    """Merge fields into an intake record."""
    try:
        await service.update_new(document_id, request_data.fields, request_data.actor)
    except Exception as e:
        raise problem_response(e, request) from None
    return Response(status_code=204)


@router.delete(
    "/new/{document_id}",
    status_code=204,
    responses={404: _ERROR_RESPONSES[404], 409: _ERROR_RESPONSES[409]},
    summary="Delete an intake record",
)
async def delete_new_participant(
    document_id: str,
    request: Request,
    service: ParticipantLifecycleService = Depends(get_participant_lifecycle_service),
) -> Response:
    """Remove an intake record and uncount it."""
    try:
        await service.delete_new(document_id)
    except Exception as e:
        raise problem_response(e, request) from None
    return Response(status_code=204)


@router.post(
    "/new/{document_id}/move",
    response_model=ParticipantMovedResponse,
    responses={404: _ERROR_RESPONSES[404], 409: _ERROR_RESPONSES[409]},
    summary="Move an intake record to the permanent collection",
    description="The permanent record gets a new id; the intake id is discarded.",
)
async def move_participant(
    document_id: str,
    request: Request,
    request_data: Optional[ParticipantActionRequest] = None,
    service: ParticipantLifecycleService = Depends(get_participant_lifecycle_service),
) -> ParticipantMovedResponse:
    """Promote an intake record."""
    try:
        new_id = await service.move_to_permanent(document_id, _actor(request_data))
    except Exception as e:
        raise problem_response(e, request) from None
    return ParticipantMovedResponse(previous_id=document_id, id=new_id)


# =============================================================================
# Permanent Endpoints
# =============================================================================


@router.post(
    "/permanent",
    response_model=ParticipantCreatedResponse,
    status_code=201,
    responses={400: _ERROR_RESPONSES[400], 503: _ERROR_RESPONSES[503]},
    summary="Create a permanent participant record",
)
async def add_permanent_participant(
    request_data: CreateParticipantRequest,
    request: Request,
    service: ParticipantLifecycleService = Depends(get_participant_lifecycle_service),
) -> ParticipantCreatedResponse:
    """Create a record directly in the permanent collection."""
    try:
        document_id = await service.add_permanent(
            request_data.fields, request_data.actor
        )
    except Exception as e:
        raise problem_response(e, request) from None
    return ParticipantCreatedResponse(
        id=document_id, collection=CollectionEnum.PERMANENT
    )


@router.get(
    "/permanent/{document_id}",
    response_model=ParticipantResponse,
    responses={404: _ERROR_RESPONSES[404]},
    summary="Get a permanent record",
)
async def get_permanent_participant(
    document_id: str,
    request: Request,
    service: ParticipantLifecycleService = Depends(get_participant_lifecycle_service),
) -> ParticipantResponse:
    """Read a permanent record."""
    try:
        participant = await service.fetch_permanent(document_id)
    except Exception as e:
        raise problem_response(e, request) from None
    return ParticipantResponse.from_domain(participant)


@router.patch(
    "/permanent/{document_id}",
    status_code=204,
    responses={400: _ERROR_RESPONSES[400], 404: _ERROR_RESPONSES[404]},
    summary="Update a permanent record",
)
async def update_permanent_participant(
    document_id: str,
    request_data: UpdateParticipantRequest,
    request: Request,
    service: ParticipantLifecycleService = Depends(get_participant_lifecycle_service),
) -> Response:
    """Merge fields into a permanent record."""
    try:
        await service.update_permanent(
            document_id, request_data.fields, request_data.actor
        )
    except Exception as e:
        raise problem_response(e, request) from None
    return Response(status_code=204)


_TRANSITIONS = {
    "delete": "delete_permanent",
    "restore": "undo_delete_permanent",
    "approve": "approve_pending",
    "decline": "decline_pending",
}


async def _run_transition(
    action: str,
    document_id: str,
    request: Request,
    request_data: Optional[ParticipantActionRequest],
    service: ParticipantLifecycleService,
) -> ParticipantResponse:
    try:
        transition = getattr(service, _TRANSITIONS[action])
        await transition(document_id, _actor(request_data))
        participant = await service.fetch_permanent(document_id)
    except Exception as e:
        raise problem_response(e, request) from None
    return ParticipantResponse.from_domain(participant)


@router.post(
    "/permanent/{document_id}/delete",
    response_model=ParticipantResponse,
    responses={404: _ERROR_RESPONSES[404], 409: _ERROR_RESPONSES[409]},
    summary="Soft-delete a permanent record",
)
async def delete_permanent_participant(
    document_id: str,
    request: Request,
    request_data: Optional[ParticipantActionRequest] = None,
    service: ParticipantLifecycleService = Depends(get_participant_lifecycle_service),
) -> ParticipantResponse:
    """Set status Deleted; the record is retained."""
    return await _run_transition("delete", document_id, request, request_data, service)


@router.post(
    "/permanent/{document_id}/restore",
    response_model=ParticipantResponse,
    responses={404: _ERROR_RESPONSES[404], 409: _ERROR_RESPONSES[409]},
    summary="Restore a soft-deleted record",
)
async def restore_permanent_participant(
    document_id: str,
    request: Request,
    request_data: Optional[ParticipantActionRequest] = None,
    service: ParticipantLifecycleService = Depends(get_participant_lifecycle_service),
) -> ParticipantResponse:
    """Set status back to Pending."""
    return await _run_transition(
        "restore", document_id, request, request_data, service
    )


@router.post(
    "/permanent/{document_id}/approve",
    response_model=ParticipantResponse,
    responses={404: _ERROR_RESPONSES[404], 409: _ERROR_RESPONSES[409]},
    summary="Approve a participant",
)
async def approve_participant(
    document_id: str,
    request: Request,
    request_data: Optional[ParticipantActionRequest] = None,
    service: ParticipantLifecycleService = Depends(get_participant_lifecycle_service),
) -> ParticipantResponse:
    """Set status Approved."""
    return await _run_transition(
        "approve", document_id, request, request_data, service
    )


@router.post(
    "/permanent/{document_id}/decline",
    response_model=ParticipantResponse,
    responses={404: _ERROR_RESPONSES[404], 409: _ERROR_RESPONSES[409]},
    summary="Decline a participant",
)
async def decline_participant(
    document_id: str,
    request: Request,
    request_data: Optional[ParticipantActionRequest] = None,
    service: ParticipantLifecycleService = Depends(get_participant_lifecycle_service),
) -> ParticipantResponse:
    """Set status Declined."""
    return await _run_transition(
        "decline", document_id, request, request_data, service
    )
