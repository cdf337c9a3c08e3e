"""Widget event ingestion.

POST /grad/{city_id}/events - Telemetry, ticket updates and intake submissions.
"""

from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from api.rate_limit import events_rate_limit, limiter
from api.schemas import EVENT_ADAPTER, EventResponse, IntakeEvent, MessageEvent, TicketEvent
from database import get_db
from services.events import ingest_event
from services.tenants import resolve_tenant

router = APIRouter()


@router.post("/grad/{city_id}/events", response_model=EventResponse, response_model_exclude_none=True)
@limiter.limit(events_rate_limit)
async def post_event(
    city_id: str,
    request: Request,
    payload: dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
) -> EventResponse:
    """Record one widget event. ``ticket_ref`` is returned when a ticket was written."""
    try:
        event = EVENT_ADAPTER.validate_python(payload)
    except PydanticValidationError as e:
        raise RequestValidationError(e.errors()) from e

    tenant = resolve_tenant(db, city_id)

    kwargs: dict[str, Any] = {}
    if isinstance(event, MessageEvent):
        kwargs = {"role": event.role, "content": event.content}
    elif isinstance(event, TicketEvent):
        kwargs = {"ticket": event.ticket.model_dump(exclude_unset=True, by_alias=True)}
    elif isinstance(event, IntakeEvent):
        kwargs = {"intake": event.intake.model_dump()}

    ticket_ref = ingest_event(
        db,
        tenant,
        event.type,
        conversation_id=event.conversation_id,
        **kwargs,
    )
    return EventResponse(ok=True, ticket_ref=ticket_ref)
