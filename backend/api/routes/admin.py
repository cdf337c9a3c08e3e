"""
Staff routes.

PATCH /admin/{city_code}/conversations/{conversation_id}        - Edit status, needs_human, department, urgent
POST  /admin/{city_code}/conversations/{conversation_id}/notes  - Append an internal note

Both require the staff session cookie for the same city.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import or_
from sqlalchemy.orm import Session

from api.deps import require_staff_tenant
from api.schemas import ConversationResponse, NoteRequest, NoteResponse, StaffEditRequest, TicketSummary
from database import get_db
from models import Conversation, Tenant
from services.conversations import add_note
from services.errors import ConversationNotFound
from services.escalation import apply_staff_edit
from services.tickets import get_ticket

router = APIRouter()


def _get_conversation(db: Session, tenant: Tenant, conversation_id: str) -> Conversation:
    """Look up by internal id or by the widget's external id."""
    conversation = (
        db.query(Conversation)
        .filter(
            Conversation.tenant_id == tenant.id,
            or_(Conversation.id == conversation_id, Conversation.external_id == conversation_id),
        )
        .first()
    )
    if conversation is None:
        raise ConversationNotFound(f"Conversation not found: {conversation_id}")
    return conversation


def _conversation_response(db: Session, conversation: Conversation) -> ConversationResponse:
    ticket = get_ticket(db, conversation.id)
    response = ConversationResponse.model_validate(conversation)
    response.ticket = TicketSummary.model_validate(ticket) if ticket is not None else None
    return response


@router.patch("/admin/{city_code}/conversations/{conversation_id}", response_model=ConversationResponse)
async def edit_conversation(
    conversation_id: str,
    body: StaffEditRequest,
    tenant: Tenant = Depends(require_staff_tenant),
    db: Session = Depends(get_db),
) -> ConversationResponse:
    """Apply a staff edit to a conversation and its ticket."""
    conversation = _get_conversation(db, tenant, conversation_id)
    apply_staff_edit(
        db,
        tenant,
        conversation,
        status=body.status.value if body.status is not None else None,
        needs_human=body.needs_human,
        department=body.department,
        urgent=body.urgent,
    )
    return _conversation_response(db, conversation)


@router.post(
    "/admin/{city_code}/conversations/{conversation_id}/notes",
    response_model=NoteResponse,
    status_code=201,
)
async def create_note(
    conversation_id: str,
    body: NoteRequest,
    tenant: Tenant = Depends(require_staff_tenant),
    db: Session = Depends(get_db),
) -> NoteResponse:
    """Append an internal note to a conversation."""
    conversation = _get_conversation(db, tenant, conversation_id)
    note = add_note(db, conversation, body.note)
    return NoteResponse.model_validate(note)
