"""
Widget event ingestion.

Telemetry events (message, question, conversation_start/end) only touch the
conversation: no message rows are written here, the chat endpoint owns
those. Ticket events write the conversation's ticket; intake submissions
also escalate the conversation.
"""

from typing import Any, Optional

import structlog
from sqlalchemy.orm import Session

from models import Conversation, ConversationStatus, MessageRole, Tenant
from services.categorize import classify_by_keywords
from services.conversations import count_messages, new_external_conversation_id, resolve_or_create
from services.intake import apply_ticket_update, submit_intake
from services.persistence import transaction

logger = structlog.get_logger(__name__)

TICKET_EVENT_TYPES = ("ticket_update", "contact_submit")
INTAKE_EVENT_TYPE = "ticket_intake_submitted"


def classify_from_event(db: Session, conversation: Conversation, content: str) -> Optional[str]:
    """Set the category from a citizen message event if none is set yet.

    Only applies to open conversations with no stored citizen messages.
    """
    if conversation.category is not None or not content:
        return None
    if conversation.status not in (None, ConversationStatus.OPEN.value):
        return None
    user_count, _ = count_messages(db, conversation.id)
    if user_count:
        return None

    category = classify_by_keywords(content)
    if category:
        with transaction(db, "event_classify"):
            conversation.category = category
        logger.info("conversation_classified", conversation_id=conversation.id, category=category)
    return category


def ingest_event(
    db: Session,
    tenant: Tenant,
    event_type: str,
    conversation_id: Optional[str] = None,
    role: Optional[str] = None,
    content: Optional[str] = None,
    ticket: Optional[dict[str, Any]] = None,
    intake: Optional[dict[str, Any]] = None,
) -> Optional[str]:
    """Apply one widget event.

    Returns:
        The ticket reference when the event wrote a ticket, else None.

    Raises:
        ValidationError: invalid intake submission.
        PersistenceFailure: the conversation or ticket could not be written.
    """
    conversation = resolve_or_create(db, tenant.id, conversation_id or new_external_conversation_id())
    ticket_ref = None

    if event_type == "message" and role == MessageRole.USER.value and content:
        classify_from_event(db, conversation, content)
    elif event_type in TICKET_EVENT_TYPES:
        ticket_ref = apply_ticket_update(db, tenant, conversation, ticket or {}).ticket_ref
    elif event_type == INTAKE_EVENT_TYPE:
        ticket_ref = submit_intake(db, tenant, conversation, intake or {}).ticket_ref

    logger.info(
        "event_ingested",
        event_type=event_type,
        conversation_id=conversation.id,
        city_code=tenant.code,
        ticket_ref=ticket_ref,
    )
    return ticket_ref
