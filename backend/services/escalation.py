"""
Escalation state machine.

The only module that writes a conversation's needs_human, fallback_count,
status and submitted_at. needs_human turns true only through the
ticket-intent gate, an intake submission, or an explicit staff edit; a
retrieval fallback or an error leaves it false.
"""

from typing import Optional

import structlog
from sqlalchemy.orm import Session

from database import utcnow
from models import Conversation, ConversationStatus, Tenant, Ticket
from services.persistence import transaction
from services.tickets import upsert_ticket

logger = structlog.get_logger(__name__)


def record_fallback(db: Session, conversation: Conversation) -> None:
    """Zero-retrieval answer: count it, keep needs_human false."""
    now = utcnow()
    with transaction(db, "record_fallback"):
        conversation.fallback_count = (conversation.fallback_count or 0) + 1
        conversation.needs_human = False
        conversation.updated_at = now
        conversation.last_activity_at = now
    logger.info(
        "conversation_fallback_recorded",
        conversation_id=conversation.id,
        fallback_count=conversation.fallback_count,
        needs_human=False,
    )


def mark_ticket_intent(db: Session, conversation: Conversation) -> None:
    """Citizen asked to report a problem: hand the conversation to staff."""
    now = utcnow()
    with transaction(db, "mark_ticket_intent"):
        conversation.needs_human = True
        conversation.updated_at = now
        conversation.last_activity_at = now
    logger.info("conversation_ticket_intent", conversation_id=conversation.id, needs_human=True)


def mark_intake_submitted(db: Session, conversation: Conversation) -> None:
    """Intake form submitted: escalate, reopen and stamp submitted_at."""
    now = utcnow()
    with transaction(db, "mark_intake_submitted"):
        conversation.needs_human = True
        conversation.status = ConversationStatus.OPEN.value
        conversation.submitted_at = now
        conversation.updated_at = now
        conversation.last_activity_at = now
    logger.info("conversation_intake_submitted", conversation_id=conversation.id, needs_human=True)


def clear_on_error(db: Session, conversation: Conversation) -> None:
    """Re-assert needs_human false after a failed turn."""
    with transaction(db, "clear_on_error"):
        conversation.needs_human = False
        conversation.updated_at = utcnow()
    logger.info("conversation_needs_human_cleared", conversation_id=conversation.id)


def apply_staff_edit(
    db: Session,
    tenant: Tenant,
    conversation: Conversation,
    status: Optional[str] = None,
    needs_human: Optional[bool] = None,
    department: Optional[str] = None,
    urgent: Optional[bool] = None,
) -> Optional[Ticket]:
    """Apply a staff member's direct edit.

    Conversation fields are set as given; department and urgent are written
    to the ticket, which is created if absent. last_activity_at is always
    refreshed.

    Returns:
        The ticket when department or urgent was edited, else None.
    """
    now = utcnow()
    with transaction(db, "staff_edit"):
        if status is not None:
            conversation.status = ConversationStatus(status).value
        if needs_human is not None:
            conversation.needs_human = needs_human
        conversation.updated_at = now
        conversation.last_activity_at = now

    ticket = None
    ticket_fields = {}
    if department is not None:
        ticket_fields["department"] = department
    if urgent is not None:
        ticket_fields["urgent"] = urgent
    if ticket_fields:
        ticket = upsert_ticket(db, tenant, conversation, **ticket_fields)

    logger.info(
        "conversation_staff_edit",
        conversation_id=conversation.id,
        status=conversation.status,
        needs_human=conversation.needs_human,
        ticket_fields=sorted(ticket_fields),
    )
    return ticket
