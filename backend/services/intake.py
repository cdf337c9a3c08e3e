"""Ticket intake and ticket updates coming from the chat widget."""

from datetime import datetime, timezone
from typing import Any, Optional, Union

import structlog
from sqlalchemy.orm import Session

from models import Conversation, Tenant, Ticket, TicketStatus
from services.errors import ValidationError
from services.escalation import mark_intake_submitted
from services.tickets import upsert_ticket

logger = structlog.get_logger(__name__)

# Widget versions sent the problem description under different keys
CONTACT_NOTE_KEYS = ("contact_note", "note", "napomena", "message", "description")


def from_epoch_ms(value: Optional[Union[int, float]]) -> Optional[datetime]:
    """Convert a JavaScript millisecond timestamp to naive UTC."""
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(tzinfo=None)


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def resolve_contact_note(intake: dict[str, Any]) -> Optional[str]:
    for key in CONTACT_NOTE_KEYS:
        note = _clean(intake.get(key))
        if note:
            return note
    return None


def validate_intake(intake: dict[str, Any]) -> None:
    """Check the intake form.

    Raises:
        ValidationError: when name, description or consent is missing, or
            neither phone nor e-mail is given.
    """
    if not _clean(intake.get("name")) or not _clean(intake.get("description")) or not intake.get("consent_given"):
        raise ValidationError("Missing required intake fields")
    if not _clean(intake.get("phone")) and not _clean(intake.get("email")):
        raise ValidationError("Phone or email is required")
    if not resolve_contact_note(intake):
        raise ValidationError("Molimo unesite opis problema.")


def submit_intake(
    db: Session,
    tenant: Tenant,
    conversation: Conversation,
    intake: dict[str, Any],
) -> Ticket:
    """Validate the intake, store contact details on the ticket and escalate."""
    validate_intake(intake)

    fields = {
        "status": TicketStatus.OPEN.value,
        "contact_name": _clean(intake.get("name")),
        "contact_phone": _clean(intake.get("phone")),
        "contact_email": _clean(intake.get("email")),
        "contact_location": _clean(intake.get("address")),
        "contact_note": resolve_contact_note(intake),
    }
    consent_at = from_epoch_ms(intake.get("consent_timestamp"))
    if consent_at is not None:
        fields["consent_at"] = consent_at

    ticket = upsert_ticket(db, tenant, conversation, **fields)
    mark_intake_submitted(db, conversation)

    logger.info(
        "ticket_intake_submitted",
        conversation_id=conversation.id,
        ticket_ref=ticket.ticket_ref,
        has_phone=bool(fields["contact_phone"]),
        has_email=bool(fields["contact_email"]),
    )
    return ticket


def apply_ticket_update(
    db: Session,
    tenant: Tenant,
    conversation: Conversation,
    ticket: dict[str, Any],
) -> Ticket:
    """Write a ticket_update / contact_submit payload onto the ticket.

    Only keys present in the payload are written.
    """
    fields: dict[str, Any] = {}
    for key in ("status", "department", "urgent"):
        if key in ticket:
            fields[key] = ticket[key]

    contact = ticket.get("contact") or {}
    for key, column in (
        ("name", "contact_name"),
        ("phone", "contact_phone"),
        ("email", "contact_email"),
        ("location", "contact_location"),
        ("note", "contact_note"),
    ):
        if key in contact:
            fields[column] = _clean(contact[key])
    if contact.get("consentAt") is not None:
        fields["consent_at"] = from_epoch_ms(contact["consentAt"])

    return upsert_ticket(db, tenant, conversation, **fields)
