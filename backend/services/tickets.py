"""
Ticket and knowledge-gap upserts.

One ticket per conversation, keyed by conversation id. Updates merge into
the existing row: created_at, ticket_ref and any field the caller did not
supply are kept. Knowledge gaps group unanswered questions per tenant by
their lowercased, trimmed text.
"""

from typing import Any, Optional

import structlog
from sqlalchemy.orm import Session

from database import utcnow
from models import (
    Conversation,
    KnowledgeGap,
    KnowledgeGapReason,
    Tenant,
    Ticket,
    TicketRefCounter,
)
from services.persistence import transaction

logger = structlog.get_logger(__name__)

TICKET_FIELDS = (
    "status",
    "department",
    "urgent",
    "contact_name",
    "contact_phone",
    "contact_email",
    "contact_location",
    "contact_note",
    "consent_at",
)


def format_ticket_ref(code: str, year: int, value: int) -> str:
    """``PL-2026-000123``"""
    return f"{code.upper()}-{year}-{value:06d}"


def next_ticket_ref(db: Session, tenant: Tenant, year: Optional[int] = None) -> str:
    """Allocate the tenant's next ticket reference for ``year``.

    Runs inside the caller's transaction; the counter row is locked on
    databases that support SELECT ... FOR UPDATE.
    """
    year = year or utcnow().year
    counter = (
        db.query(TicketRefCounter)
        .filter(TicketRefCounter.tenant_id == tenant.id, TicketRefCounter.year == year)
        .with_for_update()
        .first()
    )
    if counter is None:
        counter = TicketRefCounter(tenant_id=tenant.id, year=year, last_value=0)
        db.add(counter)
    counter.last_value = (counter.last_value or 0) + 1
    db.flush()
    return format_ticket_ref(tenant.code, year, counter.last_value)


def get_ticket(db: Session, conversation_id: str) -> Optional[Ticket]:
    return db.get(Ticket, conversation_id)


def upsert_ticket(
    db: Session,
    tenant: Tenant,
    conversation: Conversation,
    initial_status: Optional[str] = None,
    **fields: Any,
) -> Ticket:
    """Create or update the conversation's ticket.

    Args:
        db: Database session.
        tenant: Owning tenant; its code prefixes the ticket reference.
        conversation: The conversation the ticket belongs to.
        initial_status: Status applied only when the ticket is created.
        **fields: Ticket columns to write (see TICKET_FIELDS). Omitted
            columns keep their stored value.

    Returns:
        The stored ticket.

    Raises:
        PersistenceFailure: if the write fails.
    """
    unknown = set(fields) - set(TICKET_FIELDS)
    if unknown:
        raise ValueError(f"Unknown ticket fields: {sorted(unknown)}")

    now = utcnow()
    with transaction(db, "ticket_upsert"):
        ticket = get_ticket(db, conversation.id)
        created = ticket is None
        if created:
            ticket = Ticket(
                conversation_id=conversation.id,
                tenant_id=tenant.id,
                status=initial_status,
                urgent=False,
                created_at=now,
            )
            db.add(ticket)

        for name, value in fields.items():
            if name == "urgent" and value is None:
                continue
            setattr(ticket, name, value)

        if not ticket.ticket_ref:
            ticket.ticket_ref = next_ticket_ref(db, tenant)
        ticket.updated_at = now

    logger.info(
        "ticket_upserted",
        conversation_id=conversation.id,
        ticket_ref=ticket.ticket_ref,
        status=ticket.status,
        created=created,
    )
    return ticket


def question_key(question: str) -> str:
    return (question or "").strip().lower()


def upsert_knowledge_gap(
    db: Session,
    tenant_id: str,
    conversation_id: Optional[str],
    question: str,
) -> KnowledgeGap:
    """Record a question that retrieval could not answer.

    A gap with the same normalized question in the same tenant gets its
    occurrences incremented; otherwise a new open gap is inserted.
    """
    now = utcnow()
    key = question_key(question)
    with transaction(db, "knowledge_gap_upsert"):
        gap = (
            db.query(KnowledgeGap)
            .filter(KnowledgeGap.tenant_id == tenant_id, KnowledgeGap.question_key == key)
            .first()
        )
        if gap is not None:
            gap.occurrences = (gap.occurrences or 0) + 1
            gap.last_seen_at = now
        else:
            gap = KnowledgeGap(
                tenant_id=tenant_id,
                conversation_id=conversation_id,
                question=question.strip(),
                question_key=key,
                occurrences=1,
                reason=KnowledgeGapReason.NO_SOURCES.value,
                status="open",
                last_seen_at=now,
                created_at=now,
            )
            db.add(gap)

    logger.info("knowledge_gap_recorded", tenant_id=tenant_id, occurrences=gap.occurrences)
    return gap
