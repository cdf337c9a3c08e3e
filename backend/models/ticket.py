"""
Ticket, ticket reference sequence and knowledge-gap models.
"""

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from database import Base, utcnow


class Ticket(Base):
    __tablename__ = "tickets"

    # One ticket per conversation: the conversation id is the upsert key
    conversation_id = Column(String(36), ForeignKey("conversations.id"), primary_key=True)
    tenant_id = Column(String(36), ForeignKey("cities.id"), nullable=False, index=True)
    status = Column(String(30), nullable=True)
    department = Column(String(50), nullable=True)
    urgent = Column(Boolean, nullable=False, default=False)
    contact_name = Column(String(255), nullable=True)
    contact_phone = Column(String(64), nullable=True)
    contact_email = Column(String(255), nullable=True)
    contact_location = Column(Text, nullable=True)
    contact_note = Column(Text, nullable=True)
    consent_at = Column(DateTime, nullable=True)
    ticket_ref = Column(String(32), nullable=True, unique=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<Ticket(conversation_id={self.conversation_id}, ref={self.ticket_ref!r}, status={self.status!r})>"


class TicketRefCounter(Base):
    """Per-tenant, per-year sequence backing ticket references."""

    __tablename__ = "ticket_ref_counters"

    tenant_id = Column(String(36), ForeignKey("cities.id"), primary_key=True)
    year = Column(Integer, primary_key=True)
    last_value = Column(Integer, nullable=False, default=0)


class KnowledgeGap(Base):
    __tablename__ = "knowledge_gaps"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(36), ForeignKey("cities.id"), nullable=False, index=True)
    conversation_id = Column(String(36), ForeignKey("conversations.id"), nullable=True)
    question = Column(Text, nullable=False)
    # Lowercased, trimmed question: the grouping key within a tenant
    question_key = Column(Text, nullable=False, index=True)
    occurrences = Column(Integer, nullable=False, default=1)
    reason = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default="open")
    last_seen_at = Column(DateTime, nullable=False, default=utcnow)
    created_at = Column(DateTime, nullable=False, default=utcnow)
