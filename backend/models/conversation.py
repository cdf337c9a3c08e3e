"""
Conversation, message and staff-note models.

Conversations are unique per (tenant, external id); messages are unique per
(conversation, external id). Both uniqueness constraints back the
idempotent upserts used by the chat endpoint.
"""

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from database import Base, utcnow
from models.enums import ConversationStatus


def _uuid() -> str:
    return str(uuid.uuid4())


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="conversations_tenant_external_id_uq"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), ForeignKey("cities.id"), nullable=False, index=True)
    external_id = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=ConversationStatus.OPEN.value)
    needs_human = Column(Boolean, nullable=False, default=False)
    fallback_count = Column(Integer, nullable=False, default=0)
    category = Column(String(50), nullable=True)
    title = Column(Text, nullable=True)
    summary = Column(Text, nullable=True)
    title_source = Column(String(20), nullable=True, index=True)
    title_generated_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    last_message_at = Column(DateTime, nullable=True)
    last_activity_at = Column(DateTime, nullable=True)
    submitted_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return (
            f"<Conversation(id={self.id}, external_id={self.external_id!r}, "
            f"status={self.status!r}, needs_human={self.needs_human})>"
        )


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("conversation_id", "external_id", name="messages_conversation_external_id_uq"),
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    conversation_id = Column(String(36), ForeignKey("conversations.id"), nullable=False)
    external_id = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False)
    content_redacted = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    # "metadata" is reserved on declarative classes
    message_metadata = Column("metadata", JSON, nullable=True)

    def __repr__(self):
        return f"<Message(id={self.id}, external_id={self.external_id!r}, role={self.role!r})>"


class ConversationNote(Base):
    __tablename__ = "conversation_notes"

    id = Column(String(36), primary_key=True, default=_uuid)
    conversation_id = Column(String(36), ForeignKey("conversations.id"), nullable=False, index=True)
    note = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
