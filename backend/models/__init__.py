"""SQLAlchemy models. Importing this package registers every table with Base."""

from .enums import (
    ConversationStatus,
    KnowledgeGapReason,
    MessageRole,
    TicketStatus,
    TitleSource,
)
from .tenant import Tenant
from .conversation import Conversation, ConversationNote, Message
from .ticket import KnowledgeGap, Ticket, TicketRefCounter

__all__ = [
    # Enums
    "ConversationStatus",
    "KnowledgeGapReason",
    "MessageRole",
    "TicketStatus",
    "TitleSource",
    # Tables
    "Tenant",
    "Conversation",
    "ConversationNote",
    "Message",
    "Ticket",
    "TicketRefCounter",
    "KnowledgeGap",
]
