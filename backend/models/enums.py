"""Enumeration types shared by the ORM models and API schemas."""

from enum import Enum


class ConversationStatus(str, Enum):
    """Staff-facing lifecycle of a conversation."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"


class MessageRole(str, Enum):
    """Author of a stored message."""

    USER = "user"
    ASSISTANT = "assistant"


class TitleSource(str, Enum):
    """Where a conversation title came from."""

    FIRST_MESSAGE = "first_message"
    LLM = "llm"


class TicketStatus(str, Enum):
    """Stored ticket status values."""

    OPEN = "open"
    NEEDS_HUMAN = "needs_human"
    CONTACT_REQUESTED = "contact_requested"
    CLOSED = "closed"


class KnowledgeGapReason(str, Enum):
    """Why a question was recorded as a knowledge gap."""

    NO_SOURCES = "no_sources"
