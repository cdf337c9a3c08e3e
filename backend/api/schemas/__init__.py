"""API schemas package."""

from .requests import (
    EVENT_ADAPTER,
    ChatEvent,
    ChatRequest,
    ConversationEndEvent,
    ConversationStartEvent,
    IntakeEvent,
    IntakePayload,
    MessageEvent,
    NoteRequest,
    QuestionEvent,
    StaffEditRequest,
    TicketContact,
    TicketEvent,
    TicketPayload,
)
from .responses import (
    ChatMetaPayload,
    ConversationResponse,
    ErrorResponse,
    EventResponse,
    HealthResponse,
    NoteResponse,
    RetrievedDocRef,
    TicketSummary,
)

__all__ = [
    # Requests
    "EVENT_ADAPTER",
    "ChatEvent",
    "ChatRequest",
    "ConversationEndEvent",
    "ConversationStartEvent",
    "IntakeEvent",
    "IntakePayload",
    "MessageEvent",
    "NoteRequest",
    "QuestionEvent",
    "StaffEditRequest",
    "TicketContact",
    "TicketEvent",
    "TicketPayload",
    # Responses
    "ChatMetaPayload",
    "ConversationResponse",
    "ErrorResponse",
    "EventResponse",
    "HealthResponse",
    "NoteResponse",
    "RetrievedDocRef",
    "TicketSummary",
]
