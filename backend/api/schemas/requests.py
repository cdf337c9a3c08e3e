"""
Request schemas for the API.

These define the expected input structure for API endpoints.
Using Pydantic v2 for validation and serialization. Field names follow the
chat widget's camelCase wire format through aliases.
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from models import ConversationStatus


class ChatRequest(BaseModel):
    """One citizen message sent to the chat endpoint."""

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {"message": "Koje je radno vrijeme gradske uprave?", "conversationId": "conv_123", "messageId": "m1"}
            ]
        },
    )

    # Blank messages are rejected by the orchestrator with the same 400 body
    message: Optional[str] = Field(default=None, max_length=4000, description="Citizen's message")
    conversation_id: Optional[str] = Field(default=None, alias="conversationId", max_length=255)
    message_id: Optional[str] = Field(default=None, alias="messageId", max_length=200)


# =============================================================================
# Events
# =============================================================================

class _EventBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: Optional[str] = Field(default=None, alias="conversationId", max_length=255)
    message_id: Optional[str] = Field(default=None, alias="messageId")
    timestamp: Optional[float] = Field(default=None, description="Client time in epoch milliseconds")
    category: Optional[str] = None
    meta: Optional[dict[str, Any]] = None
    metadata: Optional[dict[str, Any]] = None
    # Accepted from older widgets; never written
    needs_human: Optional[bool] = Field(default=None, alias="needsHuman")


class MessageEvent(_EventBase):
    type: Literal["message"]
    role: Optional[Literal["user", "assistant"]] = None
    content: Optional[str] = None


class QuestionEvent(_EventBase):
    type: Literal["question"]
    question: Optional[str] = None


class ConversationStartEvent(_EventBase):
    type: Literal["conversation_start"]


class ConversationEndEvent(_EventBase):
    type: Literal["conversation_end"]


class TicketContact(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    location: Optional[str] = None
    note: Optional[str] = None
    consent_at: Optional[float] = Field(default=None, alias="consentAt")


class TicketPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: Optional[str] = Field(default=None, max_length=30)
    department: Optional[str] = Field(default=None, max_length=50)
    urgent: Optional[bool] = None
    ticket_ref: Optional[str] = Field(default=None, alias="ticketRef")
    contact: Optional[TicketContact] = None


class TicketEvent(_EventBase):
    type: Literal["ticket_update", "contact_submit"]
    ticket: TicketPayload = Field(default_factory=TicketPayload)


class IntakePayload(BaseModel):
    """Ticket intake form. Required fields are checked by the intake service."""

    # Older widgets send the description as note, napomena or message
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    description: Optional[str] = None
    contact_note: Optional[str] = None
    consent_given: bool = False
    consent_text: Optional[str] = None
    consent_timestamp: Optional[float] = None


class IntakeEvent(_EventBase):
    type: Literal["ticket_intake_submitted"]
    intake: IntakePayload


ChatEvent = Annotated[
    Union[
        MessageEvent,
        QuestionEvent,
        ConversationStartEvent,
        ConversationEndEvent,
        TicketEvent,
        IntakeEvent,
    ],
    Field(discriminator="type"),
]


# Validates a raw request body into the matching event model
EVENT_ADAPTER: TypeAdapter = TypeAdapter(ChatEvent)


# =============================================================================
# Staff
# =============================================================================

class StaffEditRequest(BaseModel):
    """Direct edit of a conversation by staff."""

    model_config = ConfigDict(populate_by_name=True)

    status: Optional[ConversationStatus] = None
    needs_human: Optional[bool] = Field(default=None, alias="needsHuman")
    department: Optional[str] = Field(default=None, max_length=50)
    urgent: Optional[bool] = None


class NoteRequest(BaseModel):
    """Internal staff note on a conversation."""

    model_config = ConfigDict(str_strip_whitespace=True)

    note: str = Field(..., min_length=1, max_length=2000)
