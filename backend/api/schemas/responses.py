"""
Response schemas for the API.

These define the output structure for the JSON endpoints. The chat
endpoint streams Server-Sent Events and has no response model; its meta
frame payload is described by ChatMetaPayload.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Body of every error response."""
    error: str = Field(..., description="Machine-readable error code")
    reason: Optional[str] = Field(None, description="Failure reason (retrieval errors)")
    detail: Optional[Any] = Field(None, description="Human-readable message or validation errors")


class HealthResponse(BaseModel):
    status: str = "ok"


# =============================================================================
# Chat
# =============================================================================

class RetrievedDocRef(BaseModel):
    title: Optional[str] = None
    source: Optional[str] = None
    score: float


class ChatMetaPayload(BaseModel):
    """The single ``event: meta`` frame sent at the end of every chat turn."""
    model: Optional[str] = None
    latency_ms: int
    retrieved_docs_count: int
    retrieved_docs_top3: list[RetrievedDocRef] = Field(default_factory=list)
    used_fallback: bool
    needs_human: bool


# =============================================================================
# Events
# =============================================================================

class EventResponse(BaseModel):
    ok: bool = True
    ticket_ref: Optional[str] = Field(None, description="Present when the event touched a ticket")


# =============================================================================
# Staff
# =============================================================================

class TicketSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    ticket_ref: Optional[str] = None
    status: Optional[str] = None
    department: Optional[str] = None
    urgent: bool = False


class ConversationResponse(BaseModel):
    """Conversation state after a staff edit."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    external_id: str
    status: str
    needs_human: bool
    fallback_count: int
    category: Optional[str] = None
    title: Optional[str] = None
    last_activity_at: Optional[datetime] = None
    ticket: Optional[TicketSummary] = None


class NoteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    conversation_id: str
    note: str
    created_at: datetime
