"""Chat endpoint: one citizen message in, one SSE answer stream out.

POST /grad/{city_id}/chat - Ask a question (streams SSE frames).

Stream grammar:
  data: <token line>      zero or more answer frames
  event: meta             exactly one, JSON trace of the turn
  data: [DONE]            end of turn
"""

from typing import Callable

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session
from starlette.background import BackgroundTask

from api.deps import get_orchestrator
from api.rate_limit import chat_rate_limit, limiter
from api.schemas import ChatRequest, ErrorResponse
from database import get_session_factory
from services.chat_orchestrator import ChatOrchestrator
from services.sse import SSE_HEADERS

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post(
    "/grad/{city_id}/chat",
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse, "description": "Retrieval failed before the stream started"},
    },
)
@limiter.limit(chat_rate_limit)
async def chat(
    city_id: str,
    body: ChatRequest,
    request: Request,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    """Answer a citizen's message as a Server-Sent Events stream.

    Validation (400), unknown city (404), rate limiting (429) and retrieval
    failures (500) are raised before the stream starts, so they arrive as
    JSON errors.
    """
    # The session outlives this handler: the stream closes it when done
    db = session_factory()
    try:
        turn = await orchestrator.prepare(
            db,
            city_id,
            body.message,
            conversation_id=body.conversation_id,
            message_id=body.message_id,
        )
    except Exception:
        db.close()
        raise

    logger.info(
        "chat_stream_started",
        city_id=city_id,
        conversation_id=turn.conversation_id,
        ticket_intent=turn.ticket_intent,
        mode=orchestrator.mode.value,
    )
    return StreamingResponse(
        orchestrator.stream(db, turn, is_disconnected=request.is_disconnected),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
        background=BackgroundTask(db.close),
    )
