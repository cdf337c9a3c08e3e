"""
Chat turn orchestration.

A turn runs in two halves. ``prepare`` runs before the response starts:
it validates the message, resolves the tenant and conversation, stores the
citizen's message, applies the ticket-intent gate and retrieves documents.
Anything that should become an HTTP error (400, 404, retrieval 500) is
raised here. ``stream`` then produces the SSE body: data frames, exactly one
meta frame, and the [DONE] sentinel. Post-answer bookkeeping is done before
the meta frame, whose needs_human describes what this turn did.

Bookkeeping failures are logged and never interrupt the stream.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import structlog
from sqlalchemy.orm import Session

from config import Settings
from models import Conversation, Tenant, TicketStatus
from services import escalation
from services.background import BackgroundRunner
from services.conversations import (
    new_external_conversation_id,
    record_assistant_message,
    record_citizen_message,
    resolve_or_create,
)
from services.errors import CompletionServiceFailure, PersistenceFailure, RetrievalFailure, ValidationError
from services.redaction import redact_pii
from services.retrieval import DocumentRetriever, RetrievalResult, build_context
from services.sse import DONE_FRAME, comment_frame, data_frame, meta_frame
from services.summarizer import maybe_schedule_summary
from services.tenants import resolve_tenant
from services.ticket_intent import matches_ticket_intent
from services.tickets import upsert_knowledge_gap, upsert_ticket

logger = structlog.get_logger(__name__)

FALLBACK_MESSAGE = (
    "Ne mogu pouzdano odgovoriti iz dostupnih dokumenata. "
    "Pokušajte preformulirati pitanje."
)
APOLOGY_MESSAGE = "Došlo je do pogreške. Pokušajte ponovno."
COMPLETION_ERROR_COMMENT = "error completion_failed"


class PresentationMode(str, Enum):
    """How answer tokens are framed on the wire."""

    INCREMENTAL = "incremental"  # one data frame per token
    BUFFERED = "buffered"  # whole answer in one data frame


def presentation_mode(settings: Settings) -> PresentationMode:
    return PresentationMode.BUFFERED if settings.demo_mode else PresentationMode.INCREMENTAL


def confidence_label(result: Optional[RetrievalResult]) -> Optional[str]:
    """Average top-3 similarity: >= 0.7 high, >= 0.5 medium, else low."""
    if result is None or not result.documents:
        return None
    top = result.top3
    average = sum(d.similarity for d in top) / len(top)
    if average >= 0.7:
        return "high"
    if average >= 0.5:
        return "medium"
    return "low"


def top3_payload(result: Optional[RetrievalResult]) -> list[dict[str, Any]]:
    if result is None:
        return []
    return [
        {"title": d.title or None, "source": d.source_url, "score": round(d.similarity, 4)}
        for d in result.top3
    ]


@dataclass
class ChatTurn:
    """Everything ``stream`` needs, produced by ``prepare``."""

    tenant: Tenant
    conversation: Optional[Conversation]
    message: str
    message_id: Optional[str]
    started_at: float
    ticket_intent: bool = False
    retrieval: Optional[RetrievalResult] = None

    @property
    def conversation_id(self) -> Optional[str]:
        return self.conversation.id if self.conversation is not None else None

    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self.started_at) * 1000)


class ChatOrchestrator:
    """Runs one chat turn for either presentation mode."""

    def __init__(
        self,
        retriever: DocumentRetriever,
        completion_service,
        runner: BackgroundRunner,
        session_factory: Callable[[], Session],
        settings: Settings,
        mode: Optional[PresentationMode] = None,
    ):
        self.retriever = retriever
        self.completion_service = completion_service
        self.runner = runner
        self.session_factory = session_factory
        self.settings = settings
        self.mode = mode or presentation_mode(settings)

    # -------------------------------------------------------------------------
    # Before the stream
    # -------------------------------------------------------------------------

    async def prepare(
        self,
        db: Session,
        city_id: str,
        message: Optional[str],
        conversation_id: Optional[str] = None,
        message_id: Optional[str] = None,
    ) -> ChatTurn:
        """Validate, persist the citizen turn, gate and retrieve.

        Raises:
            ValidationError: message missing or blank.
            TenantNotFound: unknown city.
            RetrievalFailure: embedding or search failed.
        """
        started_at = time.perf_counter()
        if not isinstance(message, str) or not message.strip():
            raise ValidationError("Message is required")

        tenant = resolve_tenant(db, city_id)
        external_id = conversation_id or new_external_conversation_id()

        conversation = None
        try:
            conversation = resolve_or_create(db, tenant.id, external_id)
        except PersistenceFailure as e:
            logger.error("conversation_unavailable", city_code=tenant.code, external_id=external_id, error=str(e))

        turn = ChatTurn(
            tenant=tenant,
            conversation=conversation,
            message=message,
            message_id=message_id,
            started_at=started_at,
        )

        if conversation is not None:
            self._guard("citizen_message", record_citizen_message, db, conversation, message_id, message)

        if matches_ticket_intent(message):
            logger.info("ticket_intent_detected", conversation_id=turn.conversation_id, city_code=tenant.code)
            turn.ticket_intent = True
            return turn

        try:
            turn.retrieval = await self.retriever.retrieve(message, tenant.id)
        except RetrievalFailure:
            if conversation is not None:
                self._guard("clear_on_error", escalation.clear_on_error, db, conversation)
            raise

        return turn

    # -------------------------------------------------------------------------
    # The stream
    # -------------------------------------------------------------------------

    async def stream(
        self,
        db: Session,
        turn: ChatTurn,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> AsyncIterator[str]:
        """Yield the SSE frames for a prepared turn and close ``db`` at the end."""
        if turn.ticket_intent:
            frames = self._stream_ticket_intent(db, turn)
        elif not turn.retrieval or not turn.retrieval.documents:
            frames = self._stream_fallback(db, turn)
        else:
            frames = self._stream_answer(db, turn, is_disconnected)

        try:
            async for frame in frames:
                yield frame
        finally:
            # Propagates a client disconnect into the inner generator
            await frames.aclose()
            db.close()

    async def _stream_ticket_intent(self, db: Session, turn: ChatTurn) -> AsyncIterator[str]:
        conversation = turn.conversation
        if conversation is not None:
            self._guard("mark_ticket_intent", escalation.mark_ticket_intent, db, conversation)
            self._guard(
                "ticket_upsert",
                upsert_ticket,
                db,
                turn.tenant,
                conversation,
                status=TicketStatus.NEEDS_HUMAN.value,
            )

        yield meta_frame(self._meta(turn, model=None, used_fallback=False, needs_human=True))
        yield DONE_FRAME
        self._log_completed(turn, path="ticket_intent", needs_human=True)

    async def _stream_fallback(self, db: Session, turn: ChatTurn) -> AsyncIterator[str]:
        yield data_frame(FALLBACK_MESSAGE)

        conversation = turn.conversation
        if conversation is not None:
            self._guard(
                "assistant_message",
                record_assistant_message,
                db,
                conversation,
                turn.message_id,
                FALLBACK_MESSAGE,
                self._assistant_metadata(turn, model=None, used_fallback=True),
            )
            self._guard("record_fallback", escalation.record_fallback, db, conversation)
            self._guard(
                "ticket_upsert",
                upsert_ticket,
                db,
                turn.tenant,
                conversation,
                initial_status=TicketStatus.OPEN.value,
            )
            self._guard(
                "knowledge_gap",
                upsert_knowledge_gap,
                db,
                turn.tenant.id,
                conversation.id,
                redact_pii(turn.message),
            )
            self._schedule_summary(db, conversation)

        yield meta_frame(self._meta(turn, model=None, used_fallback=True, needs_human=False))
        yield DONE_FRAME
        self._log_completed(turn, path="fallback", needs_human=False)

    async def _stream_answer(
        self,
        db: Session,
        turn: ChatTurn,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]],
    ) -> AsyncIterator[str]:
        context = build_context(
            turn.retrieval.documents,
            max_doc_chars=self.settings.context_max_doc_chars,
            max_total_chars=self.settings.context_max_total_chars,
        )
        model = self.completion_service.model_name
        tokens = self.completion_service.astream(turn.message, context)
        parts: list[str] = []
        failed = False

        try:
            async for token in tokens:
                if is_disconnected is not None and await is_disconnected():
                    await tokens.aclose()
                    self._log_disconnect(turn, len(parts))
                    return
                parts.append(token)
                if self.mode == PresentationMode.INCREMENTAL:
                    yield data_frame(token)
        except CompletionServiceFailure as e:
            failed = True
            logger.error("completion_failed", conversation_id=turn.conversation_id, error=str(e))
        except (asyncio.CancelledError, GeneratorExit):
            await tokens.aclose()
            self._log_disconnect(turn, len(parts))
            raise

        answer = "".join(parts)
        if not failed and not answer.strip():
            failed = True
            logger.error("completion_empty", conversation_id=turn.conversation_id, model=model)

        conversation = turn.conversation
        if failed:
            yield comment_frame(COMPLETION_ERROR_COMMENT)
            yield data_frame(APOLOGY_MESSAGE)
            if conversation is not None:
                self._guard("clear_on_error", escalation.clear_on_error, db, conversation)
            yield meta_frame(self._meta(turn, model=model, used_fallback=False, needs_human=False))
            yield DONE_FRAME
            self._log_completed(turn, path="completion_failed", needs_human=False)
            return

        if self.mode == PresentationMode.BUFFERED:
            yield data_frame(answer)

        if conversation is not None:
            self._guard(
                "assistant_message",
                record_assistant_message,
                db,
                conversation,
                turn.message_id,
                answer,
                self._assistant_metadata(turn, model=model, used_fallback=False),
            )
            self._schedule_summary(db, conversation)

        # Meta describes this turn only: a grounded answer never escalates
        yield meta_frame(self._meta(turn, model=model, used_fallback=False, needs_human=False))
        yield DONE_FRAME
        self._log_completed(turn, path="answer", needs_human=False, answer_chars=len(answer))

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _meta(self, turn: ChatTurn, model: Optional[str], used_fallback: bool, needs_human: bool) -> dict[str, Any]:
        documents = turn.retrieval.documents if turn.retrieval else []
        return {
            "model": model,
            "latency_ms": turn.elapsed_ms(),
            "retrieved_docs_count": len(documents),
            "retrieved_docs_top3": top3_payload(turn.retrieval),
            "used_fallback": used_fallback,
            "needs_human": needs_human,
        }

    def _assistant_metadata(self, turn: ChatTurn, model: Optional[str], used_fallback: bool) -> dict[str, Any]:
        documents = turn.retrieval.documents if turn.retrieval else []
        return {
            "latency_ms": turn.elapsed_ms(),
            "confidence": None if used_fallback else confidence_label(turn.retrieval),
            "retrieved_sources_count": len(documents),
            "retrieved_docs_top3": top3_payload(turn.retrieval),
            "threshold_used": turn.retrieval.threshold_used if turn.retrieval else None,
            "resolved_by_ai": not used_fallback,
            "used_fallback": used_fallback,
            "model": model,
        }

    def _schedule_summary(self, db: Session, conversation: Conversation) -> None:
        self._guard(
            "summary_schedule",
            maybe_schedule_summary,
            self.runner,
            self.session_factory,
            self.completion_service,
            db,
            conversation,
        )

    def _guard(self, step: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a bookkeeping step; failures are logged and swallowed."""
        try:
            return func(*args, **kwargs)
        except Exception as e:
            logger.error("chat_bookkeeping_failed", step=step, error=str(e), error_type=type(e).__name__)
            return None

    def _log_disconnect(self, turn: ChatTurn, tokens_sent: int) -> None:
        logger.warning(
            "chat_client_disconnected",
            conversation_id=turn.conversation_id,
            tokens_sent=tokens_sent,
            latency_ms=turn.elapsed_ms(),
        )

    def _log_completed(self, turn: ChatTurn, path: str, needs_human: bool, **extra: Any) -> None:
        logger.info(
            "chat_turn_completed",
            conversation_id=turn.conversation_id,
            city_code=turn.tenant.code,
            path=path,
            mode=self.mode.value,
            retrieved_docs_count=len(turn.retrieval.documents) if turn.retrieval else 0,
            needs_human=needs_human,
            latency_ms=turn.elapsed_ms(),
            **extra,
        )
