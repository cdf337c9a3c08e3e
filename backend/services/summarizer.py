"""
Async conversation summarizer.

Once a conversation has enough turns, a background task asks the model for
a short title and summary. When that fails the title falls back to the
first citizen message. The task opens its own database session: it
outlives the request that spawned it.
"""

from typing import Callable, Optional

import structlog
from sqlalchemy.orm import Session

from database import utcnow
from models import Conversation, MessageRole, TitleSource
from services.background import BackgroundRunner
from services.conversations import count_messages, load_transcript, title_from_message
from services.persistence import transaction

logger = structlog.get_logger(__name__)

MIN_USER_MESSAGES = 2
MIN_TOTAL_MESSAGES = 4


def should_summarize(title_source: Optional[str], user_count: int, total_count: int) -> bool:
    if title_source == TitleSource.LLM.value:
        return False
    return user_count >= MIN_USER_MESSAGES or total_count >= MIN_TOTAL_MESSAGES


def maybe_schedule_summary(
    runner: BackgroundRunner,
    session_factory: Callable[[], Session],
    completion_service,
    db: Session,
    conversation: Conversation,
) -> bool:
    """Spawn the summarizer for the conversation if it qualifies.

    Returns True when a task was spawned. Never waits for it.
    """
    user_count, total_count = count_messages(db, conversation.id)
    if not should_summarize(conversation.title_source, user_count, total_count):
        return False

    runner.spawn(
        f"summarize:{conversation.id}",
        summarize_conversation(session_factory, completion_service, conversation.id),
    )
    return True


async def summarize_conversation(
    session_factory: Callable[[], Session],
    completion_service,
    conversation_id: str,
) -> None:
    """Generate and store an LLM title/summary, or fall back to the first message."""
    db = session_factory()
    try:
        conversation = db.get(Conversation, conversation_id)
        if conversation is None:
            logger.warning("summary_conversation_missing", conversation_id=conversation_id)
            return
        transcript = load_transcript(db, conversation_id)

        try:
            result = await completion_service.generate_title_summary(transcript)
        except Exception as e:
            logger.warning("title_summary_generation_failed", conversation_id=conversation_id, error=str(e))
            result = None

        if result:
            with transaction(db, "conversation_summary"):
                conversation.title = result["title"]
                conversation.summary = result["summary"]
                conversation.title_source = TitleSource.LLM.value
                conversation.title_generated_at = utcnow()
            logger.info("conversation_summarized", conversation_id=conversation_id, title=result["title"])
            return

        _fallback_title(db, conversation, transcript)
    finally:
        db.close()


def _fallback_title(db: Session, conversation: Conversation, transcript: list[dict[str, str]]) -> None:
    first_user = next((m["content"] for m in transcript if m["role"] == MessageRole.USER.value), None)
    if not first_user:
        return
    try:
        with transaction(db, "conversation_fallback_title"):
            conversation.title = title_from_message(first_user)
            conversation.title_source = TitleSource.FIRST_MESSAGE.value
        logger.info("conversation_title_fallback", conversation_id=conversation.id)
    except Exception as e:
        logger.error("conversation_title_fallback_failed", conversation_id=conversation.id, error=str(e))
