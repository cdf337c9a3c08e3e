"""
Conversation Store and Message Persister.

Conversations are looked up (or created) by (tenant, external id) and
messages are upserted by (conversation, external id). The message key is
what makes client retries safe: resending the same messageId any number of
times leaves exactly one row holding the content of the last write.
"""

import uuid
from typing import Any, Optional

import structlog
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from database import utcnow
from models import Conversation, ConversationNote, ConversationStatus, Message, MessageRole, TitleSource
from services.categorize import classify_by_keywords
from services.errors import PersistenceFailure
from services.persistence import dialect_insert, transaction
from services.redaction import redact_pii

logger = structlog.get_logger(__name__)

TITLE_MAX_CHARS = 60


def new_external_conversation_id() -> str:
    """Conversation id used when the client did not send one."""
    return f"conv_{uuid.uuid4()}"


def message_external_id(role: MessageRole, client_message_id: Optional[str]) -> str:
    """Build the idempotency key for a message: ``<role>:<clientMessageId>``.

    A random id is generated when the client sent none, so the key is never
    empty.
    """
    return f"{role.value}:{client_message_id or uuid.uuid4()}"


def title_from_message(content: str) -> str:
    return (content or "").strip()[:TITLE_MAX_CHARS]


# =============================================================================
# Conversation Store
# =============================================================================

def find_conversation(db: Session, tenant_id: str, external_id: str) -> Optional[Conversation]:
    """Look up a conversation; store errors are logged and read as "not found"."""
    try:
        return (
            db.query(Conversation)
            .filter(Conversation.tenant_id == tenant_id, Conversation.external_id == external_id)
            .first()
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning(
            "conversation_lookup_failed",
            tenant_id=tenant_id,
            external_id=external_id,
            error=str(exc),
        )
        return None


def resolve_or_create(db: Session, tenant_id: str, external_id: str) -> Conversation:
    """Return the conversation for (tenant, external id), creating it if needed.

    An existing conversation gets its activity timestamps refreshed. A new
    one starts open, with no fallbacks and needs_human false.

    Raises:
        PersistenceFailure: if the conversation can be neither found nor created.
    """
    now = utcnow()
    conversation = find_conversation(db, tenant_id, external_id)

    if conversation is not None:
        with transaction(db, "conversation_touch"):
            conversation.last_activity_at = now
            conversation.updated_at = now
        return conversation

    conversation = Conversation(
        tenant_id=tenant_id,
        external_id=external_id,
        status=ConversationStatus.OPEN.value,
        fallback_count=0,
        needs_human=False,
        created_at=now,
        updated_at=now,
        last_activity_at=now,
    )
    try:
        with transaction(db, "conversation_create"):
            db.add(conversation)
    except PersistenceFailure:
        # A concurrent request may have created it first
        existing = find_conversation(db, tenant_id, external_id)
        if existing is not None:
            return existing
        raise

    logger.info(
        "conversation_created",
        conversation_id=conversation.id,
        tenant_id=tenant_id,
        external_id=external_id,
    )
    return conversation


def add_note(db: Session, conversation: Conversation, note: str) -> ConversationNote:
    """Append a staff note and refresh the conversation's activity."""
    now = utcnow()
    entry = ConversationNote(conversation_id=conversation.id, note=note.strip(), created_at=now)
    with transaction(db, "conversation_note"):
        db.add(entry)
        conversation.last_activity_at = now
    logger.info("conversation_note_added", conversation_id=conversation.id, length=len(entry.note))
    return entry


# =============================================================================
# Message Persister
# =============================================================================

def upsert_message(
    db: Session,
    conversation_id: str,
    external_id: str,
    role: MessageRole,
    content: str,
    metadata: Optional[dict[str, Any]] = None,
) -> Message:
    """Insert or overwrite the message keyed by (conversation_id, external_id).

    The stored content and metadata always reflect the last write; the row's
    id and created_at are those of the first write.
    """
    now = utcnow()
    values = {
        "id": str(uuid.uuid4()),
        "conversation_id": conversation_id,
        "external_id": external_id,
        "role": role.value,
        "content_redacted": content,
        "created_at": now,
        "metadata": metadata,
    }

    insert = dialect_insert(db)
    with transaction(db, "message_upsert"):
        if insert is not None:
            stmt = insert(Message.__table__).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["conversation_id", "external_id"],
                set_={
                    "role": stmt.excluded.role,
                    "content_redacted": stmt.excluded.content_redacted,
                    "metadata": stmt.excluded["metadata"],
                },
            )
            db.execute(stmt)
        else:
            _select_then_write(db, values)

    message = (
        db.query(Message)
        .filter(Message.conversation_id == conversation_id, Message.external_id == external_id)
        .one()
    )
    # The core UPDATE bypasses the identity map
    db.refresh(message)
    return message


def _select_then_write(db: Session, values: dict[str, Any]) -> None:
    """Upsert for dialects without ON CONFLICT support."""
    existing = (
        db.query(Message)
        .filter(
            Message.conversation_id == values["conversation_id"],
            Message.external_id == values["external_id"],
        )
        .first()
    )
    if existing is None:
        try:
            with db.begin_nested():
                db.add(Message(
                    id=values["id"],
                    conversation_id=values["conversation_id"],
                    external_id=values["external_id"],
                    role=values["role"],
                    content_redacted=values["content_redacted"],
                    created_at=values["created_at"],
                    message_metadata=values["metadata"],
                ))
            return
        except IntegrityError:
            existing = (
                db.query(Message)
                .filter(
                    Message.conversation_id == values["conversation_id"],
                    Message.external_id == values["external_id"],
                )
                .one()
            )
    existing.role = values["role"]
    existing.content_redacted = values["content_redacted"]
    existing.message_metadata = values["metadata"]


def count_messages(db: Session, conversation_id: str) -> tuple[int, int]:
    """Return (user message count, total message count)."""
    rows = (
        db.query(Message.role, func.count(Message.id))
        .filter(Message.conversation_id == conversation_id)
        .group_by(Message.role)
        .all()
    )
    counts = dict(rows)
    return counts.get(MessageRole.USER.value, 0), sum(counts.values())


def load_transcript(db: Session, conversation_id: str) -> list[dict[str, str]]:
    """All messages of a conversation, oldest first, as role/content dicts."""
    messages = (
        db.query(Message)
        .filter(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.asc())
        .all()
    )
    return [{"role": m.role, "content": m.content_redacted or ""} for m in messages]


def record_citizen_message(
    db: Session,
    conversation: Conversation,
    client_message_id: Optional[str],
    content: str,
) -> Message:
    """Persist the citizen's turn and apply first-message bookkeeping.

    On the conversation's first citizen message: set the title from the
    message (unless a title exists or an LLM title was already written) and
    classify the category when none is set.
    """
    external_id = message_external_id(MessageRole.USER, client_message_id)
    redacted = redact_pii(content)
    message = upsert_message(db, conversation.id, external_id, MessageRole.USER, redacted)

    user_count, _ = count_messages(db, conversation.id)
    with transaction(db, "citizen_message_bookkeeping"):
        conversation.last_message_at = utcnow()
        if user_count == 1:
            has_title = bool(conversation.title and conversation.title.strip())
            if not has_title and conversation.title_source != TitleSource.LLM.value:
                conversation.title = title_from_message(redacted)
                conversation.title_source = TitleSource.FIRST_MESSAGE.value
            if conversation.category is None:
                conversation.category = classify_by_keywords(content)

    logger.info(
        "citizen_message_persisted",
        conversation_id=conversation.id,
        external_id=external_id,
        user_message_count=user_count,
    )
    return message


def record_assistant_message(
    db: Session,
    conversation: Conversation,
    client_message_id: Optional[str],
    content: str,
    metadata: dict[str, Any],
) -> Message:
    """Persist the assistant's turn with its trace metadata."""
    external_id = message_external_id(MessageRole.ASSISTANT, client_message_id)
    message = upsert_message(db, conversation.id, external_id, MessageRole.ASSISTANT, content, metadata)
    with transaction(db, "assistant_message_bookkeeping"):
        conversation.last_message_at = utcnow()
    return message
