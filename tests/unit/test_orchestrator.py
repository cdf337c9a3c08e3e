"""Unit tests for chat turn orchestration outside the HTTP layer."""

import asyncio
import json

import pytest

from conftest import make_doc
from models import Message
from services.chat_orchestrator import (
    APOLOGY_MESSAGE,
    ChatOrchestrator,
    PresentationMode,
    confidence_label,
)
from services.conversations import resolve_or_create
from services.errors import RetrievalFailure, TenantNotFound, ValidationError
from services.retrieval import DocumentRetriever, RetrievalResult
from services.sse import parse_frames


def run_turn(orchestrator, session_factory, city_id, message, is_disconnected=None, **kwargs):
    async def main():
        db = session_factory()
        turn = await orchestrator.prepare(db, city_id, message, **kwargs)
        return turn, [f async for f in orchestrator.stream(db, turn, is_disconnected=is_disconnected)]

    return asyncio.run(main())


@pytest.fixture
def indexed(document_index, tenant):
    document_index.documents[tenant.id] = [make_doc("radno-vrijeme", 0.82), make_doc("kontakt", 0.64)]
    return document_index


class TestConfidence:
    def test_bands(self):
        assert confidence_label(RetrievalResult([make_doc("a", 0.9), make_doc("b", 0.6)])) == "high"
        assert confidence_label(RetrievalResult([make_doc("a", 0.55)])) == "medium"
        assert confidence_label(RetrievalResult([make_doc("a", 0.4)])) == "low"

    def test_none_without_documents(self):
        assert confidence_label(None) is None
        assert confidence_label(RetrievalResult([])) is None

    def test_only_top_three_count(self):
        docs = [make_doc("a", 0.8), make_doc("b", 0.7), make_doc("c", 0.6), make_doc("d", 0.1)]
        assert confidence_label(RetrievalResult(docs)) == "high"


class TestPrepare:
    def test_blank_message(self, orchestrator, db, tenant):
        with pytest.raises(ValidationError):
            asyncio.run(orchestrator.prepare(db, tenant.slug, "   "))

    def test_unknown_city(self, orchestrator, db, tenant):
        with pytest.raises(TenantNotFound):
            asyncio.run(orchestrator.prepare(db, "nepostojeci-grad", "Pitanje?"))

    def test_retrieval_failure_clears_needs_human(self, orchestrator, embedding_service, db, tenant):
        conversation = resolve_or_create(db, tenant.id, "conv_1")
        conversation.needs_human = True
        db.commit()
        embedding_service.fail = True

        with pytest.raises(RetrievalFailure) as exc_info:
            asyncio.run(orchestrator.prepare(db, tenant.slug, "Kada radi uprava?", conversation_id="conv_1"))

        assert exc_info.value.reason == "embedding_failed"
        db.refresh(conversation)
        assert conversation.needs_human is False


class TestStream:
    def test_incremental_frames_then_meta(self, orchestrator, session_factory, indexed, tenant, db):
        turn, frames = run_turn(orchestrator, session_factory, tenant.slug, "Kada radi uprava?", message_id="m1")

        parsed = parse_frames("".join(frames))
        assert [f["data"] for f in parsed[:3]] == ["Gradska ", "uprava ", "radi od 7 do 15."]
        assert parsed[3]["event"] == "meta"
        assert parsed[4]["data"] == "[DONE]"

        meta = json.loads(parsed[3]["data"])
        assert meta["model"] == "fake-llm"
        assert meta["retrieved_docs_count"] == 2
        assert meta["retrieved_docs_top3"][0]["score"] == 0.82

        assistant = db.query(Message).filter(Message.role == "assistant").one()
        assert assistant.content_redacted == "Gradska uprava radi od 7 do 15."
        assert assistant.message_metadata["confidence"] == "high"
        assert assistant.message_metadata["threshold_used"] == 0.5
        assert assistant.message_metadata["resolved_by_ai"] is True

    def test_buffered_single_data_frame(
        self, embedding_service, indexed, completion_service, runner, session_factory, settings, tenant
    ):
        orchestrator = ChatOrchestrator(
            retriever=DocumentRetriever(embedding_service, indexed, settings),
            completion_service=completion_service,
            runner=runner,
            session_factory=session_factory,
            settings=settings,
            mode=PresentationMode.BUFFERED,
        )

        _, frames = run_turn(orchestrator, session_factory, tenant.slug, "Kada radi uprava?")

        parsed = parse_frames("".join(frames))
        assert len(parsed) == 3
        assert parsed[0]["data"] == "Gradska uprava radi od 7 do 15."
        assert parsed[1]["event"] == "meta"

    def test_disconnect_persists_nothing(self, orchestrator, completion_service, session_factory, indexed, tenant, db):
        async def gone():
            return True

        _, frames = run_turn(orchestrator, session_factory, tenant.slug, "Kada radi uprava?", is_disconnected=gone)

        assert frames == []
        assert completion_service.closed is True
        assert [m.role for m in db.query(Message).all()] == ["user"]

    def test_empty_completion_is_a_failure(self, orchestrator, completion_service, session_factory, indexed, tenant, db):
        completion_service.tokens = ["  "]

        _, frames = run_turn(orchestrator, session_factory, tenant.slug, "Kada radi uprava?")

        parsed = parse_frames("".join(frames))
        data = [f["data"] for f in parsed if f["data"] is not None and f["event"] is None]
        assert APOLOGY_MESSAGE in data
        assert db.query(Message).filter(Message.role == "assistant").count() == 0
