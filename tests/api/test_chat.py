"""API tests for the chat endpoint."""

import json
from datetime import datetime, timezone

import pytest

from conftest import make_doc
from api.schemas import ChatMetaPayload
from models import Conversation, KnowledgeGap, Message, Ticket
from services.chat_orchestrator import APOLOGY_MESSAGE, FALLBACK_MESSAGE
from config import get_settings
from services.sse import parse_frames


def post_chat(client, city_id="ploce", **body):
    return client.post(f"/grad/{city_id}/chat", json=body)


def meta_of(frames):
    meta = [f for f in frames if f["event"] == "meta"]
    assert len(meta) == 1
    return json.loads(meta[0]["data"])


@pytest.fixture
def indexed(document_index, tenant):
    document_index.documents[tenant.id] = [
        make_doc("radno-vrijeme", 0.81, content="Gradska uprava radi od 7 do 15 sati."),
        make_doc("kontakt", 0.58),
    ]
    return document_index


class TestAnswer:
    def test_streams_tokens_then_meta_then_done(self, client, indexed, db):
        response = post_chat(client, message="Kada radi gradska uprava?", conversationId="conv_1", messageId="m1")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"

        frames = parse_frames(response.text)
        assert frames[-1]["data"] == "[DONE]"
        assert frames[-2]["event"] == "meta"
        answer = "".join(f["data"] for f in frames[:-2])
        assert answer == "Gradska uprava radi od 7 do 15."

        meta = meta_of(frames)
        ChatMetaPayload.model_validate(meta)
        assert meta["model"] == "fake-llm"
        assert meta["used_fallback"] is False
        assert meta["needs_human"] is False
        assert meta["retrieved_docs_count"] == 2
        assert [d["score"] for d in meta["retrieved_docs_top3"]] == [0.81, 0.58]

        assert db.query(Message).count() == 2

    def test_answer_after_escalation_reports_turn_not_conversation(self, client, document_index, tenant, db):
        post_chat(client, message="Želim prijaviti problem s rasvjetom", conversationId="conv_1", messageId="m1")
        document_index.documents[tenant.id] = [make_doc("uprava", 0.9)]

        frames = parse_frames(
            post_chat(client, message="Kada radi uprava?", conversationId="conv_1", messageId="m2").text
        )

        meta = meta_of(frames)
        assert meta["used_fallback"] is False
        assert meta["needs_human"] is False
        assert db.query(Conversation).one().needs_human is True

    def test_context_reaches_the_model(self, client, indexed, completion_service):
        post_chat(client, message="Kada radi gradska uprava?")

        message, context = completion_service.stream_calls[0]
        assert message == "Kada radi gradska uprava?"
        assert context.startswith("DOC 1 TITLE: Dokument radno-vrijeme\n")
        assert "CONTENT: Gradska uprava radi od 7 do 15 sati." in context

    def test_retry_with_same_message_id_is_idempotent(self, client, indexed, db):
        for _ in range(2):
            post_chat(client, message="Kada radi gradska uprava?", conversationId="conv_1", messageId="m1")

        assert db.query(Conversation).count() == 1
        assert db.query(Message).count() == 2

    def test_city_resolved_by_code(self, client, indexed):
        response = post_chat(client, city_id="pl", message="Kada radi gradska uprava?")
        assert response.status_code == 200

    def test_pii_redacted_before_storage(self, client, indexed, db):
        post_chat(client, message="Moj mail je ana@example.com, kada radi uprava?", conversationId="conv_1")

        stored = db.query(Message).filter(Message.role == "user").one()
        assert "ana@example.com" not in stored.content_redacted

    def test_summary_scheduled_from_second_turn(self, client, indexed, runner):
        post_chat(client, message="Kada radi gradska uprava?", conversationId="conv_1", messageId="m1")
        assert runner.spawned == []

        post_chat(client, message="A subotom?", conversationId="conv_1", messageId="m2")
        assert len(runner.spawned) == 1
        assert runner.spawned[0].startswith("summarize:")


class TestRequestErrors:
    def test_unknown_city(self, client, tenant):
        response = post_chat(client, city_id="atlantida", message="Pitanje?")

        assert response.status_code == 404
        assert response.json()["error"] == "unknown_city"

    @pytest.mark.parametrize("body", [{}, {"message": "   "}, {"message": ""}])
    def test_missing_or_blank_message(self, client, tenant, body):
        response = client.post("/grad/ploce/chat", json=body)

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    def test_message_too_long(self, client, tenant):
        response = post_chat(client, message="a" * 4001)
        assert response.status_code == 400


class TestTicketIntent:
    def test_escalates_without_model_calls(self, client, tenant, embedding_service, completion_service, db):
        response = post_chat(client, message="Želim prijaviti kvar rasvjete", conversationId="conv_1")

        frames = parse_frames(response.text)
        assert [f["event"] for f in frames] == ["meta", None]
        meta = meta_of(frames)
        assert meta["needs_human"] is True
        assert meta["model"] is None
        assert meta["retrieved_docs_count"] == 0

        assert embedding_service.calls == 0
        assert completion_service.stream_calls == []

        conversation = db.query(Conversation).one()
        assert conversation.needs_human is True
        assert db.query(Ticket).one().status == "needs_human"
        assert [m.role for m in db.query(Message).all()] == ["user"]


class TestFallback:
    def test_no_documents(self, client, tenant, completion_service, db):
        response = post_chat(client, message="Kada je sajam cvijeća?", conversationId="conv_1")

        frames = parse_frames(response.text)
        assert frames[0]["data"] == FALLBACK_MESSAGE
        meta = meta_of(frames)
        assert meta["used_fallback"] is True
        assert meta["needs_human"] is False
        assert meta["model"] is None
        assert completion_service.stream_calls == []

        conversation = db.query(Conversation).one()
        assert conversation.fallback_count == 1
        assert conversation.needs_human is False

        ticket = db.query(Ticket).one()
        assert ticket.status == "open"
        assert ticket.ticket_ref == f"PL-{datetime.now(timezone.utc).year}-000001"

        gap = db.query(KnowledgeGap).one()
        assert gap.occurrences == 1
        assert gap.question == "Kada je sajam cvijeća?"

        assistant = db.query(Message).filter(Message.role == "assistant").one()
        assert assistant.message_metadata["used_fallback"] is True
        assert assistant.message_metadata["confidence"] is None

    def test_relaxed_pass_avoids_fallback(self, client, document_index, tenant):
        document_index.documents[tenant.id] = [make_doc("sajam", 0.4)]

        meta = meta_of(parse_frames(post_chat(client, message="Kada je sajam?").text))

        assert meta["used_fallback"] is False
        assert meta["retrieved_docs_count"] == 1


class TestFailures:
    def test_retrieval_failure_is_a_json_500(self, client, tenant, embedding_service, db):
        embedding_service.fail = True

        response = post_chat(client, message="Kada radi uprava?", conversationId="conv_1")

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "retrieval_failed"
        assert body["reason"] == "embedding_failed"
        assert db.query(Conversation).one().needs_human is False

    def test_search_failure_reason(self, client, tenant, document_index):
        document_index.fail = True

        response = post_chat(client, message="Kada radi uprava?")

        assert response.json()["reason"] == "search_failed"

    def test_completion_failure_mid_stream(self, client, indexed, completion_service, db):
        completion_service.fail_after = 1

        response = post_chat(client, message="Kada radi uprava?", conversationId="conv_1")

        assert response.status_code == 200
        frames = parse_frames(response.text)
        assert frames[0]["data"] == "Gradska "
        assert frames[1]["comment"] == "error completion_failed"
        assert frames[2]["data"] == APOLOGY_MESSAGE
        meta = meta_of(frames)
        assert meta["needs_human"] is False
        assert meta["model"] == "fake-llm"
        assert frames[-1]["data"] == "[DONE]"

        assert db.query(Message).filter(Message.role == "assistant").count() == 0


class TestFallbackText:
    def test_wording(self, client, tenant):
        frames = parse_frames(post_chat(client, message="Kada je sajam cvijeća?").text)

        assert frames[0]["data"] == (
            "Ne mogu pouzdano odgovoriti iz dostupnih dokumenata. Pokušajte preformulirati pitanje."
        )


class TestEscalationAcrossTurns:
    def test_fallbacks_then_ticket_intent(self, client, tenant, db):
        for n, question in enumerate(["Kada je sajam cvijeća?", "Gdje je sajam?"], start=1):
            meta = meta_of(parse_frames(
                post_chat(client, message=question, conversationId="conv_1", messageId=f"m{n}").text
            ))
            assert meta["used_fallback"] is True
            assert meta["needs_human"] is False
            conversation = db.query(Conversation).one()
            db.refresh(conversation)
            assert conversation.needs_human is False
            assert conversation.fallback_count == n

        meta = meta_of(parse_frames(
            post_chat(client, message="Želim prijaviti problem s rasvjetom", conversationId="conv_1", messageId="m3").text
        ))

        assert meta["needs_human"] is True
        conversation = db.query(Conversation).one()
        db.refresh(conversation)
        assert conversation.needs_human is True
        assert conversation.fallback_count == 2


class TestRateLimit:
    def test_chat_limit_returns_429(self, client, indexed, monkeypatch):
        monkeypatch.setattr(get_settings(), "rate_limit_chat_max", 2)

        statuses = [post_chat(client, message="Kada radi uprava?").status_code for _ in range(3)]

        assert statuses == [200, 200, 429]

    def test_limited_response_body(self, client, indexed, monkeypatch):
        monkeypatch.setattr(get_settings(), "rate_limit_chat_max", 1)
        post_chat(client, message="Kada radi uprava?")

        response = post_chat(client, message="Kada radi uprava?")

        assert response.status_code == 429
        assert response.json()["error"] == "rate_limited"
        assert response.headers["retry-after"] == "60"
