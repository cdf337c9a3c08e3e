"""Unit tests for the summarizer, the background runner and title parsing."""

import asyncio

import pytest

from conftest import FakeCompletionService
from llm.completion import parse_title_summary
from llm.prompts import build_system_prompt, build_title_summary_prompt
from models import Conversation
from services.background import BackgroundRunner
from services.conversations import record_assistant_message, record_citizen_message, resolve_or_create
from services.summarizer import should_summarize, summarize_conversation


@pytest.fixture
def chatty_conversation(db, tenant):
    conversation = resolve_or_create(db, tenant.id, "conv_1")
    record_citizen_message(db, conversation, "m1", "Kada se odvozi otpad u Pločama?")
    record_assistant_message(db, conversation, "m1", "Utorkom i petkom.", {})
    record_citizen_message(db, conversation, "m2", "A glomazni otpad?")
    return conversation


class TestShouldSummarize:
    @pytest.mark.parametrize(
        "title_source,user_count,total_count,expected",
        [
            (None, 1, 2, False),
            (None, 2, 2, True),
            ("first_message", 1, 4, True),
            ("llm", 5, 10, False),
        ],
    )
    def test_thresholds(self, title_source, user_count, total_count, expected):
        assert should_summarize(title_source, user_count, total_count) is expected


class TestSummarizeConversation:
    def test_writes_llm_title(self, session_factory, chatty_conversation, db):
        completion = FakeCompletionService(title_summary={"title": "Odvoz otpada", "summary": "Građanin pita o odvozu."})

        asyncio.run(summarize_conversation(session_factory, completion, chatty_conversation.id))

        db.expire_all()
        conversation = db.get(Conversation, chatty_conversation.id)
        assert conversation.title == "Odvoz otpada"
        assert conversation.summary == "Građanin pita o odvozu."
        assert conversation.title_source == "llm"
        assert conversation.title_generated_at is not None

    def test_failure_falls_back_to_first_message(self, session_factory, chatty_conversation, db):
        chatty_conversation.title = "stari naslov"
        db.commit()
        completion = FakeCompletionService(title_error=TimeoutError("model timeout"))

        asyncio.run(summarize_conversation(session_factory, completion, chatty_conversation.id))

        db.expire_all()
        conversation = db.get(Conversation, chatty_conversation.id)
        assert conversation.title == "Kada se odvozi otpad u Pločama?"
        assert conversation.title_source == "first_message"
        assert conversation.summary is None

    def test_unparseable_output_falls_back(self, session_factory, chatty_conversation, db):
        completion = FakeCompletionService(title_summary=None)

        asyncio.run(summarize_conversation(session_factory, completion, chatty_conversation.id))

        db.expire_all()
        assert db.get(Conversation, chatty_conversation.id).title_source == "first_message"


class TestBackgroundRunner:
    def test_errors_go_to_handler_and_drain_waits(self):
        errors = []
        done = []

        async def ok():
            await asyncio.sleep(0)
            done.append(True)

        async def boom():
            raise RuntimeError("summary failed")

        async def main():
            runner = BackgroundRunner(on_error=lambda name, exc: errors.append((name, str(exc))))
            runner.spawn("ok", ok())
            runner.spawn("boom", boom())
            await runner.drain()
            return runner.pending

        assert asyncio.run(main()) == 0
        assert done == [True]
        assert errors == [("boom", "summary failed")]

    def test_drain_cancels_after_timeout(self):
        async def slow():
            await asyncio.sleep(10)

        async def main():
            runner = BackgroundRunner()
            task = runner.spawn("slow", slow())
            await runner.drain(timeout=0.01)
            return task.cancelled()

        assert asyncio.run(main()) is True


class TestTitleParsing:
    def test_bare_json(self):
        assert parse_title_summary('{"title": "Naslov", "summary": "Sažetak."}') == {
            "title": "Naslov",
            "summary": "Sažetak.",
        }

    def test_fenced_json(self):
        text = '```json\n{"title": "Naslov", "summary": "Sažetak."}\n```'
        assert parse_title_summary(text)["title"] == "Naslov"

    @pytest.mark.parametrize("text", ["", "nije json", '{"title": "Samo naslov"}', "[1, 2]"])
    def test_invalid(self, text):
        assert parse_title_summary(text) is None


class TestPrompts:
    def test_grounding_only_with_context(self):
        assert "CONTEXT:" not in build_system_prompt("")
        prompt = build_system_prompt("DOC 1 TITLE: x\n")
        assert prompt.endswith("CONTEXT:\nDOC 1 TITLE: x\n")

    def test_title_prompt_uses_last_six_messages(self):
        messages = [{"role": "user" if i % 2 == 0 else "assistant", "content": f"poruka {i}"} for i in range(8)]
        prompt = build_title_summary_prompt(messages)
        assert "poruka 1\n" not in prompt
        assert "Korisnik: poruka 2" in prompt
        assert "Asistent: poruka 7" in prompt
