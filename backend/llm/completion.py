"""Completion service: streamed answers and JSON title/summary generation."""

import json
import re
from typing import AsyncIterator, Optional

import structlog
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from tenacity import retry, stop_after_attempt, wait_exponential

from config import Settings
from llm.client import create_chat_client, create_json_chat_client
from llm.prompts import TITLE_SUMMARY_SYSTEM_PROMPT, build_system_prompt, build_title_summary_prompt
from services.errors import CompletionServiceFailure

logger = structlog.get_logger(__name__)

CODE_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(\{[\s\S]*\})\s*```", re.IGNORECASE)


def parse_title_summary(response: str) -> Optional[dict[str, str]]:
    """Parse ``{"title", "summary"}`` from model output.

    Accepts a bare object or one wrapped in a ```json code fence. Returns
    None when the output is empty, not JSON, or misses either field.
    """
    text = (response or "").strip()
    if not text:
        return None
    if text.startswith("```"):
        match = CODE_FENCE_PATTERN.search(text)
        if match:
            text = match.group(1)
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None

    title = str(parsed.get("title") or "").strip()
    summary = str(parsed.get("summary") or "").strip()
    if not title or not summary:
        return None
    return {"title": title, "summary": summary}


class CompletionService:
    """Wraps the chat model; one instance is shared by the whole process."""

    def __init__(self, chat_llm, json_llm, model_name: str):
        self.chat_llm = chat_llm
        self.json_llm = json_llm
        self.model_name = model_name

    async def astream(self, message: str, context: str) -> AsyncIterator[str]:
        """Stream answer tokens for the citizen's message.

        Raises:
            CompletionServiceFailure: if the model call fails at any point.
        """
        messages = [
            SystemMessage(content=build_system_prompt(context)),
            HumanMessage(content=message),
        ]
        try:
            async for chunk in self.chat_llm.astream(messages):
                text = chunk.content if hasattr(chunk, "content") else str(chunk)
                if text:
                    yield text
        except CompletionServiceFailure:
            raise
        except Exception as e:
            logger.error("completion_stream_failed", model=self.model_name, error=str(e))
            raise CompletionServiceFailure(str(e)) from e

    @retry(stop=stop_after_attempt(2), wait=wait_exponential(multiplier=1, min=1, max=4), reraise=True)
    async def _invoke_title_chain(self, transcript_prompt: str) -> str:
        prompt = ChatPromptTemplate.from_messages([
            ("system", "{system}"),
            ("human", "{prompt}"),
        ])
        chain = prompt | self.json_llm | StrOutputParser()
        return await chain.ainvoke({"system": TITLE_SUMMARY_SYSTEM_PROMPT, "prompt": transcript_prompt})

    async def generate_title_summary(self, messages: list[dict[str, str]]) -> Optional[dict[str, str]]:
        """Ask the model for a title and summary of the conversation.

        Returns None when the output cannot be parsed. Model errors propagate
        after one retry.
        """
        response = await self._invoke_title_chain(build_title_summary_prompt(messages))
        parsed = parse_title_summary(response)
        if parsed is None:
            logger.warning("title_summary_unparseable", preview=(response or "")[:200])
        return parsed


def create_completion_service(settings: Settings) -> CompletionService:
    """Create the completion service from settings."""
    logger.info("completion_service_created", model=settings.llm_model_name)
    return CompletionService(
        chat_llm=create_chat_client(settings),
        json_llm=create_json_chat_client(settings),
        model_name=settings.llm_model_name,
    )
