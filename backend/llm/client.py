"""Ollama chat client configuration."""

from langchain_ollama import ChatOllama

from config import Settings


def create_chat_client(settings: Settings) -> ChatOllama:
    """Create the streaming chat client used for answers.

    Args:
        settings: Application settings.

    Returns:
        Configured ChatOllama instance.
    """
    return ChatOllama(
        model=settings.llm_model_name,
        base_url=settings.llm_ollama_base_url,
        temperature=settings.llm_temperature,
        num_ctx=settings.llm_num_ctx,
        num_predict=settings.llm_num_predict,
        client_kwargs={"timeout": settings.llm_request_timeout},
    )


def create_json_chat_client(settings: Settings) -> ChatOllama:
    """Create a short-output client for JSON title/summary completions."""
    return ChatOllama(
        model=settings.llm_model_name,
        base_url=settings.llm_ollama_base_url,
        temperature=0.3,
        num_ctx=settings.llm_num_ctx,
        num_predict=200,
        client_kwargs={"timeout": settings.llm_request_timeout},
    )
