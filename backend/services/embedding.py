"""Embedding service: one process-wide handle around the Ollama embedding model."""

import structlog
from langchain_ollama import OllamaEmbeddings

from config import Settings

logger = structlog.get_logger(__name__)


class EmbeddingService:
    """Stateless, reentrant wrapper that turns text into a vector.

    Built once at startup and injected wherever embeddings are needed.
    """

    def __init__(self, embeddings: OllamaEmbeddings, model_name: str):
        self._embeddings = embeddings
        self.model_name = model_name

    async def embed(self, text: str) -> list[float]:
        """Embed a single query text."""
        return await self._embeddings.aembed_query(text)


def create_embedding_service(settings: Settings) -> EmbeddingService:
    """Create the embedding service from settings."""
    embeddings = OllamaEmbeddings(
        model=settings.embedding_model_name,
        base_url=settings.llm_ollama_base_url,
    )
    logger.info("embedding_service_created", model=settings.embedding_model_name)
    return EmbeddingService(embeddings, settings.embedding_model_name)
