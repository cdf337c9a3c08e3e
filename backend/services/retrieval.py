"""Two-pass document retrieval and context building.

The first pass searches at the strict threshold; only when it returns
nothing is the search repeated at the relaxed threshold. Embedding and
search failures raise RetrievalFailure and are never read as "no results".
"""

import asyncio
from dataclasses import dataclass, field

import structlog

from config import Settings
from services.embedding import EmbeddingService
from services.errors import RetrievalFailure
from services.vector_store import RetrievedDocument

logger = structlog.get_logger(__name__)


@dataclass
class RetrievalResult:
    """Documents found for a query and the threshold that produced them."""

    documents: list[RetrievedDocument] = field(default_factory=list)
    threshold_used: float = 0.0
    second_pass: bool = False

    @property
    def top3(self) -> list[RetrievedDocument]:
        return self.documents[:3]


class DocumentRetriever:
    """Embeds the query and runs the thresholded similarity search."""

    def __init__(self, embedding_service: EmbeddingService, index, settings: Settings):
        self.embedding_service = embedding_service
        self.index = index
        self.threshold_strict = settings.retrieval_threshold_strict
        self.threshold_relaxed = settings.retrieval_threshold_relaxed
        self.top_k = settings.retrieval_top_k

    async def retrieve(self, query: str, tenant_id: str) -> RetrievalResult:
        """Retrieve up to top_k documents for the tenant, best first.

        Raises:
            RetrievalFailure: reason "embedding_failed" or "search_failed".
        """
        try:
            embedding = await self.embedding_service.embed(query)
        except Exception as e:
            logger.error("query_embedding_failed", tenant_id=tenant_id, error=str(e))
            raise RetrievalFailure("embedding_failed", str(e)) from e

        threshold = self.threshold_strict
        documents = await self._search(tenant_id, embedding, threshold)
        second_pass = False

        if not documents:
            threshold = self.threshold_relaxed
            second_pass = True
            documents = await self._search(tenant_id, embedding, threshold)

        documents = sorted(
            (d for d in documents if d.similarity >= threshold),
            key=lambda d: d.similarity,
            reverse=True,
        )

        logger.info(
            "documents_retrieved",
            tenant_id=tenant_id,
            count=len(documents),
            threshold_used=threshold,
            second_pass=second_pass,
            top_scores=[round(d.similarity, 3) for d in documents[:3]],
        )
        return RetrievalResult(documents=documents, threshold_used=threshold, second_pass=second_pass)

    async def _search(self, tenant_id: str, embedding: list[float], threshold: float) -> list[RetrievedDocument]:
        try:
            # ChromaDB is synchronous
            return await asyncio.to_thread(self.index.search, tenant_id, embedding, threshold, self.top_k)
        except Exception as e:
            logger.error("similarity_search_failed", tenant_id=tenant_id, threshold=threshold, error=str(e))
            raise RetrievalFailure("search_failed", str(e)) from e


def build_context(
    documents: list[RetrievedDocument],
    max_doc_chars: int = 2000,
    max_total_chars: int = 8000,
) -> str:
    """Render documents into the grounding context block.

    Documents with empty content are skipped and blocks are numbered in the
    order they are written, without gaps. Building stops before the
    first block that would push the total past ``max_total_chars``, so the
    result always ends on a complete block.
    """
    context = ""
    written = 0
    for doc in documents:
        if not doc.content:
            continue

        section = (
            f"DOC {written + 1} TITLE: {doc.title or 'Untitled'}\n"
            f"SOURCE: {doc.source_url or 'N/A'}\n"
            f"CONTENT: {doc.content[:max_doc_chars]}\n"
            "---\n"
        )
        if len(context) + len(section) > max_total_chars:
            break
        context += section
        written += 1

    return context
