"""Per-tenant document index backed by ChromaDB.

Each tenant has its own collection so documents never leak across
municipalities. Collections use cosine space, so similarity is
``1 - distance``. Queries take a precomputed embedding: the embedding model
lives in EmbeddingService, not in the collection.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import structlog

logger = structlog.get_logger(__name__)

# ChromaDB has a batch limit on add()
ADD_BATCH_SIZE = 50


@dataclass
class RetrievedDocument:
    """One document returned by a similarity search."""

    id: str
    title: str
    source_url: Optional[str]
    content: str
    similarity: float


def collection_name(tenant_id: str) -> str:
    return f"tenant_{tenant_id.replace('-', '_')[:50]}"


class ChromaDocumentIndex:
    """Thresholded top-K similarity search over a tenant's documents."""

    def __init__(self, client):
        self._client = client

    @classmethod
    def persistent(cls, path: str) -> "ChromaDocumentIndex":
        """Open (or create) an on-disk index at ``path``."""
        import chromadb

        Path(path).mkdir(parents=True, exist_ok=True)
        return cls(chromadb.PersistentClient(path=path))

    def _collection(self, tenant_id: str):
        return self._client.get_or_create_collection(
            name=collection_name(tenant_id),
            metadata={"tenant_id": tenant_id, "hnsw:space": "cosine"},
        )

    def add_documents(
        self,
        tenant_id: str,
        documents: list[dict[str, Any]],
        embeddings: list[list[float]],
    ) -> int:
        """Add or replace documents in the tenant's collection.

        Each document is a dict with ``id``, ``title``, ``source_url`` and
        ``content``; ``embeddings`` holds one vector per document, in order.

        Returns number of documents written.
        """
        if len(documents) != len(embeddings):
            raise ValueError("documents and embeddings must have the same length")
        if not documents:
            return 0

        collection = self._collection(tenant_id)
        for start in range(0, len(documents), ADD_BATCH_SIZE):
            batch = documents[start:start + ADD_BATCH_SIZE]
            collection.upsert(
                ids=[str(doc["id"]) for doc in batch],
                documents=[doc.get("content") or "" for doc in batch],
                embeddings=embeddings[start:start + ADD_BATCH_SIZE],
                metadatas=[
                    {"title": doc.get("title") or "", "source_url": doc.get("source_url") or ""}
                    for doc in batch
                ],
            )

        logger.info("documents_indexed", tenant_id=tenant_id, count=len(documents))
        return len(documents)

    def search(
        self,
        tenant_id: str,
        embedding: list[float],
        threshold: float,
        top_k: int,
    ) -> list[RetrievedDocument]:
        """Return up to ``top_k`` documents with similarity >= threshold, best first."""
        collection = self._collection(tenant_id)
        count = collection.count()
        if count == 0:
            return []

        results = collection.query(
            query_embeddings=[embedding],
            n_results=min(top_k, count),
            include=["documents", "metadatas", "distances"],
        )

        ids = results["ids"][0] if results.get("ids") else []
        docs = results["documents"][0] if results.get("documents") else []
        metas = results["metadatas"][0] if results.get("metadatas") else []
        distances = results["distances"][0] if results.get("distances") else []

        found = []
        for i, doc_id in enumerate(ids):
            meta = metas[i] if i < len(metas) and metas[i] else {}
            similarity = 1.0 - float(distances[i])
            if similarity < threshold:
                continue
            found.append(RetrievedDocument(
                id=doc_id,
                title=meta.get("title") or "",
                source_url=meta.get("source_url") or None,
                content=docs[i] if i < len(docs) and docs[i] else "",
                similarity=similarity,
            ))

        found.sort(key=lambda d: d.similarity, reverse=True)
        return found
