"""Pytest configuration and fixtures."""

import os

# Keep the module-level engine off disk; must run before app imports
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_JSON", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from config import Settings
from database import init_db
from models import Tenant
from services.chat_orchestrator import ChatOrchestrator, PresentationMode
from services.errors import CompletionServiceFailure
from services.retrieval import DocumentRetriever
from services.vector_store import RetrievedDocument


# =============================================================================
# Fakes
# =============================================================================

class FakeEmbeddingService:
    """Deterministic embeddings; counts calls so tests can assert none happened."""

    model_name = "fake-embed"

    def __init__(self, fail: bool = False):
        self.calls = 0
        self.fail = fail

    async def embed(self, text: str) -> list[float]:
        self.calls += 1
        if self.fail:
            raise ConnectionError("embedding service unreachable")
        return [float(len(text)), 1.0, 0.0]


class FakeDocumentIndex:
    """Stores documents with fixed similarities per tenant and filters by threshold."""

    def __init__(self, documents: dict[str, list[RetrievedDocument]] = None, fail: bool = False):
        self.documents = documents or {}
        self.fail = fail
        self.searches: list[tuple[str, float]] = []

    def search(self, tenant_id, embedding, threshold, top_k):
        self.searches.append((tenant_id, threshold))
        if self.fail:
            raise RuntimeError("index unavailable")
        docs = [d for d in self.documents.get(tenant_id, []) if d.similarity >= threshold]
        docs.sort(key=lambda d: d.similarity, reverse=True)
        return docs[:top_k]


class FakeCompletionService:
    """Streams canned tokens; optionally fails after a number of tokens."""

    model_name = "fake-llm"

    def __init__(self, tokens=None, fail_after: int = None, title_summary=None, title_error: Exception = None):
        self.tokens = tokens if tokens is not None else ["Gradska ", "uprava ", "radi od 7 do 15."]
        self.fail_after = fail_after
        self.title_summary = title_summary
        self.title_error = title_error
        self.stream_calls: list[tuple[str, str]] = []
        self.closed = False

    async def astream(self, message: str, context: str):
        self.stream_calls.append((message, context))
        try:
            for i, token in enumerate(self.tokens):
                if self.fail_after is not None and i >= self.fail_after:
                    raise CompletionServiceFailure("model crashed")
                yield token
            if self.fail_after is not None and self.fail_after >= len(self.tokens):
                raise CompletionServiceFailure("model crashed")
        finally:
            self.closed = True

    async def generate_title_summary(self, messages):
        if self.title_error is not None:
            raise self.title_error
        return self.title_summary


class RecordingRunner:
    """Background runner stand-in that records spawns without running them."""

    def __init__(self):
        self.spawned: list[str] = []

    def spawn(self, name, work):
        self.spawned.append(name)
        work.close()


def make_doc(doc_id: str, similarity: float, content: str = None, title: str = None) -> RetrievedDocument:
    return RetrievedDocument(
        id=doc_id,
        title=title or f"Dokument {doc_id}",
        source_url=f"https://grad.example.hr/{doc_id}",
        content=content if content is not None else f"Sadržaj dokumenta {doc_id}.",
        similarity=similarity,
    )


# =============================================================================
# Database
# =============================================================================

@pytest.fixture
def engine():
    # One shared in-memory database across threads and sessions
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def tenant(db) -> Tenant:
    city = Tenant(id="city-ploce", code="PL", slug="ploce", name="Grad Ploče")
    db.add(city)
    db.commit()
    return city


@pytest.fixture
def other_tenant(db) -> Tenant:
    city = Tenant(id="city-zadar", code="ZD", slug="zadar", name="Grad Zadar")
    db.add(city)
    db.commit()
    return city


# =============================================================================
# Services
# =============================================================================

@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, database_url="sqlite://")


@pytest.fixture
def embedding_service():
    return FakeEmbeddingService()


@pytest.fixture
def document_index():
    return FakeDocumentIndex()


@pytest.fixture
def completion_service():
    return FakeCompletionService()


@pytest.fixture
def runner():
    return RecordingRunner()


@pytest.fixture
def orchestrator(embedding_service, document_index, completion_service, runner, session_factory, settings):
    retriever = DocumentRetriever(embedding_service, document_index, settings)
    return ChatOrchestrator(
        retriever=retriever,
        completion_service=completion_service,
        runner=runner,
        session_factory=session_factory,
        settings=settings,
        mode=PresentationMode.INCREMENTAL,
    )


@pytest.fixture
def client(orchestrator, session_factory):
    """TestClient wired to the in-memory database and fake services.

    Used without a ``with`` block so the production lifespan never runs.
    """
    from api.deps import get_orchestrator
    from api.rate_limit import limiter
    from database import get_db, get_session_factory
    from main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    limiter.reset()
    yield TestClient(app)
    app.dependency_overrides.clear()
