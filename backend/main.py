"""
FastAPI Backend for the Municipal Assistant

This is the main entry point for the API server. It provides endpoints for:
- Citizen chat with retrieval-augmented, streamed answers (SSE)
- Widget events: telemetry, ticket updates and intake submissions
- Staff edits and notes on conversations

Shared handles (embedding service, document index, completion service,
background runner) are built once in the lifespan and kept on app.state.
"""

# Load .env BEFORE any application imports that read os.environ
from dotenv import load_dotenv
load_dotenv()

import os
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from api.rate_limit import limiter
from api.routes import admin, chat, events
from api.schemas import HealthResponse
from config import get_settings
from database import SessionLocal, init_db
from llm import create_completion_service
from logging_config import configure_logging
from services.background import BackgroundRunner
from services.chat_orchestrator import ChatOrchestrator
from services.embedding import create_embedding_service
from services.errors import ChatCoreError, RetrievalFailure
from services.retrieval import DocumentRetriever
from services.vector_store import ChromaDocumentIndex

logger = structlog.get_logger(__name__)


def build_orchestrator(settings, runner: BackgroundRunner, session_factory=SessionLocal) -> ChatOrchestrator:
    """Wire the production services into one orchestrator."""
    retriever = DocumentRetriever(
        create_embedding_service(settings),
        ChromaDocumentIndex.persistent(settings.vector_store_dir),
        settings,
    )
    return ChatOrchestrator(
        retriever=retriever,
        completion_service=create_completion_service(settings),
        runner=runner,
        session_factory=session_factory,
        settings=settings,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging, create tables and build shared services."""
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)
    init_db()

    runner = BackgroundRunner()
    app.state.runner = runner
    app.state.orchestrator = build_orchestrator(settings, runner)
    logger.info("app_started", demo_mode=settings.demo_mode, model=settings.llm_model_name)

    yield

    await runner.drain()
    logger.info("app_stopped")


app = FastAPI(
    title="Municipal Assistant API",
    description="Citizen Q&A over official municipal documents, with escalation to staff",
    version="1.0.0",
    lifespan=lifespan,
)

app.state.limiter = limiter

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Error handlers
# =============================================================================

@app.exception_handler(ChatCoreError)
async def chat_core_error_handler(request: Request, exc: ChatCoreError) -> JSONResponse:
    body = {"error": exc.error_code, "detail": str(exc)}
    if isinstance(exc, RetrievalFailure):
        body["reason"] = exc.reason
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=exc.error_code, detail=str(exc))
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    retry_after = exc.limit.limit.get_expiry()
    logger.warning("rate_limited", path=request.url.path, limit=str(exc.limit.limit))
    return JSONResponse(
        status_code=429,
        content={"error": "rate_limited", "detail": f"Too many requests, retry in {retry_after} seconds"},
        headers={"Retry-After": str(retry_after)},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "validation_error", "detail": jsonable_encoder(exc.errors())},
    )


# =============================================================================
# Routes
# =============================================================================

app.include_router(chat.router, tags=["Chat"])
app.include_router(events.router, tags=["Events"])
app.include_router(admin.router, tags=["Staff"])


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="ok")


# =============================================================================
# Run with: python main.py
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    port = int(os.environ.get("PORT", 8100))
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=False,
    )
