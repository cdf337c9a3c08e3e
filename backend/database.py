"""
Database connection via SQLAlchemy.

Defaults to a SQLite file under data/; set DATABASE_URL to point at any
SQLAlchemy-supported database (PostgreSQL in production).
"""

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker, declarative_base

from config import get_settings

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def create_db_engine(database_url: str):
    """Create an engine, preparing the SQLite file location when needed."""
    url = make_url(database_url)
    connect_args = {}
    if url.get_backend_name() == "sqlite":
        connect_args["check_same_thread"] = False  # Required for SQLite with FastAPI threads
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(database_url, connect_args=connect_args)


engine = create_db_engine(get_settings().database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """FastAPI dependency that yields a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory():
    """FastAPI dependency returning the session factory.

    The chat handler opens a session itself before returning the stream and
    the stream closes it once sent, so it outlives the request-scoped one.
    """
    return SessionLocal


def init_db(bind=None):
    """Create all tables if they don't exist."""
    import models  # noqa: F401 (registers models with Base)
    Base.metadata.create_all(bind=bind or engine)
