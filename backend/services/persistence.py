"""Transaction helpers and dialect-aware upserts."""

from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from services.errors import PersistenceFailure


@contextmanager
def transaction(db: Session, operation: str):
    """Commit on success; roll back and raise PersistenceFailure on any DB error."""
    try:
        yield
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceFailure(f"{operation} failed: {exc}") from exc
    except Exception:
        db.rollback()
        raise


def dialect_insert(db: Session):
    """Return the dialect's ``insert`` construct supporting ON CONFLICT, or None."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
        return insert
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
        return insert
    return None
