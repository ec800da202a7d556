"""Database engine and session management."""

from collections.abc import Generator
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from orderflow.core.config import settings
from orderflow.core.errors import DependencyUnavailable


def _engine_options(database_url: str) -> dict[str, Any]:
    """Bound every store round-trip so callers see a retryable error instead of hanging."""
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False, "timeout": settings.db_timeout_seconds}}
    return {
        "connect_args": {"connect_timeout": settings.db_timeout_seconds},
        "pool_timeout": settings.db_timeout_seconds,
        "pool_pre_ping": True,
    }


engine = create_engine(settings.database_url, **_engine_options(settings.database_url))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Yield a database session and ensure proper cleanup."""
    db: Session = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def commit_or_raise(db: Session) -> None:
    """Commit the unit of work, surfacing store outages as a retryable error."""
    try:
        db.commit()
    except OperationalError as exc:
        db.rollback()
        raise DependencyUnavailable("Order store is unavailable, retry later") from exc
