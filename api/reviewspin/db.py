import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import settings
from .errors import StoreUnavailable

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def make_engine(url: str, timeout_seconds: float = settings.store_timeout_seconds) -> Engine:
    """
    Build an engine whose every interaction is bounded by ``timeout_seconds``:
    pool checkout, connect, and (PostgreSQL) statement execution. SQLite gets a
    busy timeout instead so concurrent writers wait rather than fail at once.
    """
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": timeout_seconds},
        )
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_timeout=timeout_seconds,
        connect_args={
            "connect_timeout": max(1, int(timeout_seconds)),
            "options": f"-c statement_timeout={int(timeout_seconds * 1000)}",
        },
    )


engine = make_engine(settings.database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _is_transient(exc: Exception) -> bool:
    if isinstance(exc, (OperationalError, PoolTimeoutError)):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


@contextmanager
def store_guard(db: Session) -> Iterator[Session]:
    """
    Roll back and translate connection/timeout failures into StoreUnavailable.

    Integrity and programming errors propagate untouched; callers decide what
    a constraint violation means.
    """
    try:
        yield db
    except (DBAPIError, PoolTimeoutError) as exc:
        db.rollback()
        if _is_transient(exc):
            logger.warning("store unavailable: %s", exc.__class__.__name__)
            raise StoreUnavailable() from exc
        raise
