"""Database engine and session management."""

from contextlib import contextmanager
from typing import Generator, Dict, Any
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool

from admin_assistant.infra.config import config


def _engine_options(url: str) -> Dict[str, Any]:
    """Pool settings per backend; SQLite is used for local runs and tests."""
    pool = {
        "poolclass": QueuePool,
        "pool_size": config.DB_POOL_SIZE,  # Number of connections to maintain
        "max_overflow": config.DB_MAX_OVERFLOW,  # Max connections beyond pool_size
        "pool_timeout": 30,  # Seconds to wait for connection from pool
    }
    if url.startswith("sqlite"):
        # Context queries and tool handlers run on worker threads
        options: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" not in url:
            options.update(pool)
        return options
    return {
        **pool,
        "pool_recycle": 3600,  # Recycle connections after 1 hour
        "pool_pre_ping": True,  # Verify connections before using
    }


engine = create_engine(
    config.DATABASE_URL,
    echo=False,
    **_engine_options(config.DATABASE_URL),
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """
    Get a database session scoped to one unit of work.

    Commits on clean exit, rolls back on any exception.
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator[Session, None, None]:
    """Dependency for FastAPI routes."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
