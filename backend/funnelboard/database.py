"""Database engine, session factory and FastAPI dependency.

WHAT:
    Builds the SQLAlchemy engine from `Settings.DATABASE_URL` exactly once per
    process and hands out sessions through `get_db()`.

WHY:
    - Services never reach for a global client: they receive the `Session` in
      their constructor (`LeadService(db)`), so tests can inject an in-memory
      SQLite session through `app.dependency_overrides[get_db]`.
    - The engine lifecycle is explicit: `get_engine()` is cached, and
      `dispose_engine()` is the only way to close it (app shutdown).

ARCHITECTURE:
    Settings.DATABASE_URL
            │
    ┌───────▼────────┐
    │  get_engine()  │  (lru_cache, once per process)
    └───────┬────────┘
    ┌───────▼────────────────┐
    │ get_session_factory()  │
    └───────┬────────────────┘
    ┌───────▼────────┐
    │   get_db()     │  (FastAPI dependency)
    └────────────────┘

REFERENCES:
    - funnelboard/config.py (DATABASE_URL)
    - funnelboard/routers/ (consumers of these sessions)
"""

import logging
from contextlib import contextmanager
from functools import lru_cache
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .config import get_settings
from .models import Base

logger = logging.getLogger(__name__)


def build_engine(database_url: str) -> Engine:
    """Create an engine with pool settings suited to the backend.

    SQLite engines (local dev, tests) do not support pool_size/max_overflow.
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
        )
    if database_url.startswith("postgres://"):
        # Heroku-style URL
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    return create_engine(
        database_url,
        pool_size=10,
        max_overflow=20,
        pool_recycle=3600,
        pool_pre_ping=True,
    )


@lru_cache()
def get_engine() -> Engine:
    """Return the process-wide engine, creating it on first use."""
    url = get_settings().DATABASE_URL
    logger.info(f"[DB] Creating engine for {url.split('@')[-1]}")
    return build_engine(url)


@lru_cache()
def get_session_factory() -> sessionmaker:
    return sessionmaker(bind=get_engine(), autoflush=False, autocommit=False)


def init_db() -> None:
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(bind=get_engine())


def dispose_engine() -> None:
    """Close pooled connections; called on application shutdown."""
    if get_engine.cache_info().currsize:
        get_engine().dispose()
        get_session_factory.cache_clear()
        get_engine.cache_clear()
        logger.info("[DB] Engine disposed")


def get_db() -> Generator[Session, None, None]:
    """Yield a database session for FastAPI dependency injection.

    Example:
        @router.get("/items")
        def get_items(db: Session = Depends(get_db)):
            return db.query(Item).all()
    """
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_sync_session() -> Generator[Session, None, None]:
    """Context manager for sessions outside FastAPI (scripts).

    Example:
        with get_sync_session() as db:
            pipelines = db.query(Pipeline).all()
    """
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session, tag: str = "DB") -> Generator[Session, None, None]:
    """Run a block of writes as one transaction.

    Commits on success. On any SQLAlchemy error the session is rolled back
    and the error propagates; nothing is retried.

    Example:
        with atomic(self.db, "LEADS"):
            lead.current_stage_id = stage.id
            self.db.add(LeadStageHistory(...))
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(f"[{tag}] Transaction rolled back")
        raise
