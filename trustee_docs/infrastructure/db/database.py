"""
Database connection management.

Supports:
  - SQLite (local dev and tests, no setup)
  - PostgreSQL (production)

Connection string comes from DATABASE_URL (see config.settings).
"""

import logging
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from trustee_docs.config.settings import get_settings
from trustee_docs.infrastructure.db.models import Base

logger = logging.getLogger(__name__)


def get_database_url() -> str:
    return get_settings().database_url


def create_db_engine(url: str = None) -> Engine:
    """Create SQLAlchemy engine."""
    db_url = url or get_database_url()

    if db_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}, "echo": False}
        # In-memory databases live as long as their single connection
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(db_url, **kwargs)
    else:
        # PostgreSQL
        engine = create_engine(
            db_url,
            pool_size=10,
            max_overflow=20,
            pool_pre_ping=True,
            echo=False,
        )

    return engine


# ── Global engine & session factory ──
_engine = None
_SessionFactory = None


def get_engine() -> Engine:
    """Get or create the global engine."""
    global _engine
    if _engine is None:
        _engine = create_db_engine()
    return _engine


def get_session_factory():
    """Get or create the session factory."""
    global _SessionFactory
    if _SessionFactory is None:
        _SessionFactory = sessionmaker(bind=get_engine(), expire_on_commit=False)
    return _SessionFactory


def configure_engine(engine: Engine):
    """Point the global session factory at another engine (tests, scripts)."""
    global _engine, _SessionFactory
    _engine = engine
    _SessionFactory = sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine: Engine = None):
    """Create all tables. Safe to call multiple times."""
    engine = engine or get_engine()
    Base.metadata.create_all(engine)
    url = engine.url.render_as_string(hide_password=True)
    logger.info(f"Database initialized: {url.split('@')[-1] if '@' in url else url}")


def ping_db() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database ping failed: {e}")
        return False


@contextmanager
def get_db() -> Session:
    """Context manager for database sessions."""
    factory = get_session_factory()
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
