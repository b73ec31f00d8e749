# outreach/db/session.py
"""
Database session management.
Provides the engine, session factory and a transactional context manager.
"""
import logging
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from contextlib import contextmanager

from outreach.core.config import DATABASE_URL, DB_STATEMENT_TIMEOUT_MS

log = logging.getLogger("outreach.database")

_engine = None
SessionLocal = sessionmaker(autocommit=False, autoflush=False)


# ────────────────────────────────────────────
# SQLAlchemy Engine
# ────────────────────────────────────────────
def build_engine(url: str = DATABASE_URL):
    """
    Create an engine for `url`.

    Server databases get a connection pool and a per-statement timeout so
    that target fetches and balance updates cannot block a pass forever.
    """
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False}, echo=False)

    connect_args = {}
    if url.startswith("postgresql"):
        connect_args["options"] = f"-c statement_timeout={DB_STATEMENT_TIMEOUT_MS}"

    return create_engine(
        url,
        pool_size=20,
        max_overflow=10,
        pool_timeout=30,
        pool_pre_ping=True,  # Verify connections before using
        connect_args=connect_args,
        echo=False  # Set to True for SQL debugging
    )


def get_engine():
    """Engine for the configured DATABASE_URL, created on first use"""
    global _engine
    if _engine is None:
        _engine = build_engine()
        SessionLocal.configure(bind=_engine)
    return _engine


# ────────────────────────────────────────────
# Context Manager
# ────────────────────────────────────────────
@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    Usage:
        with get_db_session() as db:
            campaign = db.query(Campaign).first()
    """
    get_engine()
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# ────────────────────────────────────────────
# Database Utilities
# ────────────────────────────────────────────
def test_db_connection() -> bool:
    """Test database connection"""
    try:
        with get_db_session() as db:
            db.execute(text("SELECT 1"))
        log.info("✅ Database connection successful")
        return True
    except Exception as e:
        log.error(f"❌ Database connection failed: {e}")
        return False


def init_db(engine=None):
    """
    Initialize database tables.
    This will create all tables defined in models.
    """
    from outreach.db.base import Base
    try:
        Base.metadata.create_all(bind=engine or get_engine())
        log.info("✅ Database tables initialized")
    except Exception as e:
        log.error(f"❌ Failed to initialize database: {e}")
        raise
