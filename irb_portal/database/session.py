"""
IRB PORTAL - Database Session
=============================
Engine, session factory and the request-scoped session dependency.
"""

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from irb_portal.config import settings
from .models import Base

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Single shared connection so in-memory databases survive across sessions
        return {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    return {
        "pool_pre_ping": True,  # Verify connections before using
        "pool_size": 10,
        "max_overflow": 20,
    }


engine = create_engine(settings.database_url, echo=False, **_engine_options(settings.database_url))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(drop_existing: bool = False) -> None:
    """Create all database tables."""
    if drop_existing:
        Base.metadata.drop_all(bind=engine)
        logger.warning("Dropped all existing tables")
    Base.metadata.create_all(bind=engine)
    logger.info("Created all database tables")


def get_db() -> Generator[Session, None, None]:
    """Dependency for DB session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Session with automatic commit/rollback.

    Usage:
        with session_scope() as session:
            session.add(role)
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Session error: {e}")
        raise
    finally:
        session.close()


def health_check() -> bool:
    """Check database connectivity."""
    try:
        with session_scope() as session:
            session.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return False
