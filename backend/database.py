"""Database setup and session management for the lot store."""

import logging
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


@lru_cache
def get_engine():
    """Get or create the database engine (cached)."""
    connect_args = {}
    database_url = settings.DATABASE_URL

    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    engine = create_engine(
        database_url,
        connect_args=connect_args,
        echo=False,
    )
    logger.info("Database engine created for %s", database_url.split("://", 1)[0])
    return engine


def init_db() -> None:
    """Create all tables that do not exist yet."""
    # Imported for its side effect of registering the ORM tables
    import models  # noqa: F401

    Base.metadata.create_all(bind=get_engine())


def get_session_local():
    """Get a sessionmaker bound to the engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


def get_db():
    """Dependency that provides a database session.

    Transaction conventions:
    - Default: services and lot stores ``flush()``, API layer ``commit()``
    - ``PreferenceService.set()`` commits itself (``IntegrityError`` retry)
    """
    SessionLocal = get_session_local()
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
