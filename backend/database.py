"""
GrantMatch Database Connection Setup
Provides the sync engine and session factory used by the matching store,
the API dependencies and the Celery workers.
"""

from functools import lru_cache
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from backend.core.config import settings
from backend.models import Base

# =============================================================================
# Sync Engine and Session
# =============================================================================


@lru_cache
def get_engine(database_url: Optional[str] = None) -> Engine:
    """
    Create (once per URL) the SQLAlchemy engine with connection pooling.

    The engine is built lazily so importing this module never opens a
    connection or requires a database driver.
    """
    url = database_url or settings.database_url
    if url.startswith("sqlite"):
        return create_engine(
            url,
            echo=settings.debug,
            connect_args={"check_same_thread": False},
        )
    return create_engine(
        url,
        echo=settings.debug,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


def get_session_factory(engine: Optional[Engine] = None) -> sessionmaker:
    """Session factory bound to the given (or default) engine."""
    return sessionmaker(
        bind=engine or get_engine(),
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


# =============================================================================
# Lifecycle
# =============================================================================


def init_db(engine: Optional[Engine] = None) -> None:
    """Create all tables (development and tests; production uses Alembic)."""
    Base.metadata.create_all(engine or get_engine())


def close_db() -> None:
    """Dispose of pooled connections."""
    if get_engine.cache_info().currsize:
        get_engine().dispose()
    get_engine.cache_clear()
