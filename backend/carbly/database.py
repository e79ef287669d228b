# backend/carbly/database.py
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.ext.asyncio import AsyncSession

from carbly.core.config import settings
from carbly.core.async_context import get_async_context

# The async engine and session factory live in async_context so that the
# Celery worker never inherits a connection pool bound to another loop.

# --- SYNC ENGINE & SESSION FOR CELERY BEAT / SCRIPTS ---
sync_engine = create_engine(
    settings.SYNC_DATABASE_URL, # Uses postgresql+psycopg2://
    pool_pre_ping=True,
)

SyncSessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=sync_engine
)

# --- DEPENDENCIES ---

async def get_db() -> AsyncSession:
    """
    FastAPI dependency to get an async database session.
    """
    session_factory = get_async_context().session_factory

    async with session_factory() as session:
        yield session

@contextmanager
def get_sync_db_session() -> Session:
    """
    Provides a transactional scope around a series of synchronous operations.
    """
    db = SyncSessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
