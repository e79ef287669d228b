# backend/carbly/core/async_context.py
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from carbly.core.config import settings

_async_context = None

class AsyncContext:
    """A container for lazily initialized async database resources.

    The API process shares one instance (see get_async_context). Celery tasks
    run each job on a fresh event loop, so they build and close their own.
    """
    def __init__(self, database_url: str | None = None):
        self._database_url = database_url or settings.DATABASE_URL
        self._engine = None
        self._session_factory = None

    @property
    def engine(self):
        if self._engine is None:
            self._engine = create_async_engine(self._database_url, pool_pre_ping=True)
        return self._engine

    @property
    def session_factory(self):
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(self.engine, expire_on_commit=False, class_=AsyncSession)
        return self._session_factory

    async def close(self):
        """Gracefully close all open connections."""
        if self._engine:
            await self._engine.dispose()
        self._engine = None
        self._session_factory = None

def get_async_context() -> AsyncContext:
    global _async_context
    if _async_context is None:
        _async_context = AsyncContext()
    return _async_context

async def close_async_context():
    global _async_context
    if _async_context is not None:
        await _async_context.close()
        _async_context = None
