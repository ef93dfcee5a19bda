from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from app.core.config import get_settings

# Base class for models
Base = declarative_base()

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def normalize_database_url(url: str) -> str:
    """Convert a plain postgres URL to the asyncpg driver form."""
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    return create_async_engine(normalize_database_url(url), echo=echo, future=True)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def get_session_factory() -> async_sessionmaker:
    """Lazily create the process-wide engine from DATABASE_URL."""
    global _engine, _session_factory
    if _session_factory is None:
        settings = get_settings()
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is not configured")
        _engine = build_engine(settings.database_url, echo=settings.sql_echo)
        _session_factory = build_session_factory(_engine)
    return _session_factory


async def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


# Dependency for FastAPI
async def get_db():
    async with get_session_factory()() as session:
        try:
            yield session
        finally:
            await session.close()
