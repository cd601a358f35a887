
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncEngine
from sqlalchemy.orm import DeclarativeBase
from .config import settings

# Lazy initialization - engine is created on first use
_engine: AsyncEngine | None = None
_SessionLocal = None

def get_engine() -> AsyncEngine:
    """Return the engine, creating it on first call."""
    global _engine
    if _engine is None:
        _engine = create_async_engine(settings.database_url, echo=False, pool_pre_ping=True)
    return _engine

def get_session_local():
    """Return the session factory, creating it on first call."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _SessionLocal

async def init_models(engine: AsyncEngine | None = None) -> None:
    """Create tables (and the pgvector extension on PostgreSQL)."""
    from . import models  # noqa: F401  registers the tables on Base.metadata

    engine = engine or get_engine()
    async with engine.begin() as conn:
        if conn.dialect.name == "postgresql":
            await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)

class Base(DeclarativeBase):
    pass
