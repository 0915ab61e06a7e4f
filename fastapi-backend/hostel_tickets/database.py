from typing import AsyncGenerator
from sqlmodel import SQLModel
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from .config import get_settings


def normalize_database_url(url: str) -> str:
    """Rewrite sync driver URLs to their async equivalents."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql+psycopg2://"):
        return url.replace("postgresql+psycopg2://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite:///") or url == "sqlite://":
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def build_engine(url: str) -> AsyncEngine:
    url = normalize_database_url(url)
    engine_kwargs = {"echo": False, "future": True}
    if url.startswith("sqlite"):
        # Concurrent writers queue on the database lock; give them time
        # before sqlite reports "database is locked".
        engine_kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}

        if ":memory:" in url or "mode=memory" in url or url == "sqlite+aiosqlite://":
            # In-memory DBs must share one connection or the schema disappears
            engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs["poolclass"] = NullPool
    elif "asyncpg" in url:
        engine_kwargs["poolclass"] = NullPool

    return create_async_engine(url, **engine_kwargs)


DATABASE_URL = normalize_database_url(get_settings().database_url)

engine = build_engine(DATABASE_URL)

# Create session factory at module level for proper initialization
async_session_factory = sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        yield session


async def init_db(bind: AsyncEngine = None) -> None:
    # Postgres schemas are managed by Alembic (`alembic upgrade head`)
    from . import models  # noqa: F401  registers tables on SQLModel.metadata

    bind = bind or engine
    if "postgres" in bind.dialect.name:
        return
    async with bind.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
