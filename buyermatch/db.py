# buyermatch/db.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import settings
from .models import Base

engine: AsyncEngine = create_async_engine(settings.MATCH_DB_URL, echo=False)

AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)


async def create_tables(bind: AsyncEngine | None = None, *, drop_first: bool = False) -> list[str]:
    """Idempotent schema setup; returns the table names the metadata knows."""
    async with (bind or engine).begin() as conn:
        if drop_first:
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    return sorted(Base.metadata.tables)


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: one session per request."""
    async with AsyncSessionLocal() as session:
        yield session


@asynccontextmanager
async def async_session() -> AsyncIterator[AsyncSession]:
    """Session for scripts and scheduled jobs."""
    async with AsyncSessionLocal() as session:
        yield session
