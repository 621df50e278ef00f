"""Async database engine/session factory and FastAPI dependency.

Supports both PostgreSQL (production) and SQLite (local dev, tests).
"""

from collections.abc import AsyncGenerator
from pathlib import Path

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from sharesub.config import Settings


def create_engine(settings: Settings) -> AsyncEngine:
    db_url = settings.async_database_url

    if db_url.startswith("sqlite"):
        # Ensure parent dir exists for the .db file
        db_path = db_url.split("///")[-1]
        if db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return create_async_engine(db_url, echo=settings.debug, connect_args={"check_same_thread": False})
    return create_async_engine(db_url, echo=settings.debug, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async database session."""
    async with request.app.state.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()
