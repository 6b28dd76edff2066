"""
Async engine and session scopes for the payments ledger.

Postgres through asyncpg in deployments; the tests point DATABASE_URL at
aiosqlite. A session scope commits once at the end, so a Payment transition
and the Expense update it triggers land together or not at all.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for the ledger tables."""


def async_database_url(raw_url: str) -> str:
    """Force the asyncpg driver and drop libpq-only query options."""
    url = make_url(raw_url)
    if url.get_backend_name() == "postgresql":
        # asyncpg rejects sslmode; TLS is set through connect_args instead
        url = url.set(drivername="postgresql+asyncpg").difference_update_query(["sslmode"])
    return url.render_as_string(hide_password=False)


def build_engine(raw_url: str) -> AsyncEngine:
    url = async_database_url(raw_url)
    options: Dict[str, Any] = {"echo": settings.debug}

    if url.startswith("postgresql"):
        options.update(pool_pre_ping=True, pool_size=5, max_overflow=10)
        if settings.is_production:
            options["connect_args"] = {"ssl": True}

    return create_async_engine(url, **options)


engine = build_engine(settings.database_url)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@asynccontextmanager
async def _session_scope() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request, committed on success."""
    async with _session_scope() as session:
        yield session


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """Same scope as get_db, for Celery tasks and scripts."""
    async with _session_scope() as session:
        yield session


async def init_db() -> None:
    """Create missing tables. Development only; deployments run Alembic."""
    import app.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Ledger tables ensured")


async def close_db() -> None:
    await engine.dispose()
