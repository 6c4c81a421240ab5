"""Async SQLAlchemy engine, declarative base, and session factory.

Provides:
- Base: Declarative base for every activation-core table
- create_engine_from_settings(): Build the asyncpg engine from Settings
- create_session_factory(): async_sessionmaker bound to an engine
- init_db() / close_db(): Lifespan helpers that operate on an explicit engine

The engine and session factory are created by the application lifespan and
handed to repositories explicitly; nothing here holds a module-level handle.
"""

from __future__ import annotations

from sqlalchemy import MetaData, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from src.sampling.config import Settings, get_settings

# Deterministic constraint names so Alembic autogenerate diffs stay stable
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Base class for all activation-core models."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


# ── Engine & Sessions ───────────────────────────────────────────────────────


def create_engine_from_settings(settings: Settings | None = None) -> AsyncEngine:
    """Create the async engine for DATABASE_URL."""
    settings = settings or get_settings()
    return create_async_engine(
        settings.DATABASE_URL,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=10,
        pool_pre_ping=True,
        echo=False,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory used by repositories; sessions never expire on commit."""
    return async_sessionmaker(engine, expire_on_commit=False)


# ── Database Initialization ─────────────────────────────────────────────────


async def init_db(engine: AsyncEngine) -> None:
    """Create tables and the store number sequence if they don't exist.

    Alembic owns migrations in deployed environments; this is for local
    development and test databases.
    """
    # Import models so every table is registered on Base.metadata
    from src.sampling.models import crm, ledger, retail  # noqa: F401

    async with engine.begin() as conn:
        await conn.execute(text("CREATE SEQUENCE IF NOT EXISTS store_number_seq START 1"))
        await conn.run_sync(Base.metadata.create_all)


async def check_db(engine: AsyncEngine) -> None:
    """Round-trip a trivial query; raises on connectivity failure."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


async def close_db(engine: AsyncEngine) -> None:
    """Dispose of the engine and close all connections."""
    await engine.dispose()
