"""Async SQLAlchemy engine for the credential store.

With DATABASE_URL set, every request gets its own AsyncSession from
async_session_factory (see api.dependencies.get_credential_repo) and the
PostgreSQL repository runs inside it.  Without it, engine and the factory
are None and the API serves the in-memory credential repository.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.core.config import SETTINGS

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for the credential table."""


engine: AsyncEngine | None = None
async_session_factory: async_sessionmaker[AsyncSession] | None = None

if SETTINGS.database_url:
    engine = create_async_engine(
        SETTINGS.database_url,
        echo=SETTINGS.is_dev,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        # A stuck checkout surfaces as StoreUnavailableError, not a hang
        pool_timeout=5,
    )
    async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


async def ping_database() -> bool:
    """Round-trip SELECT 1.  False when unconfigured or unreachable."""
    if engine is None:
        return False
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError):
        logger.warning("Credential store ping failed", exc_info=True)
        return False
    return True


@asynccontextmanager
async def lifespan_db():
    if engine is None:
        logger.info("No DATABASE_URL configured; using in-memory credential store")
        yield
        return

    if await ping_database():
        logger.info(
            "Credential store reachable host=%s db=%s",
            engine.url.host,
            engine.url.database,
        )
    try:
        yield
    finally:
        await engine.dispose()
        logger.info("Credential store engine disposed")
