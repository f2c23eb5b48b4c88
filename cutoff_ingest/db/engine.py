"""Async database engine, session factory, and lifespan management.

Uses SQLAlchemy 2.0 async with the asyncpg driver for PostgreSQL.
Redis holds live import progress only, so the pipeline keeps working
when it is unreachable.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncGenerator

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from cutoff_ingest.config import settings

logger = logging.getLogger(__name__)

# ── Async PostgreSQL engine ──────────────────────────────────────────

engine: AsyncEngine = create_async_engine(
    settings.db.database_url,
    echo=settings.db.echo_sql,
    pool_size=settings.db.pool_size,
    max_overflow=settings.db.max_overflow,
    pool_pre_ping=True,
    pool_recycle=3600,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@contextlib.asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async DB session, committing on success.

    The orchestrator also commits at its own checkpoints, so a failure
    late in an import keeps the rows staged before it.

    Usage:
        async with get_session() as db:
            await staging_store.get_session(db, session_id)
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Redis client ─────────────────────────────────────────────────────

redis_client: aioredis.Redis = aioredis.from_url(
    settings.db.redis_url,
    decode_responses=True,
)


# ── Schema and health ────────────────────────────────────────────────


async def create_tables() -> None:
    """Create every table from model metadata. Production uses Alembic."""
    # All models must be imported so they register with Base.metadata
    import cutoff_ingest.models  # noqa: F401
    from cutoff_ingest.models.base import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Created %d tables", len(Base.metadata.tables))


async def check_connections() -> dict[str, bool]:
    """Probe PostgreSQL and Redis. Failures are logged, never raised."""
    status = {"database": False, "redis": False}

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        status["database"] = True
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("Database unreachable: %s", exc)

    try:
        status["redis"] = bool(await redis_client.ping())
    except (RedisError, OSError) as exc:
        logger.warning("Redis unreachable: %s", exc)

    return status


# ── Lifespan helpers ─────────────────────────────────────────────────


async def close_db() -> None:
    """Dispose the connection pool and the Redis client."""
    await engine.dispose()
    await redis_client.aclose()


@contextlib.asynccontextmanager
async def db_lifespan(*, ensure_schema: bool = True) -> AsyncGenerator[None, None]:
    """Database lifecycle for one CLI command.

    Outside production the tables are created on entry unless
    `ensure_schema` is False.

    Usage:
        async with db_lifespan():
            await args.handler(args)
    """
    if ensure_schema and not settings.is_production:
        await create_tables()
    try:
        yield
    finally:
        await close_db()
