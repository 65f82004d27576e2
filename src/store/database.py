"""Async database engine and session factory for PostgreSQL persistence."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import text
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from src.constants import DB_SCHEMA
from src.store.models import Base

if TYPE_CHECKING:
    from src.config.settings import DatabaseSettings

logger = structlog.get_logger()

# Errors meaning "the database could not be reached", as opposed to a statement failing.
CONNECTIVITY_ERRORS: tuple[type[BaseException], ...] = (OperationalError, InterfaceError, OSError)


def build_db_url(settings: DatabaseSettings) -> str:
    return (
        f"postgresql+asyncpg://{settings.user}:{settings.password}"
        f"@{settings.host}:{settings.port}/{settings.name}"
    )


async def create_db_engine(settings: DatabaseSettings) -> AsyncEngine:
    """Create an async SQLAlchemy engine from DatabaseSettings."""
    engine = create_async_engine(
        build_db_url(settings),
        pool_size=settings.pool_size,
        max_overflow=10,
        pool_pre_ping=True,
        connect_args={
            "server_settings": {
                "search_path": f"{settings.schema_}, public",
                "statement_timeout": str(settings.statement_timeout_ms),
            }
        },
    )
    logger.info("db_engine_created", host=settings.host, database=settings.name)
    return engine


async def ensure_schema(engine: AsyncEngine, schema: str = DB_SCHEMA) -> None:
    """Ensure the target schema exists, then create all tables."""
    async with engine.begin() as conn:
        await conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {schema}"))
        await conn.run_sync(Base.metadata.create_all)

        # Older deployments created transactions before the media and memo columns.
        # create_all does not ALTER existing tables, so keep additive columns self-healing.
        for column, ddl in (
            ("memo", "TEXT"),
            ("media_url", "TEXT"),
            ("media_type", "VARCHAR(64)"),
            ("source_msg_id", "VARCHAR(200)"),
        ):
            await conn.execute(text(
                f"ALTER TABLE {schema}.transactions ADD COLUMN IF NOT EXISTS {column} {ddl}"
            ))

    logger.info("db_schema_ensured", schema=schema)


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Create an async session factory bound to the engine."""
    return async_sessionmaker(engine, expire_on_commit=False)
