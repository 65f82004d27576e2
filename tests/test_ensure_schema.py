"""Tests for ensure_schema DDL.

Covers: idempotent creation (can be called multiple times), and additive
transactions columns restored on a table created before they existed.

Marked as integration: needs a live PostgreSQL instance.
"""

from __future__ import annotations

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from src.constants import DB_SCHEMA
from src.store.database import ensure_schema


async def _columns(engine: AsyncEngine, table: str) -> set[str]:
    async with engine.connect() as conn:
        result = await conn.execute(
            text(
                "SELECT column_name FROM information_schema.columns"
                " WHERE table_schema = :schema AND table_name = :table"
            ),
            {"schema": DB_SCHEMA, "table": table},
        )
        return {row[0] for row in result}


@pytest.mark.integration
@pytest.mark.asyncio
async def test_ensure_schema_idempotent(db_engine: AsyncEngine) -> None:
    await ensure_schema(db_engine, DB_SCHEMA)
    await ensure_schema(db_engine, DB_SCHEMA)

    async with db_engine.connect() as conn:
        result = await conn.execute(
            text("SELECT table_name FROM information_schema.tables WHERE table_schema = :s"),
            {"s": DB_SCHEMA},
        )
        tables = {row[0] for row in result}
    assert {"audit", "pending_state", "conversation_locks", "transactions", "jobs"} <= tables


@pytest.mark.integration
@pytest.mark.asyncio
async def test_ensure_schema_restores_transaction_columns(db_engine: AsyncEngine) -> None:
    async with db_engine.begin() as conn:
        await conn.execute(text(f"ALTER TABLE {DB_SCHEMA}.transactions DROP COLUMN memo"))
        await conn.execute(text(f"ALTER TABLE {DB_SCHEMA}.transactions DROP COLUMN media_type"))

    assert "memo" not in await _columns(db_engine, "transactions")

    await ensure_schema(db_engine, DB_SCHEMA)

    columns = await _columns(db_engine, "transactions")
    assert {"memo", "media_url", "media_type", "source_msg_id"} <= columns
