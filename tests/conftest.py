"""Shared pytest fixtures.

Integration tests (marked ``integration``) get a PostgreSQL database in one of
two ways:
1. TEST_DATABASE_* env vars present → use that server (CI)
2. otherwise → testcontainers starts a throwaway postgres:16 (local dev)

The engine is built with the production ``create_db_engine`` and the schema
with ``ensure_schema``, so tests run against the same DDL the gateway creates.
Every ledger table is truncated after each async integration test. The
database name must contain '_test'.
"""

from __future__ import annotations

import asyncio
import os

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config.settings import DatabaseSettings
from src.constants import DB_SCHEMA
from src.conversation.store import PendingStateStore
from src.domain.resolver import ReferenceResolver
from src.ledger.audit import AuditLedger
from src.ledger.writer import IdempotentWriter
from src.store.database import create_db_engine, ensure_schema, make_session_factory
from src.store.models import Base


def _require_test_name(name: str) -> str:
    if "_test" not in name.lower():
        raise RuntimeError(
            f"Refusing to run tests against database '{name}': "
            "name must contain '_test'. Set TEST_DATABASE_NAME to a test-specific database."
        )
    return name


def _settings_from_env() -> DatabaseSettings | None:
    host = os.getenv("TEST_DATABASE_HOST")
    if host is None:
        return None
    return DatabaseSettings(
        host=host,
        port=int(os.getenv("TEST_DATABASE_PORT", "5432")),
        user=os.getenv("TEST_DATABASE_USER", "postgres"),
        password=os.getenv("TEST_DATABASE_PASSWORD", ""),
        name=_require_test_name(os.getenv("TEST_DATABASE_NAME", "tradeledger_test")),
    )


@pytest.fixture(scope="session")
def test_db_settings():
    """DatabaseSettings for the test server; starts a container when no env is set."""
    settings = _settings_from_env()
    if settings is not None:
        yield settings
        return

    from testcontainers.postgres import PostgresContainer

    container = PostgresContainer("postgres:16", dbname="tradeledger_test")
    container.start()
    try:
        yield DatabaseSettings(
            host=container.get_container_host_ip(),
            port=int(container.get_exposed_port(5432)),
            user=container.username,
            password=container.password,
            name=_require_test_name(container.dbname),
        )
    finally:
        container.stop()


@pytest_asyncio.fixture(scope="session")
async def db_engine(test_db_settings: DatabaseSettings):
    engine = await create_db_engine(test_db_settings)
    await ensure_schema(engine, DB_SCHEMA)

    yield engine

    async with engine.begin() as conn:
        await conn.execute(text(f"DROP SCHEMA IF EXISTS {DB_SCHEMA} CASCADE"))
    await engine.dispose()


@pytest_asyncio.fixture(scope="session")
async def db_session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(db_engine)


@pytest_asyncio.fixture(autouse=True)
async def _truncate_after_integration_test(request):
    """Empty every ledger table after each async integration test.

    The database fixtures are resolved lazily, so unit tests never start a
    container. Sync tests are skipped: they cannot await the truncation.
    """
    yield

    if request.node.get_closest_marker("integration") is None:
        return
    if not asyncio.iscoroutinefunction(request.node.obj):
        return

    try:
        factory = request.getfixturevalue("db_session_factory")
    except pytest.FixtureLookupError:
        return

    tables = ", ".join(t.fullname for t in reversed(Base.metadata.sorted_tables))
    async with factory() as db:
        await db.execute(text(f"TRUNCATE {tables} CASCADE"))
        await db.commit()


@pytest.fixture
def audit(db_session_factory) -> AuditLedger:
    return AuditLedger(db_session_factory)


@pytest.fixture
def writer(db_session_factory, audit) -> IdempotentWriter:
    return IdempotentWriter(db_session_factory, audit, timeout_s=10.0)


@pytest.fixture
def resolver(db_session_factory) -> ReferenceResolver:
    return ReferenceResolver(db_session_factory)


@pytest.fixture
def pending_store(db_session_factory) -> PendingStateStore:
    return PendingStateStore(db_session_factory)
