"""Alembic environment for the ledger schema.

Connection details come from the same DATABASE_* settings the gateway uses;
migrations run synchronously through psycopg.
"""

from logging.config import fileConfig

from sqlalchemy import create_engine, pool, text

from alembic import context
from src.config.settings import DatabaseSettings
from src.constants import DB_SCHEMA
from src.store.models import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _sync_url() -> str:
    db = DatabaseSettings()
    return f"postgresql+psycopg://{db.user}:{db.password}@{db.host}:{db.port}/{db.name}"


def _only_ledger_schema(name, type_, parent_names) -> bool:
    return name == DB_SCHEMA if type_ == "schema" else True


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        version_table_schema=DB_SCHEMA,
        include_schemas=True,
        include_name=_only_ledger_schema,
        compare_type=True,
        **kwargs,
    )


def run_offline() -> None:
    _configure(url=_sync_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def run_online() -> None:
    engine = create_engine(_sync_url(), poolclass=pool.NullPool)
    with engine.connect() as connection:
        # The version table lives inside the ledger schema, so it must exist first.
        connection.execute(text(f"CREATE SCHEMA IF NOT EXISTS {DB_SCHEMA}"))
        connection.commit()

        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_offline()
else:
    run_online()
