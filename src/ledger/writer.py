"""Idempotent persistence of domain mutations.

Every write runs under one idempotency key. Tables with a natural unique key
use ``INSERT ... ON CONFLICT DO NOTHING RETURNING``; the rest are guarded by
the audit ledger's ``(owner_id, key)`` constraint inside the same transaction.
Either way the audit row commits together with the mutation, and of any number
of concurrent writers under one key exactly one sees ``inserted=True``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy import ColumnElement, TextClause
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.sql.dml import Delete, Update

from src.infra.errors import DependencyTimeoutError, UnavailableError
from src.ledger.audit import AuditLedger
from src.store.database import CONNECTIVITY_ERRORS
from src.store.models import Base

logger = structlog.get_logger()


@dataclass(frozen=True)
class Mutation:
    """One row to insert for one tenant."""

    model: type[Base]
    values: dict[str, Any]
    action: str
    tenant_id: str
    # Natural unique key of the table, if it has one for these values.
    conflict_columns: list[str] | None = None
    conflict_where: ColumnElement[bool] | TextClause | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class WriteResult:
    inserted: bool
    row_id: Any = None
    duplicate: bool = False


class IdempotentWriter:
    def __init__(
        self,
        db_session_factory: async_sessionmaker,
        audit: AuditLedger,
        *,
        timeout_s: float = 4.0,
    ) -> None:
        self._db = db_session_factory
        self._audit = audit
        self._timeout_s = timeout_s
        self._inflight: set[asyncio.Task] = set()

    async def write(self, mutation: Mutation, idempotency_key: str) -> WriteResult:
        """Insert ``mutation`` at most once under ``idempotency_key``.

        Raises DependencyTimeoutError when the database does not answer in
        time (the write keeps running and its outcome is unknown to the
        caller) and UnavailableError when it cannot be reached.
        """
        return await self._bounded(
            self._write(mutation, idempotency_key),
            action=mutation.action,
            key=idempotency_key,
        )

    async def apply(
        self,
        tenant_id: str,
        key: str,
        action: str,
        operation: Update | Delete,
        details: dict[str, Any] | None = None,
    ) -> WriteResult:
        """Run an update or delete under the same audit and timeout discipline.

        ``inserted`` is True when the statement touched at least one row and
        the key was recorded. When it touched nothing, nothing is recorded.
        """
        return await self._bounded(
            self._apply(tenant_id, key, action, operation, details or {}),
            action=action,
            key=key,
        )

    async def drain(self) -> None:
        """Wait for writes that outlived their caller's timeout. Called on shutdown."""
        if self._inflight:
            logger.info("idempotent_writer_draining", inflight=len(self._inflight))
            await asyncio.gather(*self._inflight, return_exceptions=True)

    async def _bounded(self, coro, *, action: str, key: str) -> WriteResult:
        task = asyncio.create_task(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=self._timeout_s)
        except TimeoutError:
            logger.warning(
                "idempotent_write_timeout", action=action, key=key, timeout_s=self._timeout_s
            )
            task.add_done_callback(_log_late_outcome(action, key))
            raise DependencyTimeoutError(
                f"{action} did not complete within {self._timeout_s}s"
            ) from None
        except CONNECTIVITY_ERRORS as e:
            logger.warning("idempotent_write_unavailable", action=action, key=key, error=str(e))
            raise UnavailableError(f"Database unavailable during {action}") from e
        except DBAPIError as e:
            if e.connection_invalidated:
                logger.warning("idempotent_write_unavailable", action=action, key=key)
                raise UnavailableError(f"Database connection lost during {action}") from e
            raise

    async def _write(self, mutation: Mutation, key: str) -> WriteResult:
        model = mutation.model
        details = {**mutation.details, "table": model.__tablename__}
        native = mutation.conflict_columns is not None and all(
            mutation.values.get(col) is not None for col in mutation.conflict_columns
        )

        if not native and await self._audit.is_consumed(mutation.tenant_id, key):
            logger.info("idempotent_write_duplicate", action=mutation.action, key=key, via="audit")
            return WriteResult(inserted=False, duplicate=True)

        stmt = pg_insert(model).values(**mutation.values)
        if native:
            stmt = stmt.on_conflict_do_nothing(
                index_elements=mutation.conflict_columns,
                index_where=mutation.conflict_where,
            )
        stmt = stmt.returning(model.id)

        async with self._db() as db:
            result = await db.execute(stmt)
            row_id = result.scalar_one_or_none()
            if row_id is None:
                await db.rollback()
                logger.info(
                    "idempotent_write_duplicate", action=mutation.action, key=key, via="native"
                )
                return WriteResult(inserted=False, duplicate=True)

            recorded = await self._audit.record(
                mutation.tenant_id,
                key,
                mutation.action,
                {**details, "row_id": str(row_id)},
                db=db,
            )
            if not recorded:
                # Lost the race on the audit key: another writer owns this key.
                await db.rollback()
                logger.info(
                    "idempotent_write_duplicate", action=mutation.action, key=key, via="audit_race"
                )
                return WriteResult(inserted=False, duplicate=True)

            await db.commit()

        logger.info(
            "idempotent_write_inserted",
            action=mutation.action,
            key=key,
            table=model.__tablename__,
            row_id=str(row_id),
        )
        return WriteResult(inserted=True, row_id=row_id)

    async def _apply(
        self,
        tenant_id: str,
        key: str,
        action: str,
        operation: Update | Delete,
        details: dict[str, Any],
    ) -> WriteResult:
        if await self._audit.is_consumed(tenant_id, key):
            logger.info("idempotent_write_duplicate", action=action, key=key, via="audit")
            return WriteResult(inserted=False, duplicate=True)

        async with self._db() as db:
            result = await db.execute(operation)
            rows = result.all() if result.returns_rows else []
            affected = len(rows) if result.returns_rows else result.rowcount
            if not affected:
                await db.rollback()
                return WriteResult(inserted=False)

            row_id = rows[0][0] if rows else None
            recorded = await self._audit.record(
                tenant_id, key, action, {**details, "affected": affected}, db=db
            )
            if not recorded:
                await db.rollback()
                logger.info("idempotent_write_duplicate", action=action, key=key, via="audit_race")
                return WriteResult(inserted=False, duplicate=True)
            await db.commit()

        logger.info("idempotent_apply_done", action=action, key=key, affected=affected)
        return WriteResult(inserted=True, row_id=row_id)


def _log_late_outcome(action: str, key: str):
    def _callback(task: asyncio.Task) -> None:
        if task.cancelled():
            logger.warning("idempotent_write_late_cancelled", action=action, key=key)
        elif task.exception() is not None:
            logger.warning(
                "idempotent_write_late_failed",
                action=action,
                key=key,
                error_type=type(task.exception()).__name__,
            )
        else:
            logger.info(
                "idempotent_write_late_completed",
                action=action,
                key=key,
                inserted=task.result().inserted,
            )

    return _callback
