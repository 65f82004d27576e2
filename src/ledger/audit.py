"""Audit ledger: the record of every consumed idempotency key.

A key is consumed once its mutation has committed. ``record`` runs inside the
mutation's transaction when given ``db``, so a failed mutation never leaves an
audit row behind.
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.infra.errors import ConflictError
from src.store.models import AuditRecord

logger = structlog.get_logger()


class AuditLedger:
    def __init__(self, db_session_factory: async_sessionmaker) -> None:
        self._db = db_session_factory

    async def is_consumed(self, tenant_id: str, key: str) -> bool:
        return await self.lookup(tenant_id, key) is not None

    async def lookup(self, tenant_id: str, key: str) -> AuditRecord | None:
        async with self._db() as db:
            result = await db.execute(
                select(AuditRecord).where(AuditRecord.owner_id == tenant_id, AuditRecord.key == key)
            )
            return result.scalar_one_or_none()

    async def ensure_not_duplicate(self, tenant_id: str, key: str) -> None:
        """Raise ConflictError(code="DUPLICATE") when ``key`` is already consumed."""
        record = await self.lookup(tenant_id, key)
        if record is not None:
            logger.info(
                "audit_duplicate_key", tenant_id=tenant_id, key=key, action=record.action
            )
            raise ConflictError(
                f"Idempotency key already consumed by {record.action}", code="DUPLICATE"
            )

    async def record(
        self,
        tenant_id: str,
        key: str,
        action: str,
        details: dict[str, Any] | None = None,
        *,
        db: AsyncSession | None = None,
    ) -> bool:
        """Insert the audit row. Returns False when ``key`` was already consumed.

        With ``db`` the row joins the caller's transaction and the caller
        commits; without it the row is committed on its own.
        """
        stmt = (
            pg_insert(AuditRecord)
            .values(owner_id=tenant_id, key=key, action=action, details=details or {})
            .on_conflict_do_nothing(index_elements=["owner_id", "key"])
            .returning(AuditRecord.id)
        )
        if db is not None:
            result = await db.execute(stmt)
            return result.scalar_one_or_none() is not None

        async with self._db() as own:
            result = await own.execute(stmt)
            recorded = result.scalar_one_or_none() is not None
            await own.commit()
        return recorded
