from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog
from pydantic import BaseModel, ValidationError
from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.sql import func

from src.conversation.state import PendingState, parse_pending_state, to_patch
from src.store.models import PendingStateRecord

logger = structlog.get_logger()


class PendingStateStore:
    """At most one pending state per identity, persisted as JSONB.

    ``set`` merges shallowly by default (top-level keys of the patch replace
    those already stored, other keys survive), so a follow-up that only
    updates ``draft`` keeps the ``media`` captured by the first message.
    """

    def __init__(self, db_session_factory: async_sessionmaker) -> None:
        self._db = db_session_factory

    async def get(self, identity: str) -> PendingState | None:
        async with self._db() as db:
            result = await db.execute(
                select(PendingStateRecord.state).where(PendingStateRecord.identity == identity)
            )
            document = result.scalar_one_or_none()

        if not document:
            return None
        try:
            return parse_pending_state(document)
        except ValidationError as e:
            logger.warning(
                "pending_state_unparseable",
                identity=identity,
                kind=document.get("kind") if isinstance(document, dict) else None,
                error_count=e.error_count(),
            )
            return None

    async def set(
        self,
        identity: str,
        patch: BaseModel | dict[str, Any],
        *,
        merge: bool = True,
    ) -> None:
        if isinstance(patch, BaseModel):
            patch = to_patch(patch)

        stmt = pg_insert(PendingStateRecord).values(
            identity=identity, state=patch, updated_at=func.now()
        )
        merged = (
            PendingStateRecord.state.op("||")(stmt.excluded.state)
            if merge
            else stmt.excluded.state
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["identity"],
            set_={"state": merged, "updated_at": func.now()},
        )
        async with self._db() as db:
            await db.execute(stmt)
            await db.commit()
        logger.debug(
            "pending_state_set", identity=identity, kind=patch.get("kind"), merge=merge
        )

    async def delete(self, identity: str) -> None:
        async with self._db() as db:
            await db.execute(
                delete(PendingStateRecord).where(PendingStateRecord.identity == identity)
            )
            await db.commit()
        logger.debug("pending_state_deleted", identity=identity)

    async def prune(self, older_than: datetime) -> int:
        """Delete states not touched since ``older_than``. Returns the row count."""
        async with self._db() as db:
            result = await db.execute(
                delete(PendingStateRecord)
                .where(PendingStateRecord.updated_at < older_than)
                .returning(PendingStateRecord.identity)
            )
            pruned = len(result.scalars().all())
            await db.commit()
        logger.info("pending_state_pruned", count=pruned, older_than=older_than.isoformat())
        return pruned
