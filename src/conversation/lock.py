"""Per-identity mutual exclusion for conversation turns.

The durable claim lives in ``conversation_locks`` (one row per key, fenced by a
UUID token). When that table cannot be reached in time the manager degrades to
a process-local map so a single worker keeps serving; cross-worker exclusion
is lost until the database comes back.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from typing import Literal

import structlog
from sqlalchemy import delete, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.sql import func

from src.store.database import CONNECTIVITY_ERRORS
from src.store.models import ConversationLockRecord

logger = structlog.get_logger()


@dataclass(frozen=True)
class LockToken:
    key: str
    value: str
    backend: Literal["durable", "local"]


class LockManager:
    """Token-fenced lock with a durable backend and a local fallback."""

    def __init__(
        self,
        db_session_factory: async_sessionmaker | None,
        *,
        acquire_timeout_s: float = 2.0,
        stale_after_seconds: int = 300,
    ) -> None:
        self._db = db_session_factory
        self._acquire_timeout_s = acquire_timeout_s
        self._stale_after_seconds = stale_after_seconds
        self._local: dict[str, str] = {}
        self._cleanup: set[asyncio.Task] = set()

    async def acquire(self, key: str) -> LockToken | None:
        """Claim ``key``. Returns a token, or None when another turn holds it."""
        value = str(uuid.uuid4())

        if self._db is not None:
            try:
                claimed = await asyncio.wait_for(
                    self._claim_durable(key, value), timeout=self._acquire_timeout_s
                )
            except (TimeoutError, SQLAlchemyError, *CONNECTIVITY_ERRORS) as e:
                logger.warning(
                    "lock_backend_unavailable",
                    key=key,
                    error_type=type(e).__name__,
                    fallback="local",
                )
                self._forget_durable(key, value)
            else:
                if not claimed:
                    logger.info("lock_busy", key=key, backend="durable")
                    return None
                logger.debug("lock_acquired", key=key, backend="durable")
                return LockToken(key=key, value=value, backend="durable")

        if key in self._local:
            logger.info("lock_busy", key=key, backend="local")
            return None
        self._local[key] = value
        logger.debug("lock_acquired", key=key, backend="local")
        return LockToken(key=key, value=value, backend="local")

    async def release(self, key: str, token: LockToken) -> None:
        """Release ``key`` if ``token`` still holds it. Never raises."""
        if token.backend == "local":
            if self._local.get(key) == token.value:
                del self._local[key]
            return

        try:
            await self._release_durable(key, token.value)
        except Exception:
            logger.exception(
                "lock_release_failed",
                key=key,
                msg="Claim will be recovered once it goes stale",
            )
        else:
            logger.debug("lock_released", key=key)

    def _forget_durable(self, key: str, value: str) -> None:
        """Delete a durable claim that may have committed after the timeout fired."""
        task = asyncio.create_task(self._release_quietly(key, value))
        self._cleanup.add(task)
        task.add_done_callback(self._cleanup.discard)

    async def _release_quietly(self, key: str, value: str) -> None:
        try:
            await self._release_durable(key, value)
        except Exception as e:
            logger.debug("lock_cleanup_failed", key=key, error_type=type(e).__name__)

    async def _claim_durable(self, key: str, value: str) -> bool:
        assert self._db is not None
        async with self._db() as db:
            stmt = (
                pg_insert(ConversationLockRecord)
                .values(lock_key=key, lock_token=value, acquired_at=func.now())
                .on_conflict_do_update(
                    index_elements=["lock_key"],
                    set_={"lock_token": value, "acquired_at": func.now()},
                    where=ConversationLockRecord.acquired_at
                    < func.now() - text(f"interval '{self._stale_after_seconds} seconds'"),
                )
                .returning(ConversationLockRecord.lock_key)
            )
            result = await db.execute(stmt)
            claimed = result.scalar_one_or_none() is not None
            await db.commit()
            return claimed

    async def _release_durable(self, key: str, value: str) -> None:
        assert self._db is not None
        async with self._db() as db:
            await db.execute(
                delete(ConversationLockRecord).where(
                    ConversationLockRecord.lock_key == key,
                    ConversationLockRecord.lock_token == value,
                )
            )
            await db.commit()
