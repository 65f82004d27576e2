"""Resolve loose textual references ("job 12", "#12", "Oak St re-roof", a UUID)
to canonical rows, optionally creating a draft job.

Precedence, first match wins:

1. canonical UUID shape: primary-key lookup only, never a name match;
2. ``#12`` or ``job 12``: job sequence number (jobs only), no name fallback;
3. case-insensitive exact name. Quotes and agreements match on their job's
   name, most recent first.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from typing import Literal

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.infra.errors import NotFoundError
from src.store.models import AgreementRecord, JobRecord, QuoteRecord

logger = structlog.get_logger()

RefKind = Literal["job", "quote", "agreement"]

_UUID = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
# "12", "#12", "job 12". The "job" word is only syntax in front of a number;
# "Job Site Trailer" is a name.
_JOB_NO = re.compile(r"^(?:job\s+)?#?(\d+)$", re.IGNORECASE)

CLOSED_STATUSES = ("closed", "done", "completed", "archived", "canceled", "cancelled")
_CREATE_ATTEMPTS = 3


@dataclass(frozen=True)
class ResolvedRef:
    kind: RefKind
    id: uuid.UUID
    name: str
    number: int | None = None


class ReferenceResolver:
    def __init__(self, db_session_factory: async_sessionmaker) -> None:
        self._db = db_session_factory

    async def resolve(
        self,
        tenant_id: str,
        ref: str | None,
        *,
        kind: RefKind = "job",
        allow_create: bool = False,
        default_name: str | None = None,
        source_msg_id: str | None = None,
    ) -> ResolvedRef:
        """Resolve ``ref`` for ``tenant_id``. Raises NotFoundError."""
        text = (ref or "").strip()

        if not text:
            if allow_create and kind == "job" and default_name:
                return await self.create_draft_job(
                    tenant_id, default_name, source_msg_id=source_msg_id
                )
            raise NotFoundError(f"No {kind} given")

        if _UUID.match(text):
            found = await self._by_id(tenant_id, uuid.UUID(text), kind)
            if found is None:
                raise NotFoundError(f"No {kind} with id {text}")
            return found

        if kind == "job":
            m = _JOB_NO.match(text)
            if m:
                found = await self._job_by_number(tenant_id, int(m.group(1)))
                if found is None:
                    raise NotFoundError(f"No job #{m.group(1)}")
                return found

        found = await self._by_name(tenant_id, text, kind)
        if found is not None:
            return found

        if allow_create and kind == "job":
            return await self.create_draft_job(tenant_id, text, source_msg_id=source_msg_id)
        raise NotFoundError(f"No {kind} named '{text}'")

    async def list_open_jobs(
        self, tenant_id: str, *, limit: int = 8, offset: int = 0
    ) -> list[ResolvedRef]:
        """Open jobs for a picker page: the active job first, then most recently updated."""
        async with self._db() as db:
            result = await db.execute(
                select(JobRecord)
                .where(
                    JobRecord.owner_id == tenant_id,
                    func.lower(func.coalesce(JobRecord.status, "open")).not_in(CLOSED_STATUSES),
                )
                .order_by(JobRecord.active.desc(), JobRecord.updated_at.desc(), JobRecord.job_no)
                .limit(limit)
                .offset(offset)
            )
            return [_job_ref(row) for row in result.scalars().all()]

    async def active_job(self, tenant_id: str) -> ResolvedRef | None:
        async with self._db() as db:
            result = await db.execute(
                select(JobRecord)
                .where(JobRecord.owner_id == tenant_id, JobRecord.active.is_(True))
                .order_by(JobRecord.updated_at.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
        return _job_ref(row) if row is not None else None

    async def create_draft_job(
        self, tenant_id: str, name: str, *, source_msg_id: str | None = None
    ) -> ResolvedRef:
        """Create a job with the next sequence number for the tenant.

        Two concurrent creators can pick the same number; the unique
        ``(owner_id, job_no)`` constraint rejects one and it retries.
        """
        for attempt in range(1, _CREATE_ATTEMPTS + 1):
            async with self._db() as db:
                next_no = (
                    await db.execute(
                        select(func.coalesce(func.max(JobRecord.job_no), 0) + 1).where(
                            JobRecord.owner_id == tenant_id
                        )
                    )
                ).scalar_one()
                job = JobRecord(
                    owner_id=tenant_id,
                    job_no=next_no,
                    name=name,
                    status="open",
                    active=False,
                    source_msg_id=source_msg_id,
                )
                db.add(job)
                try:
                    await db.commit()
                except IntegrityError:
                    await db.rollback()
                    logger.info(
                        "job_number_collision", tenant_id=tenant_id, job_no=next_no, attempt=attempt
                    )
                    continue
            logger.info("job_draft_created", tenant_id=tenant_id, job_no=next_no, name=name)
            return _job_ref(job)

        raise NotFoundError(f"Could not allocate a job number for '{name}'")

    async def _by_id(self, tenant_id: str, ref_id: uuid.UUID, kind: RefKind) -> ResolvedRef | None:
        async with self._db() as db:
            if kind == "job":
                row = (
                    await db.execute(
                        select(JobRecord).where(
                            JobRecord.owner_id == tenant_id, JobRecord.id == ref_id
                        )
                    )
                ).scalar_one_or_none()
                return _job_ref(row) if row is not None else None

            model = QuoteRecord if kind == "quote" else AgreementRecord
            found = (
                await db.execute(
                    select(model.id, JobRecord.name)
                    .join(JobRecord, JobRecord.id == model.job_id)
                    .where(model.owner_id == tenant_id, model.id == ref_id)
                )
            ).first()
        return ResolvedRef(kind=kind, id=found[0], name=found[1]) if found else None

    async def _job_by_number(self, tenant_id: str, job_no: int) -> ResolvedRef | None:
        async with self._db() as db:
            row = (
                await db.execute(
                    select(JobRecord).where(
                        JobRecord.owner_id == tenant_id, JobRecord.job_no == job_no
                    )
                )
            ).scalar_one_or_none()
        return _job_ref(row) if row is not None else None

    async def _by_name(self, tenant_id: str, name: str, kind: RefKind) -> ResolvedRef | None:
        async with self._db() as db:
            if kind == "job":
                row = (
                    await db.execute(
                        select(JobRecord)
                        .where(
                            JobRecord.owner_id == tenant_id,
                            func.lower(JobRecord.name) == name.lower(),
                        )
                        .order_by(JobRecord.active.desc(), JobRecord.updated_at.desc())
                        .limit(1)
                    )
                ).scalar_one_or_none()
                return _job_ref(row) if row is not None else None

            model = QuoteRecord if kind == "quote" else AgreementRecord
            found = (
                await db.execute(
                    select(model.id, JobRecord.name)
                    .join(JobRecord, JobRecord.id == model.job_id)
                    .where(model.owner_id == tenant_id, func.lower(JobRecord.name) == name.lower())
                    .order_by(model.created_at.desc())
                    .limit(1)
                )
            ).first()
        return ResolvedRef(kind=kind, id=found[0], name=found[1]) if found else None


def _job_ref(row: JobRecord) -> ResolvedRef:
    return ResolvedRef(kind="job", id=row.id, name=row.name, number=row.job_no)
