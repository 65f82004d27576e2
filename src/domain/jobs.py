"""Job lifecycle: create, start, pause, resume, finish.

At most one job per tenant is active. Expenses and payments that name no job
are booked to it, and clock punches without a job land on it.
"""

from __future__ import annotations

import uuid

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.sql.dml import Update

from src.cil.schema import CreateJob, StartJob, UpdateJobStatus
from src.domain.context import DispatchContext, DomainServices, HandlerResult, dollars
from src.domain.resolver import CLOSED_STATUSES, ResolvedRef
from src.infra.errors import ConflictError, NotFoundError
from src.store.models import JobRecord, TransactionRecord

_STATUS_AFTER = {"pause": "paused", "resume": "open", "finish": "closed"}


def activate_statement(tenant_id: str, job_id: uuid.UUID) -> Update:
    """``job_id`` becomes the tenant's only active job, reopened if it was paused or closed."""
    return (
        update(JobRecord)
        .where(
            JobRecord.owner_id == tenant_id,
            or_(JobRecord.id == job_id, JobRecord.active.is_(True)),
        )
        .values(
            active=JobRecord.id == job_id,
            status=case((JobRecord.id == job_id, "open"), else_=JobRecord.status),
        )
        .returning(JobRecord.id)
    )


async def create_job(cil: CreateJob, ctx: DispatchContext, services: DomainServices) -> HandlerResult:
    # Advisory, as for leads: a redelivered message must not allocate a second job number.
    await services.audit.ensure_not_duplicate(ctx.tenant_id, ctx.idempotency_key)
    job = await services.resolver.create_draft_job(
        ctx.tenant_id, cil.name.strip().strip("\"'").strip(), source_msg_id=ctx.source_msg_id
    )
    return await _make_active(job, "create_job", ctx, services)


async def start_job(cil: StartJob, ctx: DispatchContext, services: DomainServices) -> HandlerResult:
    await services.audit.ensure_not_duplicate(ctx.tenant_id, ctx.idempotency_key)
    job = await services.resolver.resolve(
        ctx.tenant_id,
        cil.job,
        kind="job",
        allow_create=True,
        source_msg_id=ctx.source_msg_id,
    )
    return await _make_active(job, "start_job", ctx, services)


async def update_job_status(
    cil: UpdateJobStatus, ctx: DispatchContext, services: DomainServices
) -> HandlerResult:
    await services.audit.ensure_not_duplicate(ctx.tenant_id, ctx.idempotency_key)
    job = await services.resolver.resolve(ctx.tenant_id, cil.job, kind="job")

    async with services.db() as db:
        status = (
            await db.execute(select(JobRecord.status).where(JobRecord.id == job.id))
        ).scalar_one()
    if (status or "open").lower() in CLOSED_STATUSES:
        raise ConflictError(f"{_label(job)} is already closed", code="CONFLICT")

    if cil.action == "resume":
        stmt = activate_statement(ctx.tenant_id, job.id)
    else:
        stmt = (
            update(JobRecord)
            .where(JobRecord.owner_id == ctx.tenant_id, JobRecord.id == job.id)
            .values(status=_STATUS_AFTER[cil.action], active=False)
            .returning(JobRecord.id)
        )

    result = await services.writer.apply(
        ctx.tenant_id,
        ctx.idempotency_key,
        f"{cil.action}_job",
        stmt,
        {"job_id": str(job.id), "status": _STATUS_AFTER[cil.action]},
    )
    if result.duplicate:
        return HandlerResult(summary=f"Already did that for {_label(job)}.", inserted=False)
    if not result.inserted:
        raise NotFoundError(f"No job #{job.number}")

    match cil.action:
        case "pause":
            summary = f"Paused {_label(job)}."
        case "resume":
            summary = f"Resumed {_label(job)}. It is now the active job."
        case _:
            summary = f"Finished {_label(job)}. {await _totals_line(services, ctx.tenant_id, job)}"
    return HandlerResult(summary=summary, data={"job_id": job.id, "status": _STATUS_AFTER[cil.action]})


async def _make_active(
    job: ResolvedRef, action: str, ctx: DispatchContext, services: DomainServices
) -> HandlerResult:
    result = await services.writer.apply(
        ctx.tenant_id,
        ctx.idempotency_key,
        action,
        activate_statement(ctx.tenant_id, job.id),
        {"job_id": str(job.id), "job_no": job.number},
    )
    if result.duplicate:
        return HandlerResult(summary=f"{_label(job)} is already active.", inserted=False)
    if not result.inserted:
        raise NotFoundError(f"No job #{job.number}")
    return HandlerResult(
        summary=f"{_label(job)} is now active. Expenses, payments and clock-ins with no job go to it.",
        data={"job_id": job.id, "job_no": job.number},
    )


async def _totals_line(services: DomainServices, tenant_id: str, job: ResolvedRef) -> str:
    async with services.db() as db:
        rows = (
            await db.execute(
                select(TransactionRecord.kind, func.coalesce(func.sum(TransactionRecord.amount_cents), 0))
                .where(TransactionRecord.owner_id == tenant_id, TransactionRecord.job_id == job.id)
                .group_by(TransactionRecord.kind)
            )
        ).all()
    totals = {kind: int(total) for kind, total in rows}
    spent = totals.get("expense", 0)
    earned = totals.get("revenue", 0)
    profit = earned - spent
    sign = "-" if profit < 0 else ""
    return (
        f"Expenses {dollars(spent)}, revenue {dollars(earned)}, "
        f"profit {sign}{dollars(abs(profit))}."
    )


def _label(job: ResolvedRef) -> str:
    return f"Job #{job.number} ({job.name})" if job.number is not None else f'"{job.name}"'
