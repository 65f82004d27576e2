"""Time clock punches.

Each punch is one ``time_entries`` row, keyed natively on the source message.
Shift edges are checked against the crew member's last in/out punch: clocking
in twice, or punching anything while clocked out, is a conflict.
"""

from __future__ import annotations

import datetime as dt

from sqlalchemy import select, text

from src.cil.schema import Clock
from src.domain.context import DispatchContext, DomainServices, HandlerResult
from src.infra.errors import ConflictError
from src.ledger.writer import Mutation
from src.store.models import TimeEntryRecord

_NATIVE_KEY = ["owner_id", "source_msg_id"]
_NATIVE_WHERE = text("source_msg_id IS NOT NULL")

_VERBS = {
    "in": "clocked in",
    "out": "clocked out",
    "break_start": "started a break",
    "break_stop": "ended the break",
    "lunch_start": "started lunch",
    "lunch_stop": "ended lunch",
    "drive_start": "started driving",
    "drive_stop": "stopped driving",
}


async def clock(cil: Clock, ctx: DispatchContext, services: DomainServices) -> HandlerResult:
    await services.audit.ensure_not_duplicate(ctx.tenant_id, ctx.idempotency_key)
    employee = (cil.target_user or "").strip() or ctx.actor_identity

    on_shift = await _last_shift_punch(services, ctx.tenant_id, employee) == "in"
    if cil.action == "in" and on_shift:
        raise ConflictError(f"{employee} is already clocked in", code="CONFLICT")
    if cil.action != "in" and not on_shift:
        raise ConflictError(f"{employee} is not clocked in", code="CONFLICT")

    if cil.job:
        job = await services.resolver.resolve(ctx.tenant_id, cil.job, kind="job")
    else:
        job = await services.resolver.active_job(ctx.tenant_id)

    punched_at = cil.at or dt.datetime.now(dt.UTC)
    result = await services.writer.write(
        Mutation(
            model=TimeEntryRecord,
            values={
                "owner_id": ctx.tenant_id,
                "employee_name": employee,
                "action": cil.action,
                "punched_at": punched_at,
                "job_id": job.id if job else None,
                "job_name": job.name if job else None,
                "source_msg_id": ctx.source_msg_id or cil.source_msg_id,
            },
            action=f"clock_{cil.action}",
            tenant_id=ctx.tenant_id,
            conflict_columns=_NATIVE_KEY,
            conflict_where=_NATIVE_WHERE,
            details={"employee": employee, "job_id": str(job.id) if job else None},
        ),
        ctx.idempotency_key,
    )
    if not result.inserted:
        return HandlerResult(summary="Already recorded that punch.", inserted=False)

    on_job = f" on {job.name}" if job else ""
    return HandlerResult(
        summary=f"{employee} {_VERBS[cil.action]}{on_job} at {punched_at:%H:%M}.",
        data={"time_entry_id": result.row_id, "job_id": job.id if job else None},
    )


async def _last_shift_punch(services: DomainServices, tenant_id: str, employee: str) -> str | None:
    async with services.db() as db:
        return (
            await db.execute(
                select(TimeEntryRecord.action)
                .where(
                    TimeEntryRecord.owner_id == tenant_id,
                    TimeEntryRecord.employee_name == employee,
                    TimeEntryRecord.action.in_(("in", "out")),
                )
                .order_by(TimeEntryRecord.punched_at.desc(), TimeEntryRecord.id.desc())
                .limit(1)
            )
        ).scalar_one_or_none()
