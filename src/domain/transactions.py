from __future__ import annotations

from datetime import date
from typing import Any

from sqlalchemy import text

from src.cil.schema import LogExpense, LogRevenue
from src.domain.context import DispatchContext, DomainServices, HandlerResult, dollars
from src.extract.base import suggest_category_fail_open
from src.ledger.writer import Mutation
from src.store.models import TransactionRecord

_NATIVE_KEY = ["owner_id", "kind", "source_msg_id"]
_NATIVE_WHERE = text("source_msg_id IS NOT NULL")


async def log_expense(
    cil: LogExpense, ctx: DispatchContext, services: DomainServices
) -> HandlerResult:
    store = services.vendor_normalizer.normalize(cil.store) or "Unknown Store"
    return await _log_transaction(
        "expense",
        cil,
        ctx,
        services,
        description=cil.item,
        source=store,
        category_fields={"item": cil.item, "store": store, "memo": cil.memo},
    )


async def log_revenue(
    cil: LogRevenue, ctx: DispatchContext, services: DomainServices
) -> HandlerResult:
    payer = (cil.source or "").strip() or "Unknown"
    return await _log_transaction(
        "revenue",
        cil,
        ctx,
        services,
        description=cil.description,
        source=payer,
        category_fields={"description": cil.description, "payer": payer, "memo": cil.memo},
    )


async def _log_transaction(
    kind: str,
    cil: LogExpense | LogRevenue,
    ctx: DispatchContext,
    services: DomainServices,
    *,
    description: str,
    source: str,
    category_fields: dict[str, Any],
) -> HandlerResult:
    job_id = None
    job_name = None
    if cil.job:
        # A job named in a transaction must exist; never created from here.
        job = await services.resolver.resolve(ctx.tenant_id, cil.job, kind="job")
        job_id, job_name = job.id, job.name

    category = cil.category or await suggest_category_fail_open(
        services.category_suggester,
        kind,
        category_fields,
        timeout_s=services.category_timeout_s,
    )

    media_url = cil.media_url or (ctx.media.url if ctx.media else None)
    media_type = ctx.media.content_type if ctx.media else None
    source_msg_id = ctx.source_msg_id or cil.source_msg_id

    result = await services.writer.write(
        Mutation(
            model=TransactionRecord,
            values={
                "owner_id": ctx.tenant_id,
                "kind": kind,
                "date": cil.date or date.today(),
                "description": description,
                "amount_cents": cil.amount_cents,
                "source": source,
                "job_id": job_id,
                "job_name": job_name,
                "category": category,
                "user_name": ctx.actor_identity,
                "memo": cil.memo,
                "source_msg_id": source_msg_id,
                "media_url": media_url,
                "media_type": media_type,
            },
            action=f"log_{kind}",
            tenant_id=ctx.tenant_id,
            conflict_columns=_NATIVE_KEY,
            conflict_where=_NATIVE_WHERE,
            details={"amount_cents": cil.amount_cents, "job_id": str(job_id) if job_id else None},
        ),
        ctx.idempotency_key,
    )

    if not result.inserted:
        return HandlerResult(
            summary=f"Already logged that {kind} (duplicate message).", inserted=False
        )

    on_job = f" on {job_name}" if job_name else ""
    if kind == "expense":
        summary = f"Expense logged: {dollars(cil.amount_cents)} for {description}{on_job}."
    else:
        summary = f"Revenue logged: {dollars(cil.amount_cents)} from {source}{on_job}."
    return HandlerResult(
        summary=summary,
        data={"transaction_id": result.row_id, "job_id": job_id, "category": category},
    )

