from __future__ import annotations

from src.cil.schema import CreateQuote
from src.domain.context import DispatchContext, DomainServices, HandlerResult, dollars
from src.ledger.writer import Mutation
from src.store.models import QuoteRecord


async def create_quote(
    cil: CreateQuote, ctx: DispatchContext, services: DomainServices
) -> HandlerResult:
    job = await services.resolver.resolve(ctx.tenant_id, cil.job, kind="job")

    total_cents = cil.total_cents
    if total_cents is None:
        total_cents = sum(item.total_cents for item in cil.line_items)

    result = await services.writer.write(
        Mutation(
            model=QuoteRecord,
            values={
                "owner_id": ctx.tenant_id,
                "job_id": job.id,
                "line_items": [item.model_dump(mode="json") for item in cil.line_items],
                "description": cil.description,
                "total_cents": total_cents,
                "status": "draft",
            },
            action="create_quote",
            tenant_id=ctx.tenant_id,
            details={"job_id": str(job.id), "total_cents": total_cents},
        ),
        ctx.idempotency_key,
    )
    if not result.inserted:
        return HandlerResult(summary="Already drafted that quote.", inserted=False)

    return HandlerResult(
        summary=f'Quote drafted for job "{job.name}" (total {dollars(total_cents)}).',
        data={"quote_id": result.row_id, "job_id": job.id, "total_cents": total_cents},
    )
