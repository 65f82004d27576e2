from __future__ import annotations

from sqlalchemy import select

from src.cil.schema import CreateAgreement
from src.domain.context import DispatchContext, DomainServices, HandlerResult
from src.infra.errors import ConflictError, NotFoundError
from src.ledger.writer import Mutation
from src.store.models import AgreementRecord, QuoteRecord


async def create_agreement(
    cil: CreateAgreement, ctx: DispatchContext, services: DomainServices
) -> HandlerResult:
    """Draft an agreement for a job, optionally from an accepted quote."""
    await services.audit.ensure_not_duplicate(ctx.tenant_id, ctx.idempotency_key)

    job = await services.resolver.resolve(ctx.tenant_id, cil.job, kind="job")

    if cil.quote_id is not None:
        async with services.db() as db:
            status = (
                await db.execute(
                    select(QuoteRecord.status).where(
                        QuoteRecord.owner_id == ctx.tenant_id, QuoteRecord.id == cil.quote_id
                    )
                )
            ).scalar_one_or_none()
        if status is None:
            raise NotFoundError("Quote not found")
        if status != "accepted":
            raise ConflictError(f"Quote not accepted yet (status: {status})")

    result = await services.writer.write(
        Mutation(
            model=AgreementRecord,
            values={
                "owner_id": ctx.tenant_id,
                "job_id": job.id,
                "quote_id": cil.quote_id,
                "terms": cil.terms,
                "contract_price_cents": cil.contract_price_cents,
                "deposit_cents": cil.deposit_cents or 0,
                "retainage_pct": cil.retainage_pct,
                "retainage_release_days": cil.retainage_release_days,
                "payment_schedule": [
                    m.model_dump(mode="json", exclude_none=True) for m in cil.payment_schedule
                ],
                "start_date": cil.start_date,
                "sig_required": cil.sig_required,
                "status": "draft",
            },
            action="create_agreement",
            tenant_id=ctx.tenant_id,
            details={"job_id": str(job.id)},
        ),
        ctx.idempotency_key,
    )
    if not result.inserted:
        return HandlerResult(summary="Already drafted that agreement.", inserted=False)

    return HandlerResult(
        summary=f'Agreement drafted for job "{job.name}".',
        data={"agreement_id": result.row_id, "job_id": job.id},
    )
