from __future__ import annotations

from sqlalchemy import select

from src.cil.schema import CreateChangeOrder
from src.domain.context import DispatchContext, DomainServices, HandlerResult, dollars
from src.infra.errors import ConflictError, NotFoundError
from src.ledger.writer import Mutation
from src.store.models import AgreementRecord, ChangeOrderRecord

_AMENDABLE = ("draft", "signed")


async def create_change_order(
    cil: CreateChangeOrder, ctx: DispatchContext, services: DomainServices
) -> HandlerResult:
    await services.audit.ensure_not_duplicate(ctx.tenant_id, ctx.idempotency_key)

    job = await services.resolver.resolve(ctx.tenant_id, cil.job, kind="job")

    if cil.agreement_id is not None:
        async with services.db() as db:
            status = (
                await db.execute(
                    select(AgreementRecord.status).where(
                        AgreementRecord.owner_id == ctx.tenant_id,
                        AgreementRecord.id == cil.agreement_id,
                    )
                )
            ).scalar_one_or_none()
        if status is None:
            raise NotFoundError("Agreement not found")
        if status not in _AMENDABLE:
            raise ConflictError(f"Agreement is {status}; change orders need a draft or signed one")

    result = await services.writer.write(
        Mutation(
            model=ChangeOrderRecord,
            values={
                "owner_id": ctx.tenant_id,
                "job_id": job.id,
                "agreement_id": cil.agreement_id,
                "description": cil.description,
                "amount_cents": cil.amount_cents,
                "line_items": [item.model_dump(mode="json") for item in cil.line_items],
                "status": "draft",
            },
            action="create_change_order",
            tenant_id=ctx.tenant_id,
            details={"job_id": str(job.id), "amount_cents": cil.amount_cents},
        ),
        ctx.idempotency_key,
    )
    if not result.inserted:
        return HandlerResult(summary="Already drafted that change order.", inserted=False)

    return HandlerResult(
        summary=(
            f'Change order drafted for job "{job.name}" for {dollars(cil.amount_cents)}.'
        ),
        data={"change_order_id": result.row_id, "job_id": job.id},
    )
