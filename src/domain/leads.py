from __future__ import annotations

from src.cil.schema import CreateLead
from src.domain.context import DispatchContext, DomainServices, HandlerResult
from src.ledger.writer import Mutation
from src.store.models import LeadRecord


async def create_lead(
    cil: CreateLead, ctx: DispatchContext, services: DomainServices
) -> HandlerResult:
    """Record a lead, attached to the named job or to a new "<customer> - Lead" job."""
    # Advisory: avoids creating a draft job for a redelivered message.
    # The writer's audit constraint is what actually guarantees exactly-once.
    await services.audit.ensure_not_duplicate(ctx.tenant_id, ctx.idempotency_key)

    job = await services.resolver.resolve(
        ctx.tenant_id,
        cil.job,
        kind="job",
        allow_create=True,
        default_name=f"{cil.customer.name} - Lead",
        source_msg_id=ctx.source_msg_id,
    )

    result = await services.writer.write(
        Mutation(
            model=LeadRecord,
            values={
                "owner_id": ctx.tenant_id,
                "job_id": job.id,
                "customer_name": cil.customer.name,
                "customer_phone": cil.customer.phone,
                "customer_email": cil.customer.email,
                "customer_address": cil.customer.address,
                "notes": cil.notes,
                "source_channel": ctx.actor_identity.split(":", 1)[0]
                if ":" in ctx.actor_identity
                else "whatsapp",
            },
            action="create_lead",
            tenant_id=ctx.tenant_id,
            details={"job_id": str(job.id)},
        ),
        ctx.idempotency_key,
    )
    if not result.inserted:
        return HandlerResult(summary="Already recorded that lead.", inserted=False)

    return HandlerResult(
        summary=f'New lead created for {cil.customer.name} and attached to job "{job.name}".',
        data={"lead_id": result.row_id, "job_id": job.id},
    )
