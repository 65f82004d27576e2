"""Draft invoices, either from explicit line items or from an agreement's
payment schedule (deposit, then each progress milestone, then holdback)."""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from sqlalchemy import select, text

from src.cil.schema import CreateInvoice
from src.domain.context import DispatchContext, DomainServices, HandlerResult, dollars
from src.infra.errors import ConflictError, NotFoundError
from src.ledger.writer import Mutation
from src.store.models import AgreementRecord, InvoiceRecord

TAX_RATES: dict[str, float] = {
    "HST_ON": 0.13,
    "HST_NB": 0.15,
    "GST_5": 0.05,
    "PST_BC": 0.12,
}


def tax_rate(code: str) -> float:
    return TAX_RATES.get(code, TAX_RATES["HST_ON"])


@dataclass(frozen=True)
class BillingSegment:
    invoice_kind: str
    amount_cents: int
    label: str | None = None


def next_billing_segment(
    agreement: AgreementRecord, billed: set[tuple[str, str | None]]
) -> BillingSegment | None:
    """Pick the agreement's next unbilled segment, or None when all are billed.

    ``billed`` holds ``(invoice_kind, milestone_label)`` of non-void invoices.
    """
    contract = agreement.contract_price_cents or 0

    if (agreement.deposit_cents or 0) > 0 and ("deposit", None) not in billed:
        return BillingSegment("deposit", agreement.deposit_cents)

    for milestone in agreement.payment_schedule or []:
        label = milestone.get("label")
        if ("progress", label) in billed:
            continue
        if milestone.get("amount_cents"):
            amount = int(milestone["amount_cents"])
        elif milestone.get("pct_of_contract"):
            amount = round(milestone["pct_of_contract"] / 100 * contract)
        else:
            continue
        if amount > 0:
            return BillingSegment("progress", amount, label)

    if (agreement.retainage_pct or 0) > 0 and ("holdback", "retainage") not in billed:
        amount = round(agreement.retainage_pct / 100 * contract)
        if amount > 0:
            return BillingSegment("holdback", amount, "retainage")
    return None


async def create_invoice(
    cil: CreateInvoice, ctx: DispatchContext, services: DomainServices
) -> HandlerResult:
    job = await services.resolver.resolve(ctx.tenant_id, cil.job, kind="job")

    if cil.agreement_id is not None and not cil.line_items:
        return await _invoice_from_agreement(cil, ctx, services, job.id, job.name)

    line_items = [item.model_dump(mode="json") for item in cil.line_items]
    subtotal = sum(item.total_cents for item in cil.line_items)
    return await _write_invoice(
        ctx,
        services,
        job_name=job.name,
        values={
            "job_id": job.id,
            "agreement_id": cil.agreement_id,
            "invoice_kind": cil.invoice_kind,
            "line_items": line_items,
            "due_date": cil.due_date,
        },
        subtotal_cents=subtotal,
        tax_code=cil.tax_code,
    )


async def _invoice_from_agreement(
    cil: CreateInvoice,
    ctx: DispatchContext,
    services: DomainServices,
    job_id: uuid.UUID,
    job_name: str,
) -> HandlerResult:
    async with services.db() as db:
        agreement = (
            await db.execute(
                select(AgreementRecord).where(
                    AgreementRecord.owner_id == ctx.tenant_id,
                    AgreementRecord.id == cil.agreement_id,
                )
            )
        ).scalar_one_or_none()
        if agreement is None:
            raise NotFoundError("Agreement not found")
        rows = (
            await db.execute(
                select(InvoiceRecord.invoice_kind, InvoiceRecord.milestone_label).where(
                    InvoiceRecord.owner_id == ctx.tenant_id,
                    InvoiceRecord.agreement_id == agreement.id,
                    InvoiceRecord.status != "void",
                )
            )
        ).all()

    billed = {(kind, label) for kind, label in rows}
    segment = next_billing_segment(agreement, billed)
    if segment is None:
        raise ConflictError("Nothing left to invoice on that agreement")

    return await _write_invoice(
        ctx,
        services,
        job_name=job_name,
        values={
            "job_id": agreement.job_id or job_id,
            "agreement_id": agreement.id,
            "invoice_kind": segment.invoice_kind,
            "milestone_label": segment.label,
            "line_items": [],
            "due_date": cil.due_date,
        },
        subtotal_cents=segment.amount_cents,
        tax_code=cil.tax_code,
    )


async def _write_invoice(
    ctx: DispatchContext,
    services: DomainServices,
    *,
    job_name: str,
    values: dict,
    subtotal_cents: int,
    tax_code: str,
) -> HandlerResult:
    tax_cents = round(subtotal_cents * tax_rate(tax_code))
    total_cents = subtotal_cents + tax_cents
    source_msg_id = ctx.source_msg_id

    result = await services.writer.write(
        Mutation(
            model=InvoiceRecord,
            values={
                **values,
                "owner_id": ctx.tenant_id,
                "status": "draft",
                "subtotal_cents": subtotal_cents,
                "tax_cents": tax_cents,
                "total_cents": total_cents,
                "tax_code": tax_code,
                "source_msg_id": source_msg_id,
            },
            action="create_invoice",
            tenant_id=ctx.tenant_id,
            conflict_columns=["owner_id", "source_msg_id"],
            conflict_where=text("source_msg_id IS NOT NULL"),
            details={"total_cents": total_cents, "invoice_kind": values["invoice_kind"]},
        ),
        ctx.idempotency_key,
    )
    if not result.inserted:
        return HandlerResult(summary="Already drafted that invoice.", inserted=False)

    kind = values["invoice_kind"]
    label = f" ({values['milestone_label']})" if values.get("milestone_label") else ""
    prefix = "Draft invoice" if kind == "standard" else f"Draft {kind} invoice"
    return HandlerResult(
        summary=f'{prefix} for "{job_name}": {dollars(total_cents)} ({tax_code}){label}.',
        data={"invoice_id": result.row_id, "total_cents": total_cents, "invoice_kind": kind},
    )
