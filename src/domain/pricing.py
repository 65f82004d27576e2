from __future__ import annotations

from sqlalchemy import delete, update

from src.cil.schema import AddPricingItem, DeletePricingItem, UpdatePricingItem
from src.domain.context import DispatchContext, DomainServices, HandlerResult, dollars
from src.infra.errors import NotFoundError
from src.ledger.writer import Mutation
from src.store.models import PricingItemRecord


async def add_pricing_item(
    cil: AddPricingItem, ctx: DispatchContext, services: DomainServices
) -> HandlerResult:
    result = await services.writer.write(
        Mutation(
            model=PricingItemRecord,
            values={
                "owner_id": ctx.tenant_id,
                "item_name": cil.item_name,
                "unit": cil.unit,
                "unit_cost_cents": cil.unit_cost_cents,
                "kind": cil.kind,
            },
            action="add_pricing_item",
            tenant_id=ctx.tenant_id,
            conflict_columns=["owner_id", "item_name"],
            details={"item_name": cil.item_name},
        ),
        ctx.idempotency_key,
    )
    if not result.inserted:
        return HandlerResult(
            summary=f"'{cil.item_name}' is already in your price list.", inserted=False
        )
    return HandlerResult(
        summary=f"Added '{cil.item_name}' @ {dollars(cil.unit_cost_cents)}/{cil.unit}.",
        data={"pricing_item_id": result.row_id},
    )


async def update_pricing_item(
    cil: UpdatePricingItem, ctx: DispatchContext, services: DomainServices
) -> HandlerResult:
    result = await services.writer.apply(
        ctx.tenant_id,
        ctx.idempotency_key,
        "update_pricing_item",
        update(PricingItemRecord)
        .where(
            PricingItemRecord.owner_id == ctx.tenant_id,
            PricingItemRecord.item_name == cil.item_name,
        )
        .values(unit_cost_cents=cil.unit_cost_cents)
        .returning(PricingItemRecord.id),
        {"item_name": cil.item_name, "unit_cost_cents": cil.unit_cost_cents},
    )
    if result.duplicate:
        return HandlerResult(summary="Already applied that price change.", inserted=False)
    if not result.inserted:
        raise NotFoundError(f"'{cil.item_name}' is not in your price list")
    return HandlerResult(
        summary=f"Updated '{cil.item_name}' to {dollars(cil.unit_cost_cents)}.",
        data={"pricing_item_id": result.row_id},
    )


async def delete_pricing_item(
    cil: DeletePricingItem, ctx: DispatchContext, services: DomainServices
) -> HandlerResult:
    result = await services.writer.apply(
        ctx.tenant_id,
        ctx.idempotency_key,
        "delete_pricing_item",
        delete(PricingItemRecord)
        .where(
            PricingItemRecord.owner_id == ctx.tenant_id,
            PricingItemRecord.item_name == cil.item_name,
        )
        .returning(PricingItemRecord.id),
        {"item_name": cil.item_name},
    )
    if result.duplicate:
        return HandlerResult(summary="Already removed that item.", inserted=False)
    if not result.inserted:
        raise NotFoundError(f"'{cil.item_name}' is not in your price list")
    return HandlerResult(summary=f"Deleted '{cil.item_name}'.", data={"pricing_item_id": result.row_id})
