"""Fixed dispatch table from CIL type to its one domain handler.

``dispatch`` never raises: every handler failure is converted to a typed
CommandError on the returned DispatchResult so the conversation layer can
always answer the user.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from src.cil.schema import CILBase
from src.domain.agreements import create_agreement
from src.domain.change_orders import create_change_order
from src.domain.context import DispatchContext, DomainServices, HandlerResult
from src.domain.invoices import create_invoice
from src.domain.jobs import create_job, start_job, update_job_status
from src.domain.leads import create_lead
from src.domain.pricing import add_pricing_item, delete_pricing_item, update_pricing_item
from src.domain.quotes import create_quote
from src.domain.timeclock import clock
from src.domain.transactions import log_expense, log_revenue
from src.infra.errors import (
    CommandError,
    DependencyTimeoutError,
    UnavailableError,
)
from src.store.database import CONNECTIVITY_ERRORS

logger = structlog.get_logger()

Handler = Callable[[Any, DispatchContext, DomainServices], Awaitable[HandlerResult]]

HANDLERS: dict[str, Handler] = {
    "LogExpense": log_expense,
    "LogRevenue": log_revenue,
    "CreateLead": create_lead,
    "CreateQuote": create_quote,
    "CreateAgreement": create_agreement,
    "CreateInvoice": create_invoice,
    "CreateChangeOrder": create_change_order,
    "AddPricingItem": add_pricing_item,
    "UpdatePricingItem": update_pricing_item,
    "DeletePricingItem": delete_pricing_item,
    "CreateJob": create_job,
    "StartJob": start_job,
    "UpdateJobStatus": update_job_status,
    "Clock": clock,
}


@dataclass(frozen=True)
class DispatchResult:
    ok: bool
    type: str
    summary: str = ""
    inserted: bool = False
    data: dict[str, Any] = field(default_factory=dict)
    error: CommandError | None = None


class CILRouter:
    def __init__(
        self, services: DomainServices, handlers: dict[str, Handler] | None = None
    ) -> None:
        self._services = services
        self._handlers = handlers if handlers is not None else HANDLERS

    async def dispatch(self, cil: CILBase, ctx: DispatchContext) -> DispatchResult:
        cil_type = cil.type  # type: ignore[attr-defined]
        handler = self._handlers.get(cil_type)
        if handler is None:
            return DispatchResult(
                ok=False,
                type=cil_type,
                error=CommandError(f"No handler for {cil_type}", code="UNSUPPORTED"),
            )

        try:
            result = await handler(cil, ctx, self._services)
        except CommandError as e:
            logger.info(
                "cil_dispatch_rejected",
                type=cil_type,
                code=e.code,
                tenant_id=ctx.tenant_id,
                key=ctx.idempotency_key,
                error=str(e),
            )
            return DispatchResult(ok=False, type=cil_type, error=e)
        except TimeoutError:
            logger.warning("cil_dispatch_timeout", type=cil_type, key=ctx.idempotency_key)
            return DispatchResult(
                ok=False,
                type=cil_type,
                error=DependencyTimeoutError(f"{cil_type} timed out"),
            )
        except CONNECTIVITY_ERRORS as e:
            logger.warning(
                "cil_dispatch_unavailable", type=cil_type, key=ctx.idempotency_key, error=str(e)
            )
            return DispatchResult(
                ok=False,
                type=cil_type,
                error=UnavailableError(f"Database unavailable during {cil_type}"),
            )
        except Exception:
            logger.exception(
                "cil_dispatch_failed",
                type=cil_type,
                tenant_id=ctx.tenant_id,
                key=ctx.idempotency_key,
            )
            return DispatchResult(
                ok=False,
                type=cil_type,
                error=CommandError(f"{cil_type} failed", code="INTERNAL_ERROR"),
            )

        logger.info(
            "cil_dispatched",
            type=cil_type,
            tenant_id=ctx.tenant_id,
            key=ctx.idempotency_key,
            inserted=result.inserted,
        )
        return DispatchResult(
            ok=True,
            type=cil_type,
            summary=result.summary,
            inserted=result.inserted,
            data=result.data,
        )
