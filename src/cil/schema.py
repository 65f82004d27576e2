"""CIL: the canonical command envelope every conversational input is reduced to.

A CIL instance is the only thing domain handlers accept. ``validate_cil`` turns
a raw dict (from an extractor, a pending draft, or a test) into one of the
variants below or raises CILValidationError listing each bad field.
"""

from __future__ import annotations

import datetime as dt
import uuid
from typing import Annotated, Any, ClassVar, Literal, get_args

from pydantic import (
    AwareDatetime,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    model_validator,
)

from src.infra.errors import CILValidationError, FieldIssue

# Minor currency units. Strict: 84.12 or "8412" are rejected, not coerced.
Cents = Annotated[int, Field(strict=True, ge=0)]
PositiveCents = Annotated[int, Field(strict=True, gt=0)]
NonEmpty = Annotated[str, Field(min_length=1)]

JobPolicy = Literal["none", "optional", "prompt", "required"]
TaxCode = Literal["HST_ON", "HST_NB", "GST_5", "PST_BC"]


class LineItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: NonEmpty
    qty: float = Field(gt=0)
    unit: str | None = None
    unit_price_cents: Cents

    @property
    def total_cents(self) -> int:
        return round(self.qty * self.unit_price_cents)


class Customer(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: NonEmpty
    phone: str | None = None
    email: Annotated[str, Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")] | None = None
    address: str | None = None


class Milestone(BaseModel):
    model_config = ConfigDict(extra="ignore")

    label: NonEmpty
    amount_cents: Cents | None = None
    pct_of_contract: Annotated[float, Field(ge=0, le=100)] | None = None
    due_event: (
        Literal[
            "on_acceptance",
            "before_start",
            "on_start",
            "on_milestone",
            "on_substantial_completion",
            "on_completion",
            "on_holdback_release",
        ]
        | None
    ) = None
    due_days_after_event: int | None = None
    notes: str | None = None


class CILBase(BaseModel):
    """Fields every variant carries."""

    model_config = ConfigDict(extra="ignore")

    # How the variant treats a missing job reference.
    job_policy: ClassVar[JobPolicy] = "none"
    # Whether an unknown job name may create a draft job.
    allow_create_job: ClassVar[bool] = False

    tenant_id: NonEmpty
    idempotency_key: NonEmpty
    source_msg_id: str | None = None
    actor_phone: str | None = None
    media_url: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _default_idempotency_key(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("idempotency_key") and data.get("source_msg_id"):
            data = {**data, "idempotency_key": data["source_msg_id"]}
        return data


class LogExpense(CILBase):
    job_policy: ClassVar[JobPolicy] = "prompt"

    type: Literal["LogExpense"]
    job: str | None = None
    item: NonEmpty
    amount_cents: PositiveCents
    store: str | None = None
    date: dt.date | None = None
    category: str | None = None
    memo: str | None = None


class LogRevenue(CILBase):
    job_policy: ClassVar[JobPolicy] = "prompt"

    type: Literal["LogRevenue"]
    job: str | None = None
    description: NonEmpty
    amount_cents: PositiveCents
    # Payer; optional because many payments arrive as "got paid 500".
    source: str | None = None
    date: dt.date | None = None
    category: str | None = None
    memo: str | None = None


class CreateLead(CILBase):
    job_policy: ClassVar[JobPolicy] = "optional"
    allow_create_job: ClassVar[bool] = True

    type: Literal["CreateLead"]
    job: str | None = None
    customer: Customer
    notes: str | None = None


class CreateQuote(CILBase):
    job_policy: ClassVar[JobPolicy] = "required"

    type: Literal["CreateQuote"]
    job: NonEmpty
    line_items: list[LineItem] = Field(default_factory=list)
    description: str | None = None
    total_cents: Cents | None = None


class CreateAgreement(CILBase):
    job_policy: ClassVar[JobPolicy] = "required"

    type: Literal["CreateAgreement"]
    job: NonEmpty
    quote_id: uuid.UUID | None = None
    terms: str | None = None
    contract_price_cents: Cents | None = None
    deposit_cents: Cents | None = None
    retainage_pct: Annotated[float, Field(ge=0, le=20)] | None = None
    retainage_release_days: int | None = None
    payment_schedule: list[Milestone] = Field(default_factory=list)
    start_date: dt.date | None = None
    sig_required: bool = True


class CreateInvoice(CILBase):
    job_policy: ClassVar[JobPolicy] = "required"

    type: Literal["CreateInvoice"]
    job: NonEmpty
    agreement_id: uuid.UUID | None = None
    line_items: list[LineItem] = Field(default_factory=list)
    tax_code: TaxCode = "HST_ON"
    due_date: dt.date | None = None
    invoice_kind: Literal["standard", "deposit", "progress", "holdback"] = "standard"


class CreateChangeOrder(CILBase):
    job_policy: ClassVar[JobPolicy] = "required"

    type: Literal["CreateChangeOrder"]
    job: NonEmpty
    agreement_id: uuid.UUID | None = None
    description: NonEmpty
    amount_cents: Cents
    line_items: list[LineItem] = Field(default_factory=list)


class AddPricingItem(CILBase):
    type: Literal["AddPricingItem"]
    item_name: NonEmpty
    unit: str = "each"
    unit_cost_cents: Cents
    kind: str = "material"


class UpdatePricingItem(CILBase):
    type: Literal["UpdatePricingItem"]
    item_name: NonEmpty
    unit_cost_cents: Cents


class DeletePricingItem(CILBase):
    type: Literal["DeletePricingItem"]
    item_name: NonEmpty


class CreateJob(CILBase):
    type: Literal["CreateJob"]
    name: Annotated[str, Field(min_length=2)]


class StartJob(CILBase):
    """Make a job the active one. Starting a job that does not exist creates it."""

    job_policy: ClassVar[JobPolicy] = "required"
    allow_create_job: ClassVar[bool] = True

    type: Literal["StartJob"]
    job: NonEmpty


class UpdateJobStatus(CILBase):
    job_policy: ClassVar[JobPolicy] = "required"

    type: Literal["UpdateJobStatus"]
    job: NonEmpty
    action: Literal["pause", "resume", "finish"]


ClockAction = Literal[
    "in",
    "out",
    "break_start",
    "break_stop",
    "lunch_start",
    "lunch_stop",
    "drive_start",
    "drive_stop",
]


class Clock(CILBase):
    # No job: the punch goes to the active job, or to none.
    job_policy: ClassVar[JobPolicy] = "optional"

    type: Literal["Clock"]
    action: ClockAction
    at: AwareDatetime | None = None
    job: str | None = None
    # Crew member being punched; the sender when absent.
    target_user: str | None = None


CIL = Annotated[
    LogExpense
    | LogRevenue
    | CreateLead
    | CreateQuote
    | CreateAgreement
    | CreateInvoice
    | CreateChangeOrder
    | AddPricingItem
    | UpdatePricingItem
    | DeletePricingItem
    | CreateJob
    | StartJob
    | UpdateJobStatus
    | Clock,
    Field(discriminator="type"),
]

CIL_TYPES: dict[str, type[CILBase]] = {
    get_args(model.model_fields["type"].annotation)[0]: model
    for model in (
        LogExpense,
        LogRevenue,
        CreateLead,
        CreateQuote,
        CreateAgreement,
        CreateInvoice,
        CreateChangeOrder,
        AddPricingItem,
        UpdatePricingItem,
        DeletePricingItem,
        CreateJob,
        StartJob,
        UpdateJobStatus,
        Clock,
    )
}

_adapter: TypeAdapter[CIL] = TypeAdapter(CIL)


def validate_cil(raw: dict[str, Any]) -> CILBase:
    """Validate ``raw`` against its variant. Raises CILValidationError."""
    try:
        return _adapter.validate_python(raw)
    except ValidationError as e:
        issues = [_to_issue(err) for err in e.errors(include_url=False)]
        raise CILValidationError(
            f"{raw.get('type', 'command')} failed validation", issues=issues
        ) from e


def _to_issue(err: dict[str, Any]) -> FieldIssue:
    # The first loc element is the discriminator tag (e.g. "LogExpense"); drop it.
    loc = list(err["loc"])
    if loc and isinstance(loc[0], str) and loc[0] in CIL_TYPES:
        loc = loc[1:]
    path = ".".join(str(part) for part in loc) or "type"
    kind = "missing" if err["type"] == "missing" else "invalid"
    return FieldIssue(loc=path, message=err["msg"], kind=kind)
