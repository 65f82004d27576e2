"""Tests for CIL validation: variant selection, strict cents, issue reporting, key defaulting."""

from __future__ import annotations

import uuid

import pytest

from src.cil.schema import (
    CIL_TYPES,
    CreateAgreement,
    CreateLead,
    CreateQuote,
    LineItem,
    LogExpense,
    LogRevenue,
    validate_cil,
)
from src.infra.errors import CILValidationError


def _base(**fields) -> dict:
    return {"tenant_id": "14165550000", "source_msg_id": "wamid.1", **fields}


class TestVariantSelection:
    def test_expense(self):
        cil = validate_cil(_base(type="LogExpense", item="nails", amount_cents=8412))
        assert isinstance(cil, LogExpense)
        assert cil.amount_cents == 8412

    def test_revenue_without_payer(self):
        cil = validate_cil(_base(type="LogRevenue", description="Deposit", amount_cents=50000))
        assert isinstance(cil, LogRevenue)
        assert cil.source is None

    def test_lead_with_nested_customer(self):
        cil = validate_cil(_base(type="CreateLead", customer={"name": "Jane Doe"}))
        assert isinstance(cil, CreateLead)
        assert cil.customer.name == "Jane Doe"

    def test_registry_covers_every_variant(self):
        assert set(CIL_TYPES) == {
            "LogExpense",
            "LogRevenue",
            "CreateLead",
            "CreateQuote",
            "CreateAgreement",
            "CreateInvoice",
            "CreateChangeOrder",
            "AddPricingItem",
            "UpdatePricingItem",
            "DeletePricingItem",
            "CreateJob",
            "StartJob",
            "UpdateJobStatus",
            "Clock",
        }

    def test_unknown_type_rejected(self):
        with pytest.raises(CILValidationError):
            validate_cil(_base(type="DeleteEverything"))

    def test_extra_fields_ignored(self):
        cil = validate_cil(
            _base(type="LogExpense", item="nails", amount_cents=100, job_name="Oak St")
        )
        assert not hasattr(cil, "job_name")


class TestIdempotencyKey:
    def test_defaults_to_source_msg_id(self):
        cil = validate_cil(_base(type="LogExpense", item="nails", amount_cents=100))
        assert cil.idempotency_key == "wamid.1"

    def test_explicit_key_kept(self):
        cil = validate_cil(
            _base(type="LogExpense", item="nails", amount_cents=100, idempotency_key="k-9")
        )
        assert cil.idempotency_key == "k-9"

    def test_missing_key_and_message_id_rejected(self):
        with pytest.raises(CILValidationError) as exc_info:
            validate_cil({"tenant_id": "t", "type": "LogExpense", "item": "x", "amount_cents": 1})
        assert any(i.loc == "idempotency_key" for i in exc_info.value.issues)


class TestMoney:
    def test_float_amount_rejected(self):
        with pytest.raises(CILValidationError) as exc_info:
            validate_cil(_base(type="LogExpense", item="nails", amount_cents=84.12))
        issue = exc_info.value.issues[0]
        assert issue.loc == "amount_cents"
        assert issue.kind == "invalid"

    def test_string_amount_rejected(self):
        with pytest.raises(CILValidationError):
            validate_cil(_base(type="LogExpense", item="nails", amount_cents="8412"))

    def test_zero_expense_rejected(self):
        with pytest.raises(CILValidationError):
            validate_cil(_base(type="LogExpense", item="nails", amount_cents=0))

    def test_zero_quote_total_allowed(self):
        cil = validate_cil(_base(type="CreateQuote", job="Oak St", total_cents=0))
        assert isinstance(cil, CreateQuote)

    def test_line_item_total(self):
        item = LineItem(name="shingles", qty=2.5, unit_price_cents=1999)
        assert item.total_cents == 4998


class TestIssues:
    def test_missing_job_is_only_missing(self):
        with pytest.raises(CILValidationError) as exc_info:
            validate_cil(_base(type="CreateQuote", total_cents=1000))
        assert exc_info.value.only_missing("job")

    def test_missing_job_plus_bad_amount_is_not_only_missing(self):
        with pytest.raises(CILValidationError) as exc_info:
            validate_cil(_base(type="CreateQuote", total_cents=-5))
        assert not exc_info.value.only_missing("job")

    def test_tag_stripped_from_location(self):
        with pytest.raises(CILValidationError) as exc_info:
            validate_cil(_base(type="LogExpense", amount_cents=100))
        locs = [i.loc for i in exc_info.value.issues]
        assert locs == ["item"]
        assert exc_info.value.issues[0].kind == "missing"

    def test_nested_location_is_dotted(self):
        with pytest.raises(CILValidationError) as exc_info:
            validate_cil(_base(type="CreateLead", customer={"name": "Jane", "email": "nope"}))
        assert exc_info.value.issues[0].loc == "customer.email"

    def test_error_code(self):
        with pytest.raises(CILValidationError) as exc_info:
            validate_cil(_base(type="LogExpense"))
        assert exc_info.value.code == "VALIDATION_ERROR"


class TestAgreement:
    def test_retainage_bounds(self):
        with pytest.raises(CILValidationError):
            validate_cil(
                _base(type="CreateAgreement", job="Oak St", retainage_pct=25)
            )

    def test_quote_id_parsed(self):
        qid = uuid.uuid4()
        cil = validate_cil(_base(type="CreateAgreement", job="Oak St", quote_id=str(qid)))
        assert isinstance(cil, CreateAgreement)
        assert cil.quote_id == qid


class TestJobPolicy:
    @pytest.mark.parametrize(
        ("cil_type", "policy"),
        [
            ("LogExpense", "prompt"),
            ("LogRevenue", "prompt"),
            ("CreateLead", "optional"),
            ("CreateQuote", "required"),
            ("CreateInvoice", "required"),
            ("AddPricingItem", "none"),
        ],
    )
    def test_policies(self, cil_type, policy):
        assert CIL_TYPES[cil_type].job_policy == policy

    def test_only_leads_create_jobs(self):
        creators = [name for name, model in CIL_TYPES.items() if model.allow_create_job]
        assert creators == ["CreateLead"]
