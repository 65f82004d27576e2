"""Conversational reply texts. Kept together so the state machine reads as logic only."""

from __future__ import annotations

from typing import Any

from src.conversation.state import JobOption
from src.infra.errors import FieldIssue

HELP = (
    "I didn't catch that. Try something like:\n"
    "• expense 84.12 nails from Home Depot\n"
    "• revenue 500 from Smith\n"
    "• lead Jane Doe, 416-555-0101\n"
    "• quote 12500 for Oak St re-roof: tear-off and shingles\n"
    "• start job Oak St re-roof\n"
    "• clock in"
)
BUSY = "Busy, try again in a moment."
UNAVAILABLE = "I can't reach the ledger right now. Nothing was saved; please try again shortly."
ALREADY_LOGGED = "Already logged that one (duplicate message)."
CANCELLED = "Cancelled. Nothing was saved."
NOTHING_TO_CANCEL = "Nothing to cancel."
EDIT = "OK, send the corrected command."
RETRY = "That didn't go through yet. Reply yes to try again, or cancel."

_EXAMPLES = {
    "LogExpense": "expense 84.12 nails from Home Depot",
    "LogRevenue": "revenue 500 from Smith",
    "CreateLead": "lead Jane Doe, 416-555-0101",
    "CreateQuote": "quote 12500 for Oak St re-roof: tear-off and shingles",
    "CreateChangeOrder": "change order 800 for #12: extra flashing",
    "AddPricingItem": "add price 2x4 stud 4.25 per each",
    "UpdatePricingItem": "update price 2x4 stud to 4.50",
    "DeletePricingItem": "delete price 2x4 stud",
    "CreateJob": "create job Oak St re-roof",
    "StartJob": "start job Oak St re-roof",
    "UpdateJobStatus": "finish job #12",
    "Clock": "clock in Mike for Oak St re-roof",
}

_LABELS = {
    "LogExpense": "expense",
    "LogRevenue": "payment",
    "CreateLead": "lead",
    "CreateQuote": "quote",
    "CreateAgreement": "agreement",
    "CreateInvoice": "invoice",
    "CreateChangeOrder": "change order",
    "AddPricingItem": "price item",
    "UpdatePricingItem": "price change",
    "DeletePricingItem": "price removal",
    "CreateJob": "job",
    "StartJob": "job start",
    "UpdateJobStatus": "job update",
    "Clock": "time punch",
}


def _money(cents: Any) -> str:
    return f"${cents / 100:,.2f}" if isinstance(cents, int) else "?"


def describe_draft(draft: dict[str, Any]) -> str:
    """One-line human summary of a draft command."""
    cil_type = draft.get("type", "")
    label = _LABELS.get(cil_type, "command")
    job = draft.get("job_name") or draft.get("job")
    on_job = f" on {job}" if job else ""

    match cil_type:
        case "LogExpense":
            store = f" from {draft['store']}" if draft.get("store") else ""
            return f"Expense {_money(draft.get('amount_cents'))} for {draft.get('item')}{store}{on_job}"
        case "LogRevenue":
            payer = f" from {draft['source']}" if draft.get("source") else ""
            return f"Payment {_money(draft.get('amount_cents'))}{payer}{on_job}"
        case "CreateLead":
            name = (draft.get("customer") or {}).get("name", "?")
            return f"New lead {name}{on_job}"
        case "CreateChangeOrder":
            return f"Change order {_money(draft.get('amount_cents'))}{on_job}"
        case "AddPricingItem" | "UpdatePricingItem":
            return f"Price {draft.get('item_name')} at {_money(draft.get('unit_cost_cents'))}"
        case "DeletePricingItem":
            return f"Remove {draft.get('item_name')} from the price list"
        case "CreateJob":
            return f"New job {draft.get('name')}, made active"
        case "StartJob":
            return f"Make {job} the active job"
        case "UpdateJobStatus":
            return f"{str(draft.get('action', 'update')).capitalize()} job {job}"
        case "Clock":
            who = draft.get("target_user") or "You"
            return f"Clock {draft.get('action', '').replace('_', ' ')} for {who}{on_job}"
        case _:
            return f"New {label}{on_job}"


def confirm(draft: dict[str, Any]) -> str:
    return f"{describe_draft(draft)}. Save it? Reply yes, edit or cancel."


def pick_job(options: list[JobOption], *, note: str | None = None) -> str:
    lines = [note] if note else []
    if not options:
        lines.append("Which job is this for? Reply with a job name or number.")
        return "\n".join(lines)

    lines.append("Which job is this for?")
    for i, option in enumerate(options, start=1):
        number = f" (#{option.number})" if option.number is not None else ""
        lines.append(f"{i}. {option.name}{number}")
    lines.append("Reply with a number from the list, a job name, 'more' or cancel.")
    return "\n".join(lines)


def clarify(cil_type: str, issues: list[FieldIssue]) -> str:
    label = _LABELS.get(cil_type, "command")
    missing = [i.loc for i in issues if i.kind == "missing"]
    invalid = [i.loc for i in issues if i.kind == "invalid"]
    parts = []
    if missing:
        parts.append(f"missing {', '.join(missing)}")
    if invalid:
        parts.append(f"couldn't read {', '.join(invalid)}")
    problem = "; ".join(parts) or "something is off"
    example = _EXAMPLES.get(cil_type)
    hint = f"\nSend the whole {label} again, e.g. \"{example}\"" if example else ""
    return f"That {label} is {problem}.{hint}"


def not_found(message: str) -> str:
    return f"{message}. Nothing was saved."


def denied(message: str) -> str:
    return f"Can't do that: {message}."
