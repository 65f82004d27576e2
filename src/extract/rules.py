"""Deterministic extraction for the command shapes operators type most often.

    expense 84.12 nails from Home Depot for job Oak St re-roof
    revenue 500 deposit from Smith
    lead Jane Doe, 416-555-0101, jane@example.com
    quote 12500 for Oak St re-roof: tear-off and shingles
    change order 800 for #12: extra flashing
    add price 2x4 stud 4.25 per each
    update price 2x4 stud to 4.50
    delete price 2x4 stud
    create job Oak St re-roof
    start job 12 / pause job Oak St re-roof / finish job #12
    clock in Mike for Oak St re-roof / lunch start / clock out
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any

from src.extract.base import Extractor

_AMOUNT = r"\$?(?P<amount>\d[\d,]*(?:\.\d{1,2})?)"
_JOB_TAIL = r"(?:\s+for\s+(?:job\s+)?(?P<job>.+))?"

_EXPENSE = re.compile(
    rf"^(?:expense|spent)\s+{_AMOUNT}\s+(?:on\s+)?(?P<item>.+?)"
    rf"(?:\s+(?:from|at)\s+(?P<store>.+?))?{_JOB_TAIL}$",
    re.IGNORECASE,
)
_REVENUE = re.compile(
    rf"^(?:revenue|payment|got paid|paid|received)\s+{_AMOUNT}"
    rf"(?:\s+(?!from\b|for\b)(?P<desc>.+?))?"
    rf"(?:\s+from\s+(?P<payer>.+?))?{_JOB_TAIL}$",
    re.IGNORECASE,
)
_LEAD = re.compile(r"^(?:new\s+)?lead\s*:?\s+(?P<rest>.+)$", re.IGNORECASE)
_QUOTE = re.compile(
    rf"^quote\s+{_AMOUNT}\s+for\s+(?:job\s+)?(?P<job>.+?)(?:\s*:\s*(?P<desc>.+))?$",
    re.IGNORECASE,
)
_CHANGE_ORDER = re.compile(
    rf"^change\s*order\s+{_AMOUNT}\s+for\s+(?:job\s+)?(?P<job>.+?)(?:\s*:\s*(?P<desc>.+))?$",
    re.IGNORECASE,
)
_ADD_PRICE = re.compile(
    rf"^add\s+price\s+(?P<item>.+?)\s+{_AMOUNT}(?:\s*(?:/|per)\s*(?P<unit>[\w-]+))?$",
    re.IGNORECASE,
)
_UPDATE_PRICE = re.compile(
    rf"^update\s+price\s+(?P<item>.+?)\s+(?:to\s+)?{_AMOUNT}$", re.IGNORECASE
)
_DELETE_PRICE = re.compile(r"^(?:delete|remove)\s+price\s+(?P<item>.+)$", re.IGNORECASE)
_CREATE_JOB = re.compile(r"^(?:create|new|add)\s+job\s+(?P<name>.+)$", re.IGNORECASE)
_START_JOB = re.compile(r"^(?:start|activate)\b(?:\s+job\b)?\s*(?P<job>.*)$", re.IGNORECASE)
_JOB_STATUS = re.compile(
    r"^(?:(?P<verb>pause|resume|finish)\b(?:\s+job\b)?|(?P<alias>close|complete|end)\s+job\b)"
    r"\s*(?P<job>.*)$",
    re.IGNORECASE,
)
_CLOCK = re.compile(
    r"^(?:clock|punch)(?:ed)?\s+(?P<edge>in|out)\b"
    r"(?:\s+(?!for\b|on\b)(?P<who>.+?))?"
    r"(?:\s+(?:for|on)\s+(?:job\s+)?(?P<job>.+))?$",
    re.IGNORECASE,
)
_SEGMENT = re.compile(
    r"^(?:(?P<what>break|lunch|drive)\s+(?P<edge>start|stop|end|over)"
    r"|(?P<edge2>start|stop|end)\s+(?P<what2>break|lunch|drive))$",
    re.IGNORECASE,
)


# Leading keyword → command type, used when a pattern did not fully match.
_KEYWORDS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"^(?:expense|spent)\b", re.IGNORECASE), "LogExpense"),
    (re.compile(r"^(?:revenue|payment|got paid|paid|received)\b", re.IGNORECASE), "LogRevenue"),
    (re.compile(r"^(?:new\s+)?lead\b", re.IGNORECASE), "CreateLead"),
    (re.compile(r"^quote\b", re.IGNORECASE), "CreateQuote"),
    (re.compile(r"^change\s*order\b", re.IGNORECASE), "CreateChangeOrder"),
    (re.compile(r"^add\s+price\b", re.IGNORECASE), "AddPricingItem"),
    (re.compile(r"^update\s+price\b", re.IGNORECASE), "UpdatePricingItem"),
    (re.compile(r"^(?:delete|remove)\s+price\b", re.IGNORECASE), "DeletePricingItem"),
    (re.compile(r"^(?:create|new|add)\s+job\b", re.IGNORECASE), "CreateJob"),
    (re.compile(r"^(?:clock|punch)(?:ed)?\b", re.IGNORECASE), "Clock"),
]

_HINT_PREFIX = {
    "LogExpense": "expense",
    "LogRevenue": "revenue",
    "CreateLead": "lead",
    "CreateQuote": "quote",
    "CreateChangeOrder": "change order",
}

_PHONE = re.compile(r"^\+?[\d\s\-().]{7,}$")
_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def parse_cents(amount: str) -> int | None:
    """'1,234.5' → 123450. None when the text is not a decimal amount."""
    try:
        value = Decimal(amount.replace(",", ""))
    except InvalidOperation:
        return None
    return int((value * 100).quantize(Decimal("1")))


class RuleExtractor(Extractor):
    async def extract(self, text: str, type_hint: str | None = None) -> dict[str, Any] | None:
        text = " ".join((text or "").split())
        if not text:
            return None

        fields = self._match(text)
        if fields is None and type_hint in _HINT_PREFIX:
            fields = self._match(f"{_HINT_PREFIX[type_hint]} {text}")
        return fields

    def _match(self, text: str) -> dict[str, Any] | None:
        for parse in (
            self._expense,
            self._revenue,
            self._lead,
            self._quote,
            self._change_order,
            self._add_price,
            self._update_price,
            self._delete_price,
            self._create_job,
            self._clock,
            self._start_job,
            self._job_status,
        ):
            fields = parse(text)
            if fields is not None:
                return fields

        for pattern, cil_type in _KEYWORDS:
            if pattern.match(text):
                return {"type": cil_type}
        return None

    @staticmethod
    def _expense(text: str) -> dict[str, Any] | None:
        m = _EXPENSE.match(text)
        if not m:
            return None
        return _compact({
            "type": "LogExpense",
            "amount_cents": parse_cents(m["amount"]),
            "item": m["item"],
            "store": m["store"],
            "job": m["job"],
        })

    @staticmethod
    def _revenue(text: str) -> dict[str, Any] | None:
        m = _REVENUE.match(text)
        if not m:
            return None
        payer = m["payer"]
        description = m["desc"] or (f"Payment from {payer}" if payer else "Payment received")
        return _compact({
            "type": "LogRevenue",
            "amount_cents": parse_cents(m["amount"]),
            "description": description,
            "source": payer,
            "job": m["job"],
        })

    @staticmethod
    def _lead(text: str) -> dict[str, Any] | None:
        m = _LEAD.match(text)
        if not m:
            return None
        parts = [p.strip() for p in m["rest"].split(",") if p.strip()]
        customer: dict[str, Any] = {"name": parts[0]}
        notes = []
        for part in parts[1:]:
            if _EMAIL.match(part) and "email" not in customer:
                customer["email"] = part
            elif _PHONE.match(part) and "phone" not in customer:
                customer["phone"] = part
            elif "address" not in customer and re.match(r"^\d+\s+\w", part):
                customer["address"] = part
            else:
                notes.append(part)
        return _compact({
            "type": "CreateLead",
            "customer": customer,
            "notes": ", ".join(notes) or None,
        })

    @staticmethod
    def _quote(text: str) -> dict[str, Any] | None:
        m = _QUOTE.match(text)
        if not m:
            return None
        return _compact({
            "type": "CreateQuote",
            "total_cents": parse_cents(m["amount"]),
            "job": m["job"],
            "description": m["desc"],
        })

    @staticmethod
    def _change_order(text: str) -> dict[str, Any] | None:
        m = _CHANGE_ORDER.match(text)
        if not m:
            return None
        return _compact({
            "type": "CreateChangeOrder",
            "amount_cents": parse_cents(m["amount"]),
            "job": m["job"],
            "description": m["desc"],
        })

    @staticmethod
    def _add_price(text: str) -> dict[str, Any] | None:
        m = _ADD_PRICE.match(text)
        if not m:
            return None
        return _compact({
            "type": "AddPricingItem",
            "item_name": m["item"],
            "unit_cost_cents": parse_cents(m["amount"]),
            "unit": m["unit"],
        })

    @staticmethod
    def _update_price(text: str) -> dict[str, Any] | None:
        m = _UPDATE_PRICE.match(text)
        if not m:
            return None
        return {
            "type": "UpdatePricingItem",
            "item_name": m["item"],
            "unit_cost_cents": parse_cents(m["amount"]),
        }

    @staticmethod
    def _delete_price(text: str) -> dict[str, Any] | None:
        m = _DELETE_PRICE.match(text)
        if not m:
            return None
        return {"type": "DeletePricingItem", "item_name": m["item"]}

    @staticmethod
    def _create_job(text: str) -> dict[str, Any] | None:
        m = _CREATE_JOB.match(text)
        if not m:
            return None
        return {"type": "CreateJob", "name": m["name"].strip().strip("\"'").strip()}

    @staticmethod
    def _clock(text: str) -> dict[str, Any] | None:
        m = _CLOCK.match(text)
        if m:
            return _compact({
                "type": "Clock",
                "action": m["edge"].lower(),
                "target_user": m["who"],
                "job": m["job"],
            })
        m = _SEGMENT.match(text)
        if not m:
            return None
        what = (m["what"] or m["what2"]).lower()
        edge = (m["edge"] or m["edge2"]).lower()
        return {"type": "Clock", "action": f"{what}_{'start' if edge == 'start' else 'stop'}"}

    @staticmethod
    def _start_job(text: str) -> dict[str, Any] | None:
        m = _START_JOB.match(text)
        if not m:
            return None
        return _compact({"type": "StartJob", "job": m["job"] or None})

    @staticmethod
    def _job_status(text: str) -> dict[str, Any] | None:
        m = _JOB_STATUS.match(text)
        if not m:
            return None
        action = m["verb"].lower() if m["verb"] else "finish"
        return _compact({"type": "UpdateJobStatus", "action": action, "job": m["job"] or None})



def _compact(fields: dict[str, Any]) -> dict[str, Any]:
    return {k: v.strip() if isinstance(v, str) else v for k, v in fields.items() if v is not None}
