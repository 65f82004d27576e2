"""OpenAI-backed extraction and category suggestion.

Both are optional collaborators: they are only wired when OPENAI_API_KEY is
set, and their callers treat any failure as "no answer".
"""

from __future__ import annotations

import asyncio
import json
import random
from collections.abc import Callable, Coroutine
from typing import Any, TypeVar

import structlog
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    RateLimitError,
)

from src.cil.schema import CIL_TYPES
from src.extract.base import CategorySuggester, Extractor
from src.infra.errors import LLMError

logger = structlog.get_logger()

T = TypeVar("T")

_RETRYABLE = (APIConnectionError, APITimeoutError, RateLimitError)

EXPENSE_CATEGORIES = (
    "Materials",
    "Tools",
    "Fuel",
    "Subcontractors",
    "Equipment Rental",
    "Permits",
    "Office",
    "Meals",
    "Other",
)
REVENUE_CATEGORIES = ("Deposit", "Progress Payment", "Final Payment", "Service", "Other")

_EXTRACT_PROMPT = """You turn a contractor's chat message into one JSON command.
Allowed "type" values: {types}.
Money is integer cents in *_cents fields (84.12 dollars -> 8412). Dates are YYYY-MM-DD.
LogExpense: item, amount_cents, store?, job?, date?, category?
LogRevenue: description, amount_cents, source? (payer), job?, date?
CreateLead: customer {{name, phone?, email?, address?}}, notes?, job?
CreateQuote: job, total_cents?, description?, line_items? [{{name, qty, unit_price_cents}}]
CreateChangeOrder: job, description, amount_cents
AddPricingItem: item_name, unit_cost_cents, unit?, kind?
UpdatePricingItem: item_name, unit_cost_cents
DeletePricingItem: item_name
CreateJob: name
StartJob: job
UpdateJobStatus: job, action (pause|resume|finish)
Clock: action (in|out|break_start|break_stop|lunch_start|lunch_stop|drive_start|drive_stop), at? (ISO 8601 with offset), job?, target_user? (crew member, when not the sender)
Only include fields stated in the message. If the message is not one of these
commands, answer {{"type": null}}. Answer with the JSON object only."""

_CATEGORY_PROMPT = """Pick the single best category for this {kind} from: {choices}.
Answer with the category name only."""


class _OpenAIBase:
    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        *,
        max_retries: int = 2,
        base_delay: float = 0.5,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url)
        self._model = model
        self._max_retries = max_retries
        self._base_delay = base_delay

    async def _retry_call(
        self,
        coro_factory: Callable[[], Coroutine[Any, Any, T]],
        *,
        context: str = "",
    ) -> T:
        """Exponential backoff on connection errors, timeouts and rate limits."""
        for attempt in range(self._max_retries + 1):
            try:
                return await coro_factory()
            except _RETRYABLE as e:
                if attempt == self._max_retries:
                    raise LLMError(
                        f"LLM call failed after {self._max_retries + 1} attempts: {e}"
                    ) from e
                delay = self._base_delay * (2**attempt) + random.uniform(0, 0.25)
                logger.warning(
                    "llm_retry",
                    attempt=attempt + 1,
                    max_retries=self._max_retries,
                    delay=round(delay, 2),
                    error=str(e),
                    context=context,
                )
                await asyncio.sleep(delay)
            except APIStatusError as e:
                raise LLMError(f"LLM API error: {e.status_code} {e.message}") from e
        raise LLMError("Retry loop exhausted")  # pragma: no cover

    async def _complete(self, messages: list[dict[str, str]], *, context: str, **kwargs) -> str:
        response = await self._retry_call(
            lambda: self._client.chat.completions.create(
                model=self._model, messages=messages, temperature=0, **kwargs
            ),
            context=context,
        )
        if not response.choices:
            raise LLMError(f"Empty choices from provider ({context})")
        return response.choices[0].message.content or ""


class OpenAIExtractor(_OpenAIBase, Extractor):
    """JSON-mode chat completion producing candidate CIL fields."""

    async def extract(self, text: str, type_hint: str | None = None) -> dict[str, Any] | None:
        system = _EXTRACT_PROMPT.format(types=", ".join(CIL_TYPES))
        if type_hint:
            system += f'\nThe user is most likely sending a "{type_hint}".'
        try:
            content = await self._complete(
                [{"role": "system", "content": system}, {"role": "user", "content": text}],
                context="extract",
                response_format={"type": "json_object"},
            )
        except LLMError as e:
            logger.warning("llm_extract_failed", error=str(e))
            return None

        try:
            fields = json.loads(content)
        except json.JSONDecodeError:
            logger.warning("llm_extract_bad_json", chars=len(content))
            return None
        if not isinstance(fields, dict) or fields.get("type") not in CIL_TYPES:
            return None

        logger.debug("llm_extracted", type=fields["type"], field_count=len(fields))
        return {k: v for k, v in fields.items() if v is not None}


class OpenAICategorySuggester(_OpenAIBase, CategorySuggester):
    async def suggest(self, kind: str, fields: dict[str, Any]) -> str | None:
        choices = EXPENSE_CATEGORIES if kind == "expense" else REVENUE_CATEGORIES
        summary = ", ".join(f"{k}={v}" for k, v in fields.items() if v)
        content = await self._complete(
            [
                {
                    "role": "system",
                    "content": _CATEGORY_PROMPT.format(kind=kind, choices=", ".join(choices)),
                },
                {"role": "user", "content": summary},
            ],
            context="category",
        )
        answer = content.strip().strip(".").strip()
        for choice in choices:
            if choice.lower() == answer.lower():
                return choice
        return None
