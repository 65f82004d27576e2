"""Tests for the OpenAI-backed extractor and category suggester (client mocked)."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from openai import APIConnectionError

from src.extract.llm import OpenAICategorySuggester, OpenAIExtractor
from src.infra.errors import LLMError


def _response(content: str | None) -> MagicMock:
    response = MagicMock()
    choice = MagicMock()
    choice.message.content = content
    response.choices = [choice]
    return response


def _client(*responses) -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=list(responses))
    return client


def _connection_error() -> APIConnectionError:
    return APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1"))


class TestOpenAIExtractor:
    @pytest.mark.asyncio
    async def test_valid_command(self):
        content = json.dumps({"type": "LogExpense", "item": "nails", "amount_cents": 8412,
                              "store": None})
        extractor = OpenAIExtractor("k", "gpt-4o-mini", client=_client(_response(content)))
        fields = await extractor.extract("spent 84.12 on nails")
        assert fields == {"type": "LogExpense", "item": "nails", "amount_cents": 8412}

    @pytest.mark.asyncio
    async def test_json_mode_requested(self):
        client = _client(_response('{"type": "LogExpense", "item": "x"}'))
        extractor = OpenAIExtractor("k", "gpt-4o-mini", client=client)
        await extractor.extract("x", type_hint="LogExpense")
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["temperature"] == 0
        assert '"LogExpense"' in kwargs["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_not_a_command(self):
        extractor = OpenAIExtractor("k", "m", client=_client(_response('{"type": null}')))
        assert await extractor.extract("hello there") is None

    @pytest.mark.asyncio
    async def test_bad_json(self):
        extractor = OpenAIExtractor("k", "m", client=_client(_response("sure! here you go")))
        assert await extractor.extract("x") is None

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        client = _client(_connection_error(), _response('{"type": "LogRevenue", "description": "d"}'))
        extractor = OpenAIExtractor("k", "m", base_delay=0, client=client)
        fields = await extractor.extract("x")
        assert fields["type"] == "LogRevenue"
        assert client.chat.completions.create.await_count == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self):
        client = _client(*[_connection_error()] * 3)
        extractor = OpenAIExtractor("k", "m", max_retries=2, base_delay=0, client=client)
        assert await extractor.extract("x") is None
        assert client.chat.completions.create.await_count == 3


class TestOpenAICategorySuggester:
    @pytest.mark.asyncio
    async def test_known_category(self):
        suggester = OpenAICategorySuggester("k", "m", client=_client(_response("materials.")))
        assert await suggester.suggest("expense", {"item": "nails"}) == "Materials"

    @pytest.mark.asyncio
    async def test_revenue_choices(self):
        suggester = OpenAICategorySuggester("k", "m", client=_client(_response("Deposit")))
        assert await suggester.suggest("revenue", {"description": "deposit"}) == "Deposit"

    @pytest.mark.asyncio
    async def test_unknown_category(self):
        suggester = OpenAICategorySuggester("k", "m", client=_client(_response("Snacks")))
        assert await suggester.suggest("expense", {"item": "chips"}) is None

    @pytest.mark.asyncio
    async def test_provider_failure_raises_llm_error(self):
        client = _client(*[_connection_error()] * 3)
        suggester = OpenAICategorySuggester("k", "m", base_delay=0, client=client)
        with pytest.raises(LLMError):
            await suggester.suggest("expense", {"item": "nails"})
