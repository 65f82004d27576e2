"""Lifespan wiring: app.py assembles the pipeline from settings.

Runs the real lifespan with the database layer patched out, so the tests
cover the actual assembly path rather than unit-level mocks.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.extract.base import NoopCategorySuggester
from src.extract.llm import OpenAICategorySuggester, OpenAIExtractor
from src.extract.rules import RuleExtractor
from src.extract.vendors import AliasVendorNormalizer
from src.gateway.app import lifespan


def _make_mock_settings(*, api_key: str = "", bot_token: str = "") -> MagicMock:
    settings = MagicMock()
    settings.openai.api_key = api_key
    settings.openai.base_url = None
    settings.openai.model = "gpt-4o-mini"
    settings.database.schema_ = "tradeledger"
    settings.gateway.host = "0.0.0.0"
    settings.gateway.port = 19789
    settings.log.json_output = False
    settings.log.level = "INFO"
    settings.pipeline.write_timeout_s = 4.0
    settings.pipeline.category_timeout_s = 1.5
    settings.pipeline.extract_timeout_s = 8.0
    settings.pipeline.picker_page_size = 5
    settings.pipeline.confirm_fresh_commands = True
    settings.pipeline.tenant_map = "+14165550000=acme"
    settings.lock.acquire_timeout_s = 2.0
    settings.lock.stale_after_seconds = 300
    settings.telegram.bot_token = bot_token
    return settings


def _patches(settings: MagicMock, fake_engine: AsyncMock):
    return (
        patch("src.gateway.app.setup_logging"),
        patch("src.gateway.app.get_settings", return_value=settings),
        patch("src.gateway.app.create_db_engine", return_value=fake_engine),
        patch("src.gateway.app.ensure_schema", return_value=None),
        patch("src.gateway.app.make_session_factory", return_value=MagicMock()),
    )


@pytest.mark.asyncio
async def test_pipeline_wired_from_settings():
    app = MagicMock()
    app.state = MagicMock()
    fake_engine = AsyncMock()
    settings = _make_mock_settings()
    p1, p2, p3, p4, p5 = _patches(settings, fake_engine)

    with p1, p2, p3, p4, p5:
        async with lifespan(app):
            pipeline = app.state.pipeline
            assert pipeline._confirm_fresh is True
            assert pipeline._page_size == 5
            assert pipeline._tenants.tenant_for("+14165550000") == "acme"
            extractors = pipeline._extractor._extractors
            assert [type(e) for e in extractors] == [RuleExtractor]

            services = pipeline._router._services
            assert isinstance(services.category_suggester, NoopCategorySuggester)
            assert isinstance(services.vendor_normalizer, AliasVendorNormalizer)
            assert services.category_timeout_s == 1.5

            lock_manager = app.state.lock_manager
            assert lock_manager._acquire_timeout_s == 2.0

    fake_engine.dispose.assert_awaited_once()


@pytest.mark.asyncio
async def test_llm_collaborators_enabled_with_api_key():
    app = MagicMock()
    app.state = MagicMock()
    settings = _make_mock_settings(api_key="sk-test")
    p1, p2, p3, p4, p5 = _patches(settings, AsyncMock())

    with p1, p2, p3, p4, p5:
        async with lifespan(app):
            pipeline = app.state.pipeline
            extractors = pipeline._extractor._extractors
            assert [type(e) for e in extractors] == [RuleExtractor, OpenAIExtractor]
            assert isinstance(
                pipeline._router._services.category_suggester, OpenAICategorySuggester
            )


@pytest.mark.asyncio
async def test_telegram_started_and_stopped_when_token_set():
    app = MagicMock()
    app.state = MagicMock()
    settings = _make_mock_settings(bot_token="123:abc")
    p1, p2, p3, p4, p5 = _patches(settings, AsyncMock())

    adapter = MagicMock()
    adapter.check_ready = AsyncMock()
    adapter.start_polling = AsyncMock()
    adapter.stop = AsyncMock()

    with p1, p2, p3, p4, p5, patch(
        "src.gateway.app.TelegramAdapter", return_value=adapter
    ) as adapter_cls:
        async with lifespan(app):
            adapter.check_ready.assert_awaited_once()
            args = adapter_cls.call_args.args
            assert args[0] == "123:abc"
            assert args[2] is app.state.lock_manager
            assert args[3] is app.state.pipeline

    adapter.stop.assert_awaited_once()


@pytest.mark.asyncio
async def test_telegram_not_started_without_token():
    app = MagicMock()
    app.state = MagicMock()
    settings = _make_mock_settings()
    p1, p2, p3, p4, p5 = _patches(settings, AsyncMock())

    with p1, p2, p3, p4, p5, patch("src.gateway.app.TelegramAdapter") as adapter_cls:
        async with lifespan(app):
            pass

    adapter_cls.assert_not_called()
