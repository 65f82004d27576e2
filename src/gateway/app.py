from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.channels.telegram import TelegramAdapter
from src.cil.router import CILRouter
from src.config.settings import Settings, get_settings
from src.conversation.identity import TenantDirectory
from src.conversation.lock import LockManager
from src.conversation.store import PendingStateStore
from src.domain.context import DomainServices
from src.domain.resolver import ReferenceResolver
from src.extract.base import ChainExtractor, CategorySuggester, Extractor, NoopCategorySuggester
from src.extract.llm import OpenAICategorySuggester, OpenAIExtractor
from src.extract.rules import RuleExtractor
from src.extract.vendors import AliasVendorNormalizer
from src.gateway.dispatch import dispatch_message
from src.gateway.protocol import ErrorBody, InboundMessage, WebhookReply
from src.infra.errors import GatewayError
from src.infra.logging import setup_logging
from src.ledger.audit import AuditLedger
from src.ledger.writer import IdempotentWriter
from src.pipeline import replies
from src.pipeline.engine import ConversationPipeline
from src.store.database import create_db_engine, ensure_schema, make_session_factory

logger = structlog.get_logger()


def _build_extractor(settings: Settings) -> Extractor:
    extractors: list[Extractor] = [RuleExtractor()]
    if settings.openai.api_key:
        extractors.append(
            OpenAIExtractor(
                api_key=settings.openai.api_key,
                model=settings.openai.model,
                base_url=settings.openai.base_url,
            )
        )
    return ChainExtractor(extractors)


def _build_suggester(settings: Settings) -> CategorySuggester:
    if not settings.openai.api_key:
        return NoopCategorySuggester()
    return OpenAICategorySuggester(
        api_key=settings.openai.api_key,
        model=settings.openai.model,
        base_url=settings.openai.base_url,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize shared state on startup."""
    settings = get_settings()
    setup_logging(json_output=settings.log.json_output, log_level=settings.log.level)

    # DB is mandatory; startup fails if DB/schema unavailable.
    engine = await create_db_engine(settings.database)
    await ensure_schema(engine, settings.database.schema_)
    db_session_factory = make_session_factory(engine)
    logger.info("db_connected")

    audit = AuditLedger(db_session_factory)
    writer = IdempotentWriter(
        db_session_factory, audit, timeout_s=settings.pipeline.write_timeout_s
    )
    resolver = ReferenceResolver(db_session_factory)
    services = DomainServices(
        db=db_session_factory,
        writer=writer,
        audit=audit,
        resolver=resolver,
        category_suggester=_build_suggester(settings),
        vendor_normalizer=AliasVendorNormalizer(),
        category_timeout_s=settings.pipeline.category_timeout_s,
    )
    pipeline = ConversationPipeline(
        store=PendingStateStore(db_session_factory),
        resolver=resolver,
        router=CILRouter(services),
        audit=audit,
        extractor=_build_extractor(settings),
        tenants=TenantDirectory.from_setting(settings.pipeline.tenant_map),
        confirm_fresh_commands=settings.pipeline.confirm_fresh_commands,
        picker_page_size=settings.pipeline.picker_page_size,
        extract_timeout_s=settings.pipeline.extract_timeout_s,
    )
    lock_manager = LockManager(
        db_session_factory,
        acquire_timeout_s=settings.lock.acquire_timeout_s,
        stale_after_seconds=settings.lock.stale_after_seconds,
    )

    app.state.pipeline = pipeline
    app.state.lock_manager = lock_manager

    # Telegram (only when a bot token is configured)
    telegram: TelegramAdapter | None = None
    polling_task: asyncio.Task[None] | None = None
    if settings.telegram.bot_token:
        telegram = TelegramAdapter(
            settings.telegram.bot_token, settings.telegram, lock_manager, pipeline,
        )
        await telegram.check_ready()
        polling_task = asyncio.create_task(telegram.start_polling(), name="tg_polling")

    logger.info(
        "gateway_started",
        host=settings.gateway.host,
        port=settings.gateway.port,
        llm_enabled=bool(settings.openai.api_key),
        telegram_enabled=telegram is not None,
        confirm_fresh_commands=settings.pipeline.confirm_fresh_commands,
    )

    yield

    # Cleanup
    if telegram is not None and polling_task is not None:
        await telegram.stop()
        polling_task.cancel()
        try:
            await polling_task
        except asyncio.CancelledError:
            pass
    await writer.drain()
    await engine.dispose()
    logger.info("db_engine_disposed")


app = FastAPI(title="TradeLedger Gateway", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post(
    "/webhook",
    response_model=WebhookReply,
    responses={400: {"model": ErrorBody}},
)
async def webhook(message: InboundMessage, request: Request) -> WebhookReply | JSONResponse:
    """Run one conversational turn for an inbound message and return the reply."""
    try:
        reply = await dispatch_message(
            lock_manager=request.app.state.lock_manager,
            pipeline=request.app.state.pipeline,
            message=message,
        )
    except GatewayError as e:
        if e.code == "SESSION_BUSY":
            logger.info("webhook_busy", message_id=message.message_id)
            return WebhookReply(reply=replies.BUSY, phase="busy")
        logger.warning("webhook_rejected", code=e.code, error=str(e))
        return JSONResponse(
            status_code=400,
            content=ErrorBody(code=e.code, message=str(e)).model_dump(),
        )
    return WebhookReply(reply=reply.text, phase=reply.phase)


def main() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run("src.gateway.app:app", host=settings.gateway.host, port=settings.gateway.port)


if __name__ == "__main__":
    main()
