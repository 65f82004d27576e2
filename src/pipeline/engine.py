"""Conversation state machine: one inbound message in, one reply out.

Fresh ──command──▶ Executed
  │                  ▲
  ├─missing job──▶ AwaitingReference ──job──▶ AwaitingConfirmation ──yes──┘
  └─bad fields──▶ AwaitingClarification ──replacement command──▶ Fresh

``cancel`` (or ``no``) clears any pending state. The caller holds the identity
lock for the whole call, so reads here always see this identity's last write.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from typing import Any

import structlog

from src.cil.router import CILRouter
from src.cil.schema import CIL_TYPES, CILBase, validate_cil
from src.conversation.identity import TenantDirectory, normalize_identity
from src.conversation.state import (
    AwaitingClarification,
    AwaitingConfirmation,
    AwaitingReference,
    JobOption,
    MediaRef,
    PendingState,
)
from src.conversation.store import PendingStateStore
from src.domain.context import DispatchContext
from src.domain.resolver import ReferenceResolver, ResolvedRef
from src.extract.base import Extractor
from src.gateway.protocol import InboundMessage
from src.infra.errors import (
    CILValidationError,
    ConflictError,
    FieldIssue,
    NotFoundError,
    UnavailableError,
)
from src.ledger.audit import AuditLedger
from src.pipeline import replies
from src.store.database import CONNECTIVITY_ERRORS

logger = structlog.get_logger()

CANCEL_WORDS = frozenset({"cancel", "no", "nevermind", "never mind"})
CONFIRM_WORDS = frozenset({"yes", "y", "yep", "confirm", "ok", "okay"})
EDIT_WORDS = frozenset({"edit", "change"})
MORE_WORDS = frozenset({"more", "next"})


@dataclass(frozen=True)
class PipelineReply:
    text: str | None
    phase: str  # fresh | awaiting_confirmation | awaiting_reference | awaiting_clarification | executed


@dataclass(frozen=True)
class _Turn:
    identity: str
    tenant_id: str
    message: InboundMessage


class ConversationPipeline:
    def __init__(
        self,
        *,
        store: PendingStateStore,
        resolver: ReferenceResolver,
        router: CILRouter,
        audit: AuditLedger,
        extractor: Extractor,
        tenants: TenantDirectory | None = None,
        confirm_fresh_commands: bool = False,
        picker_page_size: int = 8,
        extract_timeout_s: float = 8.0,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._router = router
        self._audit = audit
        self._extractor = extractor
        self._tenants = tenants or TenantDirectory()
        self._confirm_fresh = confirm_fresh_commands
        self._page_size = picker_page_size
        self._extract_timeout_s = extract_timeout_s

    async def handle(self, message: InboundMessage) -> PipelineReply:
        """Advance the sender's conversation by one message.

        Must be called with the identity lock held (see gateway.dispatch).
        """
        identity = normalize_identity(message.from_identity)
        turn = _Turn(identity, self._tenants.tenant_for(identity), message)
        try:
            return await self._handle(turn)
        except (UnavailableError, *CONNECTIVITY_ERRORS) as e:
            logger.warning(
                "pipeline_store_unavailable",
                identity=identity,
                message_id=message.message_id,
                error_type=type(e).__name__,
            )
            return PipelineReply(replies.UNAVAILABLE, "unavailable")

    async def _handle(self, turn: _Turn) -> PipelineReply:
        pending = await self._store.get(turn.identity)
        word = turn.message.text.lower().strip(" .!")

        if word in CANCEL_WORDS:
            if pending is None:
                return PipelineReply(replies.NOTHING_TO_CANCEL, "fresh")
            await self._store.delete(turn.identity)
            logger.info("conversation_cancelled", identity=turn.identity, kind=pending.kind)
            return PipelineReply(replies.CANCELLED, "fresh")

        if pending is not None and turn.message.message_id == pending.source_msg_id:
            # Transport redelivered the message that opened this conversation.
            return self._reprompt(pending)

        match pending:
            case None:
                return await self._fresh(turn, media=turn.message.media, clear=False)
            case AwaitingConfirmation():
                return await self._on_confirmation(turn, pending, word)
            case AwaitingReference():
                return await self._on_reference(turn, pending, word)
            case AwaitingClarification():
                # A full replacement command, never a patch of the old draft.
                return await self._fresh(
                    turn, media=turn.message.media or pending.media, clear=True
                )

    # ── Fresh ────────────────────────────────────────────────────────────

    async def _fresh(
        self, turn: _Turn, *, media: MediaRef | None, clear: bool
    ) -> PipelineReply:
        message = turn.message
        if await self._audit.is_consumed(turn.tenant_id, message.message_id):
            if clear:
                await self._store.delete(turn.identity)
            logger.info(
                "message_already_consumed", identity=turn.identity, message_id=message.message_id
            )
            return PipelineReply(replies.ALREADY_LOGGED, "executed")

        fields = await self._extract(message.text, message.type_hint)
        if not fields or fields.get("type") not in CIL_TYPES:
            if clear:
                await self._store.delete(turn.identity)
            return PipelineReply(replies.HELP, "fresh")

        draft: dict[str, Any] = {
            **fields,
            "tenant_id": turn.tenant_id,
            "source_msg_id": message.message_id,
            "actor_phone": turn.identity,
        }
        if media is not None and not draft.get("media_url"):
            draft["media_url"] = media.url
        return await self._advance(turn, draft, media)

    async def _advance(
        self, turn: _Turn, draft: dict[str, Any], media: MediaRef | None
    ) -> PipelineReply:
        model = CIL_TYPES[draft["type"]]
        source_msg_id = draft["source_msg_id"]

        try:
            validate_cil(draft)
        except CILValidationError as e:
            if model.job_policy == "required" and e.only_missing("job"):
                return await self._ask_for_job(turn, draft, media)
            return await self._clarify(turn, draft, media, e.issues)

        job_ref = draft.get("job")
        if not job_ref and model.job_policy == "prompt":
            active = await self._resolver.active_job(turn.tenant_id)
            if active is None:
                return await self._ask_for_job(turn, draft, media)
            draft = _with_job(draft, active)
        elif job_ref and model.job_policy != "none" and not model.allow_create_job:
            try:
                job = await self._resolver.resolve(turn.tenant_id, job_ref, kind="job")
            except NotFoundError as e:
                await self._store.delete(turn.identity)
                return PipelineReply(replies.not_found(str(e)), "fresh")
            draft = _with_job(draft, job)

        if self._confirm_fresh:
            await self._store.set(
                turn.identity,
                AwaitingConfirmation(draft=draft, source_msg_id=source_msg_id, media=media),
                merge=False,
            )
            return PipelineReply(replies.confirm(draft), "awaiting_confirmation")

        return await self._execute(turn, draft, media)

    # ── AwaitingConfirmation ─────────────────────────────────────────────

    async def _on_confirmation(
        self, turn: _Turn, pending: AwaitingConfirmation, word: str
    ) -> PipelineReply:
        if word in CONFIRM_WORDS:
            return await self._execute(turn, pending.draft, pending.media)
        if word in EDIT_WORDS:
            await self._store.delete(turn.identity)
            return PipelineReply(replies.EDIT, "fresh")
        return PipelineReply(replies.confirm(pending.draft), "awaiting_confirmation")

    # ── AwaitingReference ────────────────────────────────────────────────

    async def _on_reference(
        self, turn: _Turn, pending: AwaitingReference, word: str
    ) -> PipelineReply:
        if word in MORE_WORDS:
            return await self._next_page(turn, pending)

        answer = turn.message.text.strip()
        if answer.isdigit() and 1 <= int(answer) <= len(pending.options):
            option = pending.options[int(answer) - 1]
            job = ResolvedRef(
                kind="job", id=uuid.UUID(option.id), name=option.name, number=option.number
            )
        else:
            model = CIL_TYPES[pending.draft["type"]]
            try:
                job = await self._resolver.resolve(
                    turn.tenant_id,
                    answer,
                    kind="job",
                    allow_create=model.allow_create_job,
                    source_msg_id=pending.source_msg_id,
                )
            except NotFoundError as e:
                return PipelineReply(
                    replies.pick_job(pending.options, note=f"{e}."), "awaiting_reference"
                )

        draft = _with_job(pending.draft, job)
        await self._store.set(
            turn.identity,
            {"kind": "awaiting_confirmation", "draft": draft},
            merge=True,
        )
        logger.info("reference_resolved", identity=turn.identity, job_id=str(job.id))
        return PipelineReply(replies.confirm(draft), "awaiting_confirmation")

    async def _next_page(self, turn: _Turn, pending: AwaitingReference) -> PipelineReply:
        page = pending.page + 1
        options = await self._job_options(turn.tenant_id, page)
        note = None
        if not options:
            page = 0
            options = await self._job_options(turn.tenant_id, page)
            note = "That's all of them. Back to the start:"
        await self._store.set(
            turn.identity,
            {"options": [o.model_dump(mode="json") for o in options], "page": page},
            merge=True,
        )
        return PipelineReply(replies.pick_job(options, note=note), "awaiting_reference")

    async def _ask_for_job(
        self, turn: _Turn, draft: dict[str, Any], media: MediaRef | None
    ) -> PipelineReply:
        options = await self._job_options(turn.tenant_id, 0)
        await self._store.set(
            turn.identity,
            AwaitingReference(
                draft=draft,
                source_msg_id=draft["source_msg_id"],
                media=media,
                options=options,
                page=0,
            ),
            merge=False,
        )
        return PipelineReply(replies.pick_job(options), "awaiting_reference")

    async def _job_options(self, tenant_id: str, page: int) -> list[JobOption]:
        jobs = await self._resolver.list_open_jobs(
            tenant_id, limit=self._page_size, offset=page * self._page_size
        )
        return [JobOption(id=str(j.id), name=j.name, number=j.number) for j in jobs]

    # ── Clarification / execution ────────────────────────────────────────

    async def _clarify(
        self,
        turn: _Turn,
        draft: dict[str, Any],
        media: MediaRef | None,
        issues: list[FieldIssue],
    ) -> PipelineReply:
        await self._store.set(
            turn.identity,
            AwaitingClarification(
                draft=draft,
                source_msg_id=draft["source_msg_id"],
                media=media,
                issues=[f"{i.loc}: {i.message}" for i in issues],
            ),
            merge=False,
        )
        return PipelineReply(replies.clarify(draft["type"], issues), "awaiting_clarification")

    async def _execute(
        self, turn: _Turn, draft: dict[str, Any], media: MediaRef | None
    ) -> PipelineReply:
        try:
            cil: CILBase = validate_cil(draft)
        except CILValidationError as e:
            return await self._clarify(turn, draft, media, e.issues)

        ctx = DispatchContext(
            tenant_id=turn.tenant_id,
            actor_identity=turn.identity,
            idempotency_key=cil.idempotency_key,
            source_msg_id=cil.source_msg_id,
            media=media,
        )
        result = await self._router.dispatch(cil, ctx)

        if result.ok:
            await self._clear_after_write(turn.identity)
            return PipelineReply(result.summary, "executed")

        error = result.error
        match error:
            case CILValidationError():
                return await self._clarify(turn, draft, media, error.issues)
            case NotFoundError():
                await self._store.delete(turn.identity)
                return PipelineReply(replies.not_found(str(error)), "fresh")
            case ConflictError() if error.code == "DUPLICATE":
                await self._clear_after_write(turn.identity)
                return PipelineReply(replies.ALREADY_LOGGED, "executed")
            case ConflictError():
                await self._store.delete(turn.identity)
                return PipelineReply(replies.denied(str(error)), "fresh")
            case _:
                # Outcome unknown: keep the draft so "yes" retries under the same key.
                await self._store.set(
                    turn.identity,
                    AwaitingConfirmation(
                        draft=draft, source_msg_id=draft["source_msg_id"], media=media
                    ),
                    merge=True,
                )
                logger.warning(
                    "pipeline_write_retryable",
                    identity=turn.identity,
                    code=error.code if error else None,
                    key=cil.idempotency_key,
                )
                return PipelineReply(replies.RETRY, "awaiting_confirmation")

    async def _clear_after_write(self, identity: str) -> None:
        # The write is committed; a failed delete only leaves a stale prompt behind,
        # and the idempotency key makes a repeated "yes" harmless.
        try:
            await self._store.delete(identity)
        except Exception:
            logger.exception("pending_state_clear_failed", identity=identity)

    def _reprompt(self, pending: PendingState) -> PipelineReply:
        match pending:
            case AwaitingConfirmation():
                return PipelineReply(replies.confirm(pending.draft), "awaiting_confirmation")
            case AwaitingReference():
                return PipelineReply(replies.pick_job(pending.options), "awaiting_reference")
            case AwaitingClarification():
                issues = [FieldIssue(loc=i.split(":", 1)[0], message=i) for i in pending.issues]
                return PipelineReply(
                    replies.clarify(pending.draft.get("type", ""), issues),
                    "awaiting_clarification",
                )

    async def _extract(self, text: str, type_hint: str | None) -> dict[str, Any] | None:
        if not text:
            return None
        try:
            return await asyncio.wait_for(
                self._extractor.extract(text, type_hint), timeout=self._extract_timeout_s
            )
        except TimeoutError:
            logger.warning("extract_timeout", timeout_s=self._extract_timeout_s)
        except Exception:
            logger.exception("extract_failed")
        return None


def _with_job(draft: dict[str, Any], job: ResolvedRef) -> dict[str, Any]:
    return {**draft, "job": str(job.id), "job_name": job.name}
