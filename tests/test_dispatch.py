"""Tests for dispatch_message: identity lock → pipeline turn → release.

Covers:
- Normal turn: reply passed through, lock released
- SESSION_BUSY: raises GatewayError without touching the pipeline
- BAD_IDENTITY: empty sender rejected before locking
- Lock released when the pipeline raises
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.conversation.lock import LockManager, LockToken
from src.gateway.dispatch import dispatch_message
from src.gateway.protocol import InboundMessage
from src.infra.errors import GatewayError
from src.pipeline.engine import PipelineReply


def _message(sender: str = "whatsapp:+1 416-555-0000") -> InboundMessage:
    return InboundMessage(from_identity=sender, text="expense 5 nails", message_id="wamid.1")


def _pipeline(reply: PipelineReply | None = None, side_effect=None) -> MagicMock:
    pipeline = MagicMock()
    pipeline.handle = AsyncMock(
        return_value=reply or PipelineReply("Expense logged: $5.00 for nails.", "executed"),
        side_effect=side_effect,
    )
    return pipeline


class TestDispatchMessage:
    @pytest.mark.asyncio
    async def test_reply_returned_and_lock_released(self):
        locks = LockManager(None)
        pipeline = _pipeline()
        reply = await dispatch_message(lock_manager=locks, pipeline=pipeline, message=_message())
        assert reply.phase == "executed"
        pipeline.handle.assert_awaited_once()
        # Released: the same identity can be claimed again.
        assert await locks.acquire("lock:+14165550000") is not None

    @pytest.mark.asyncio
    async def test_busy_identity_rejected(self):
        locks = LockManager(None)
        held = await locks.acquire("lock:+14165550000")
        assert held is not None
        pipeline = _pipeline()

        with pytest.raises(GatewayError) as exc_info:
            await dispatch_message(lock_manager=locks, pipeline=pipeline, message=_message())

        assert exc_info.value.code == "SESSION_BUSY"
        pipeline.handle.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_same_phone_from_different_transports_shares_lock(self):
        locks = LockManager(None)
        await locks.acquire("lock:+14165550000")
        with pytest.raises(GatewayError):
            await dispatch_message(
                lock_manager=locks, pipeline=_pipeline(), message=_message("sms:+14165550000")
            )

    @pytest.mark.asyncio
    async def test_bad_identity(self):
        locks = MagicMock()
        locks.acquire = AsyncMock()
        with pytest.raises(GatewayError) as exc_info:
            await dispatch_message(
                lock_manager=locks, pipeline=_pipeline(), message=_message("   ")
            )
        assert exc_info.value.code == "BAD_IDENTITY"
        locks.acquire.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lock_released_when_pipeline_raises(self):
        token = LockToken(key="lock:+14165550000", value="t-1", backend="local")
        locks = MagicMock()
        locks.acquire = AsyncMock(return_value=token)
        locks.release = AsyncMock()

        with pytest.raises(RuntimeError):
            await dispatch_message(
                lock_manager=locks,
                pipeline=_pipeline(side_effect=RuntimeError("boom")),
                message=_message(),
            )

        locks.release.assert_awaited_once_with("lock:+14165550000", token)
