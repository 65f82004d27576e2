"""Tests for LockManager: durable claim, busy detection, local fallback, fenced release."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from src.conversation.lock import LockManager, LockToken


def _durable_manager(*, claim=None, release=None, timeout: float = 0.5) -> LockManager:
    manager = LockManager(MagicMock(), acquire_timeout_s=timeout, stale_after_seconds=300)
    manager._claim_durable = claim or AsyncMock(return_value=True)  # type: ignore[method-assign]
    manager._release_durable = release or AsyncMock()  # type: ignore[method-assign]
    return manager


class TestDurableBackend:
    @pytest.mark.asyncio
    async def test_acquire_returns_durable_token(self):
        manager = _durable_manager()
        token = await manager.acquire("lock:+1")
        assert token is not None
        assert token.backend == "durable"
        assert token.key == "lock:+1"

    @pytest.mark.asyncio
    async def test_busy_returns_none(self):
        manager = _durable_manager(claim=AsyncMock(return_value=False))
        assert await manager.acquire("lock:+1") is None

    @pytest.mark.asyncio
    async def test_release_passes_token_value(self):
        release = AsyncMock()
        manager = _durable_manager(release=release)
        token = await manager.acquire("lock:+1")
        await manager.release("lock:+1", token)
        release.assert_awaited_once_with("lock:+1", token.value)

    @pytest.mark.asyncio
    async def test_release_failure_is_swallowed(self):
        manager = _durable_manager(release=AsyncMock(side_effect=OperationalError("x", {}, None)))
        token = await manager.acquire("lock:+1")
        await manager.release("lock:+1", token)  # must not raise

    @pytest.mark.asyncio
    async def test_tokens_are_unique(self):
        manager = _durable_manager()
        t1 = await manager.acquire("lock:a")
        t2 = await manager.acquire("lock:b")
        assert t1.value != t2.value


class TestLocalFallback:
    @pytest.mark.asyncio
    async def test_unreachable_backend_falls_back_to_local(self):
        manager = _durable_manager(claim=AsyncMock(side_effect=OperationalError("x", {}, None)))
        token = await manager.acquire("lock:+1")
        assert token is not None
        assert token.backend == "local"

    @pytest.mark.asyncio
    async def test_slow_backend_falls_back_to_local(self):
        async def _hang(key, value):
            await asyncio.sleep(10)

        manager = _durable_manager(claim=_hang, timeout=0.05)
        token = await manager.acquire("lock:+1")
        assert token is not None
        assert token.backend == "local"

    @pytest.mark.asyncio
    async def test_timed_out_claim_is_deleted_in_background(self):
        async def _hang(key, value):
            await asyncio.sleep(10)

        release = AsyncMock()
        manager = _durable_manager(claim=_hang, release=release, timeout=0.05)
        token = await manager.acquire("lock:+1")
        await asyncio.gather(*manager._cleanup)

        release.assert_awaited_once_with("lock:+1", token.value)
        assert not manager._cleanup

    @pytest.mark.asyncio
    async def test_background_delete_failure_is_swallowed(self):
        release = AsyncMock(side_effect=OperationalError("x", {}, None))
        manager = _durable_manager(
            claim=AsyncMock(side_effect=OperationalError("x", {}, None)), release=release
        )
        token = await manager.acquire("lock:+1")
        await asyncio.gather(*manager._cleanup)

        assert token.backend == "local"
        release.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_local_excludes_second_turn(self):
        manager = LockManager(None)
        first = await manager.acquire("lock:+1")
        assert first is not None
        assert await manager.acquire("lock:+1") is None

    @pytest.mark.asyncio
    async def test_local_release_then_reacquire(self):
        manager = LockManager(None)
        first = await manager.acquire("lock:+1")
        await manager.release("lock:+1", first)
        second = await manager.acquire("lock:+1")
        assert second is not None
        assert second.value != first.value

    @pytest.mark.asyncio
    async def test_local_release_with_stale_token_keeps_holder(self):
        manager = LockManager(None)
        holder = await manager.acquire("lock:+1")
        stale = LockToken(key="lock:+1", value="not-the-holder", backend="local")
        await manager.release("lock:+1", stale)
        assert await manager.acquire("lock:+1") is None
        await manager.release("lock:+1", holder)
        assert await manager.acquire("lock:+1") is not None

    @pytest.mark.asyncio
    async def test_distinct_keys_do_not_contend(self):
        manager = LockManager(None)
        assert await manager.acquire("lock:a") is not None
        assert await manager.acquire("lock:b") is not None
