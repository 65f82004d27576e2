"""Tests for how ReferenceResolver routes a raw reference to its lookups."""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.domain.resolver import ReferenceResolver, ResolvedRef
from src.infra.errors import NotFoundError

TENANT = "14165550000"


def _resolver(*, by_name=None) -> ReferenceResolver:
    resolver = ReferenceResolver(MagicMock())
    resolver._by_id = AsyncMock(return_value=None)  # type: ignore[method-assign]
    resolver._job_by_number = AsyncMock(  # type: ignore[method-assign]
        return_value=ResolvedRef(kind="job", id=uuid.uuid4(), name="Oak", number=12)
    )
    resolver._by_name = AsyncMock(return_value=by_name)  # type: ignore[method-assign]
    resolver.create_draft_job = AsyncMock(  # type: ignore[method-assign]
        side_effect=lambda tenant, name, **_: ResolvedRef(
            kind="job", id=uuid.uuid4(), name=name, number=1
        )
    )
    return resolver


class TestJobWordPrefix:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("ref", ["12", "#12", "job 12", "Job #12", "  job   12 "])
    async def test_numeric_forms_use_job_number(self, ref):
        resolver = _resolver()
        found = await resolver.resolve(TENANT, ref)
        assert found.number == 12
        resolver._job_by_number.assert_awaited_once_with(TENANT, 12)
        resolver._by_name.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_name_lookup_gets_full_text(self):
        resolver = _resolver()
        job = await resolver.resolve(TENANT, "Job Site Trailer", allow_create=True)

        resolver._by_name.assert_awaited_once_with(TENANT, "Job Site Trailer", "job")
        assert resolver.create_draft_job.await_args.args == (TENANT, "Job Site Trailer")
        assert job.name == "Job Site Trailer"

    @pytest.mark.asyncio
    async def test_unknown_name_error_keeps_full_text(self):
        resolver = _resolver()
        with pytest.raises(NotFoundError, match="No job named 'Job Site Trailer'"):
            await resolver.resolve(TENANT, "Job Site Trailer")

    @pytest.mark.asyncio
    async def test_quote_refs_are_never_numbers(self):
        resolver = _resolver(
            by_name=ResolvedRef(kind="quote", id=uuid.uuid4(), name="12")
        )
        found = await resolver.resolve(TENANT, "12", kind="quote")
        assert found.kind == "quote"
        resolver._job_by_number.assert_not_awaited()
