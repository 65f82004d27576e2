"""Integration tests for ReferenceResolver: precedence, numbering, picker listing."""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import update

from src.infra.errors import NotFoundError
from src.store.models import JobRecord

pytestmark = pytest.mark.integration

TENANT = "14165550000"


async def _set_job(db_session_factory, job_id, **values) -> None:
    async with db_session_factory() as db:
        await db.execute(update(JobRecord).where(JobRecord.id == job_id).values(**values))
        await db.commit()


class TestPrecedence:
    async def test_number_beats_name(self, resolver) -> None:
        named_12 = await resolver.create_draft_job(TENANT, "12")  # job #1 named "12"
        for i in range(2, 13):
            await resolver.create_draft_job(TENANT, f"Job {i}")

        found = await resolver.resolve(TENANT, "12")
        assert found.number == 12
        assert found.id != named_12.id

    async def test_hash_and_job_prefix(self, resolver) -> None:
        job = await resolver.create_draft_job(TENANT, "Oak St re-roof")
        assert (await resolver.resolve(TENANT, "#1")).id == job.id
        assert (await resolver.resolve(TENANT, "job 1")).id == job.id

    async def test_unknown_number_has_no_name_fallback(self, resolver) -> None:
        await resolver.create_draft_job(TENANT, "7")
        with pytest.raises(NotFoundError, match="No job #7"):
            await resolver.resolve(TENANT, "7")

    async def test_uuid_lookup(self, resolver) -> None:
        job = await resolver.create_draft_job(TENANT, "Maple Ave deck")
        assert (await resolver.resolve(TENANT, str(job.id))).name == "Maple Ave deck"

    async def test_uuid_beats_a_job_named_with_that_uuid(self, resolver) -> None:
        target = await resolver.create_draft_job(TENANT, "Maple Ave deck")
        decoy = await resolver.create_draft_job(TENANT, str(target.id))

        found = await resolver.resolve(TENANT, str(target.id))
        assert found.id == target.id
        assert found.id != decoy.id

    async def test_uuid_shape_never_falls_back_to_name(self, resolver) -> None:
        missing = "0f6b2a52-5d1c-4c1e-9a43-2f7b3c1d9e10"
        await resolver.create_draft_job(TENANT, missing)
        with pytest.raises(NotFoundError, match="No job with id"):
            await resolver.resolve(TENANT, missing)

    async def test_uuid_of_other_tenant_not_found(self, resolver) -> None:
        job = await resolver.create_draft_job("other", "Maple Ave deck")
        with pytest.raises(NotFoundError):
            await resolver.resolve(TENANT, str(job.id))

    async def test_name_case_insensitive(self, resolver) -> None:
        job = await resolver.create_draft_job(TENANT, "Oak St Re-Roof")
        assert (await resolver.resolve(TENANT, "oak st re-roof")).id == job.id

    async def test_name_starting_with_job(self, resolver) -> None:
        trailer = await resolver.create_draft_job(TENANT, "Job Site Trailer")
        await resolver.create_draft_job(TENANT, "Site Trailer")
        assert (await resolver.resolve(TENANT, "job site trailer")).id == trailer.id

    async def test_unknown_name(self, resolver) -> None:
        with pytest.raises(NotFoundError, match="No job named 'Nowhere'"):
            await resolver.resolve(TENANT, "Nowhere")


class TestCreate:
    async def test_unknown_name_created_when_allowed(self, resolver) -> None:
        job = await resolver.resolve(TENANT, "New build", allow_create=True, source_msg_id="m1")
        assert job.number == 1
        assert job.name == "New build"

    async def test_created_job_keeps_job_word_in_name(self, resolver) -> None:
        job = await resolver.resolve(TENANT, "Job Site Trailer", allow_create=True)
        assert job.name == "Job Site Trailer"

    async def test_default_name_for_empty_ref(self, resolver) -> None:
        job = await resolver.resolve(TENANT, None, allow_create=True, default_name="Jane - Lead")
        assert job.name == "Jane - Lead"

    async def test_empty_ref_without_create(self, resolver) -> None:
        with pytest.raises(NotFoundError):
            await resolver.resolve(TENANT, "  ")

    async def test_numbers_per_tenant(self, resolver) -> None:
        a = await resolver.create_draft_job(TENANT, "A")
        b = await resolver.create_draft_job("other", "B")
        assert a.number == 1
        assert b.number == 1

    async def test_concurrent_creation_distinct_numbers(self, resolver) -> None:
        jobs = await asyncio.gather(
            *[resolver.create_draft_job(TENANT, f"Job {i}") for i in range(3)]
        )
        assert sorted(j.number for j in jobs) == [1, 2, 3]


class TestListing:
    async def test_open_jobs_active_first(self, resolver, db_session_factory) -> None:
        first = await resolver.create_draft_job(TENANT, "First")
        second = await resolver.create_draft_job(TENANT, "Second")
        closed = await resolver.create_draft_job(TENANT, "Closed")
        await _set_job(db_session_factory, first.id, active=True)
        await _set_job(db_session_factory, closed.id, status="Closed")

        jobs = await resolver.list_open_jobs(TENANT, limit=8)
        assert [j.id for j in jobs] == [first.id, second.id]
        assert (await resolver.active_job(TENANT)).id == first.id

    async def test_paging(self, resolver) -> None:
        for i in range(5):
            await resolver.create_draft_job(TENANT, f"Job {i}")
        page_one = await resolver.list_open_jobs(TENANT, limit=2, offset=0)
        page_three = await resolver.list_open_jobs(TENANT, limit=2, offset=4)
        assert len(page_one) == 2
        assert len(page_three) == 1

    async def test_no_active_job(self, resolver) -> None:
        await resolver.create_draft_job(TENANT, "Idle")
        assert await resolver.active_job(TENANT) is None
