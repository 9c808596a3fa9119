from __future__ import annotations

import pytest

from ciresults.config import CacheSizes
from ciresults.db.cache import StoreCaches
from ciresults.db.store import NotFoundError, Store
from ciresults.sources.models import BuildStatus, JobTags
from ciresults.sources.models import TestStatus as Status

AWS_TAGS = JobTags(platform="aws", mod="none", testtype="conformance-parallel", tags=("aws", "4.9"))


@pytest.mark.asyncio
async def test_migrations_are_idempotent(db) -> None:
    assert await db.apply_migrations() == []
    row = await db.fetch_one("select count(*) as n from schema_migrations")
    assert row is not None
    assert row["n"] == 2


@pytest.mark.asyncio
async def test_insert_job_and_find(db) -> None:
    store = Store(db.connection)

    with pytest.raises(NotFoundError):
        await store.find_job("job-a")

    job_id = await store.insert_job("job-a", "dash-4.9", AWS_TAGS)

    assert await store.find_job("job-a") == job_id
    assert await store.job_tags(job_id) == ["4.9", "aws"]
    row = await db.fetch_one("select platform, mod, testtype, dashboard from jobs where id = ?", (job_id,))
    assert row == {"platform": "aws", "mod": "none", "testtype": "conformance-parallel", "dashboard": "dash-4.9"}


@pytest.mark.asyncio
async def test_second_insert_keeps_first_classification(db) -> None:
    store = Store(db.connection)
    first = await store.insert_job("job-a", "dash-4.9", AWS_TAGS)

    second = await store.insert_job(
        "job-a", "dash-4.9", JobTags(platform="gcp", mod="fips", testtype="other", tags=("gcp",))
    )

    assert second == first
    assert await store.job_tags(first) == ["4.9", "aws"]
    counts = await store.count_rows()
    assert counts["jobs"] == 1
    assert counts["job_tags"] == 2


@pytest.mark.asyncio
async def test_upserts_are_idempotent(db) -> None:
    store = Store(db.connection)
    job_id = await store.insert_job("job-a", "dash-4.9", AWS_TAGS)

    build_id = await store.upsert_build(job_id, "101", 1000, BuildStatus.SUCCESS)
    test_id = await store.upsert_test("Overall")
    assert await store.upsert_test_result(build_id, test_id, Status.PASS) is True

    assert await store.upsert_build(job_id, "101", 1000, BuildStatus.SUCCESS) == build_id
    assert await store.upsert_test("Overall") == test_id
    assert await store.upsert_test_result(build_id, test_id, Status.FAIL) is False

    counts = await store.count_rows()
    assert (counts["builds"], counts["tests"], counts["test_results"]) == (1, 1, 1)
    row = await db.fetch_one("select status from test_results where build_id = ? and test_id = ?", (build_id, test_id))
    assert row is not None
    assert row["status"] == Status.PASS


@pytest.mark.asyncio
async def test_build_numbers_are_scoped_to_jobs(db) -> None:
    store = Store(db.connection)
    job_a = await store.insert_job("job-a", "dash", AWS_TAGS)
    job_b = await store.insert_job("job-b", "dash", AWS_TAGS)

    build_a = await store.upsert_build(job_a, "101", 1000, BuildStatus.SUCCESS)
    build_b = await store.upsert_build(job_b, "101", 1000, BuildStatus.FAILURE)

    assert build_a != build_b


@pytest.mark.asyncio
async def test_lru_cache_serves_repeat_lookups(db) -> None:
    store = Store(db.connection, StoreCaches.lru(CacheSizes(jobs=2, builds=2, tests=2)))
    job_id = await store.insert_job("job-a", "dash", AWS_TAGS)
    await store.upsert_test("Overall")

    # rows removed behind the cache's back are still served from it
    await db.execute("delete from tests")
    await db.execute("delete from job_tags")
    await db.execute("delete from jobs")

    assert await store.find_job("job-a") == job_id
    assert len(store.caches.tests) == 1


@pytest.mark.asyncio
async def test_disabled_cache_always_reads_the_database(db) -> None:
    store = Store(db.connection, StoreCaches.disabled())
    await store.insert_job("job-a", "dash", AWS_TAGS)
    await db.execute("delete from job_tags")
    await db.execute("delete from jobs")

    with pytest.raises(NotFoundError):
        await store.find_job("job-a")


@pytest.mark.asyncio
async def test_misses_are_not_cached(db) -> None:
    store = Store(db.connection, StoreCaches.lru())

    with pytest.raises(NotFoundError):
        await store.find_job("job-a")
    await db.execute(
        "insert into jobs (name, dashboard, platform, mod, testtype) values ('job-a', 'dash', 'aws', 'none', 'other')"
    )

    assert await store.find_job("job-a") > 0


@pytest.mark.asyncio
async def test_list_tests_is_sorted(db) -> None:
    store = Store(db.connection)
    for name in ("zeta", "Overall", "alpha"):
        await store.upsert_test(name)

    assert await store.list_tests() == ["Overall", "alpha", "zeta"]
    with pytest.raises(NotFoundError):
        await store.find_test("missing")


@pytest.mark.asyncio
async def test_reclassify_job_replaces_tags(db) -> None:
    store = Store(db.connection)
    job_id = await store.insert_job("job-a", "dash", AWS_TAGS)

    await store.reclassify_job(job_id, JobTags(platform="gcp", mod="ovn", testtype="other", tags=("gcp", "ovn")))

    assert await store.job_tags(job_id) == ["gcp", "ovn"]
    row = await db.fetch_one("select platform, mod from jobs where id = ?", (job_id,))
    assert row == {"platform": "gcp", "mod": "ovn"}
    assert await store.list_jobs() == [{"id": job_id, "name": "job-a", "dashboard": "dash"}]
