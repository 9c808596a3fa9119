from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import aiosqlite

from ciresults.db.cache import StoreCaches, cached_lookup
from ciresults.sources.models import JobTags


class NotFoundError(LookupError):
    pass


class Store:
    """Idempotent reads and writes of jobs, builds, tests and their results.

    A store wraps one connection. Inside the ingestion transaction it is the
    only writer, so the lookup caches need no locking.
    """

    def __init__(self, conn: aiosqlite.Connection, caches: StoreCaches | None = None) -> None:
        self.conn = conn
        self.caches = caches or StoreCaches.disabled()

    @cached_lookup("jobs")
    async def find_job(self, name: str) -> int:
        row = await self._fetch_one("select id from jobs where name = ?", (name,))
        if row is None:
            raise NotFoundError(f"job {name} does not exist")
        return int(row[0])

    async def find_test(self, name: str) -> int:
        row = await self._fetch_one("select id from tests where name = ?", (name,))
        if row is None:
            raise NotFoundError(f"test {name!r} does not exist")
        return int(row[0])

    async def insert_job(self, name: str, dashboard: str, tags: JobTags) -> int:
        async with self.conn.execute(
            """
            insert into jobs (name, dashboard, platform, mod, testtype)
            values (?, ?, ?, ?, ?)
            on conflict (name) do nothing
            """,
            (name, dashboard, tags.platform, tags.mod, tags.testtype),
        ) as cur:
            created = cur.rowcount == 1
            job_id = cur.lastrowid
        if not created:
            # someone else classified it first; theirs stands
            return await self.find_job(name)
        await self._insert_tags(job_id, tags.tags)
        self.caches.jobs[name] = job_id
        return job_id

    @cached_lookup("builds", key=lambda job_id, number, *_: (job_id, number))
    async def upsert_build(self, job_id: int, number: str, timestamp: int, status: int) -> int:
        select = "select id from builds where job_id = ? and number = ?"
        row = await self._fetch_one(select, (job_id, number))
        if row is not None:
            return int(row[0])
        async with self.conn.execute(
            """
            insert into builds (job_id, number, timestamp, status)
            values (?, ?, ?, ?)
            on conflict (job_id, number) do nothing
            """,
            (job_id, number, timestamp, int(status)),
        ) as cur:
            if cur.rowcount == 1:
                return int(cur.lastrowid)
        return await self._require_id(select, (job_id, number))

    @cached_lookup("tests")
    async def upsert_test(self, name: str) -> int:
        select = "select id from tests where name = ?"
        row = await self._fetch_one(select, (name,))
        if row is not None:
            return int(row[0])
        async with self.conn.execute(
            "insert into tests (name) values (?) on conflict (name) do nothing",
            (name,),
        ) as cur:
            if cur.rowcount == 1:
                return int(cur.lastrowid)
        return await self._require_id(select, (name,))

    async def upsert_test_result(self, build_id: int, test_id: int, status: int) -> bool:
        """Record a result; False when the pair was already stored."""
        async with self.conn.execute(
            """
            insert into test_results (build_id, test_id, status)
            values (?, ?, ?)
            on conflict (build_id, test_id) do nothing
            """,
            (build_id, test_id, int(status)),
        ) as cur:
            return cur.rowcount == 1

    async def list_tests(self) -> list[str]:
        rows = await self.conn.execute_fetchall("select name from tests order by name")
        return [row[0] for row in rows]

    async def list_jobs(self) -> list[dict[str, Any]]:
        rows = await self.conn.execute_fetchall("select id, name, dashboard from jobs order by id")
        return [{"id": int(row[0]), "name": row[1], "dashboard": row[2]} for row in rows]

    async def job_tags(self, job_id: int) -> list[str]:
        rows = await self.conn.execute_fetchall(
            "select tag from job_tags where job_id = ? order by tag",
            (job_id,),
        )
        return [row[0] for row in rows]

    async def reclassify_job(self, job_id: int, tags: JobTags) -> None:
        """Overwrite a job's write-once classification.

        This is the only path that mutates a stored job; it exists for
        backfills after the classification rules change.
        """
        await self.conn.execute(
            "update jobs set platform = ?, mod = ?, testtype = ? where id = ?",
            (tags.platform, tags.mod, tags.testtype, job_id),
        )
        await self.conn.execute("delete from job_tags where job_id = ?", (job_id,))
        await self._insert_tags(job_id, tags.tags)

    async def count_rows(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for table in ("jobs", "job_tags", "builds", "tests", "test_results"):
            row = await self._fetch_one(f"select count(*) from {table}")
            counts[table] = int(row[0]) if row is not None else 0
        return counts

    async def _insert_tags(self, job_id: int, tags: Sequence[str]) -> None:
        if not tags:
            return
        await self.conn.executemany(
            "insert into job_tags (job_id, tag) values (?, ?) on conflict (job_id, tag) do nothing",
            [(job_id, tag) for tag in tags],
        )

    async def _fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Any:
        async with self.conn.execute(sql, params) as cur:
            return await cur.fetchone()

    async def _require_id(self, sql: str, params: Sequence[Any]) -> int:
        row = await self._fetch_one(sql, params)
        if row is None:
            raise RuntimeError(f"row vanished after conflicting insert: {params!r}")
        return int(row[0])
