"""Three-stage ingestion: discover jobs, fetch their results, persist builds.

Stages run as asyncio worker pools joined by bounded queues, so a fast stage
waits on ``put`` instead of buffering without limit. The first error from
any worker is kept in an ``ErrorRegister``; after that every worker keeps
draining its input without doing work, which lets all stages shut down
without anyone blocking on a full queue. The persist stage writes the whole
run in one transaction and commits only when nothing failed.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from enum import StrEnum

from ciresults.config import CacheSizes
from ciresults.db.cache import StoreCaches
from ciresults.db.pool import Database, Transaction
from ciresults.db.store import NotFoundError, Store
from ciresults.harvest.flatten import flatten_job_results
from ciresults.infra.rate_counter import RateCounter
from ciresults.sources.models import BuildRecord, DiscoveredJob, JobTags
from ciresults.sources.testgrid_client import ResultSource

logger = logging.getLogger(__name__)

Classify = Callable[[str, str], JobTags]

_END = object()


class RunState(StrEnum):
    DISCOVERING = "discovering"
    FETCHING = "fetching"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


class ErrorRegister:
    """Holds the first error reported by any worker; later ones are dropped."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._error: BaseException | None = None

    def record(self, exc: BaseException) -> bool:
        with self._lock:
            if self._error is not None:
                return False
            self._error = exc
            return True

    @property
    def error(self) -> BaseException | None:
        with self._lock:
            return self._error

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass(slots=True)
class IngestSummary:
    jobs_discovered: int = 0
    builds_fetched: int = 0
    builds_skipped: int = 0
    builds_written: int = 0
    results_written: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class IngestPipeline:
    def __init__(
        self,
        db: Database,
        source: ResultSource,
        classify: Classify,
        dashboards: list[str],
        *,
        fetch_workers: int = 5,
        jobs_queue_size: int = 100,
        builds_queue_size: int = 1000,
        cache_sizes: CacheSizes | None = None,
        rate_counter: RateCounter | None = None,
        rate_log_interval: float = 1.0,
    ) -> None:
        if fetch_workers < 1:
            raise ValueError("fetch_workers must be >= 1")
        self.db = db
        self.source = source
        self.classify = classify
        self.dashboards = list(dashboards)
        self.fetch_workers = fetch_workers
        self.jobs_queue_size = jobs_queue_size
        self.builds_queue_size = builds_queue_size
        self.cache_sizes = cache_sizes or CacheSizes()
        self.rate_counter = rate_counter or RateCounter()
        self.rate_log_interval = rate_log_interval
        self.errors = ErrorRegister()
        self.summary = IngestSummary()
        self._state = RunState.DISCOVERING
        self._started = False

    @property
    def state(self) -> RunState:
        return self._state

    async def run(self) -> IngestSummary:
        if self._started:
            raise RuntimeError("an ingest pipeline runs only once")
        self._started = True
        jobs: asyncio.Queue[object] = asyncio.Queue(maxsize=self.jobs_queue_size)
        builds: asyncio.Queue[object] = asyncio.Queue(maxsize=self.builds_queue_size)
        reporter = asyncio.create_task(self._report_rate())
        try:
            await asyncio.gather(
                self._stage(
                    "discover",
                    1,
                    lambda: self._discover(jobs),
                    finalize=lambda: _close(jobs, consumers=self.fetch_workers),
                    next_state=RunState.FETCHING,
                ),
                self._stage(
                    "fetch",
                    self.fetch_workers,
                    lambda: self._fetch(jobs, builds),
                    finalize=lambda: _close(builds, consumers=1),
                    next_state=RunState.PERSISTING,
                ),
                self._stage("persist", 1, lambda: self._persist(builds)),
            )
        except BaseException:
            self._state = RunState.FAILED
            raise
        finally:
            reporter.cancel()
            await asyncio.gather(reporter, return_exceptions=True)

        error = self.errors.error
        if error is not None:
            self._state = RunState.FAILED
            raise error
        self._state = RunState.DONE
        logger.info("ingest pipeline finished", extra=self.summary.as_dict())
        return self.summary

    async def _stage(
        self,
        name: str,
        workers: int,
        work: Callable[[], Awaitable[None]],
        finalize: Callable[[], Awaitable[None]] | None = None,
        next_state: RunState | None = None,
    ) -> None:
        await asyncio.gather(*(self._guard(name, work) for _ in range(workers)))
        if finalize is not None:
            await self._guard(name, finalize)
        if next_state is not None and self._state not in (RunState.DONE, RunState.FAILED):
            self._state = next_state

    async def _guard(self, stage: str, work: Callable[[], Awaitable[None]]) -> None:
        try:
            await work()
        except Exception as exc:
            self._fail(stage, exc)

    def _fail(self, stage: str, exc: Exception) -> None:
        if self.errors.record(exc):
            logger.error("ingest stage failed", exc_info=exc, extra={"stage": stage})
        else:
            logger.debug("ingest stage failed after an earlier error", extra={"stage": stage, "error": repr(exc)})

    async def _discover(self, jobs: asyncio.Queue[object]) -> None:
        for dashboard in self.dashboards:
            if self.errors.failed:
                return
            names = await self.source.list_jobs(dashboard)
            logger.info("discovered jobs", extra={"dashboard": dashboard, "jobs": len(names)})
            for name in names:
                if self.errors.failed:
                    return
                await jobs.put(DiscoveredJob(dashboard=dashboard, name=name))
                self.summary.jobs_discovered += 1

    async def _fetch(self, jobs: asyncio.Queue[object], builds: asyncio.Queue[object]) -> None:
        while True:
            item = await jobs.get()
            if item is _END:
                return
            if self.errors.failed:
                continue
            assert isinstance(item, DiscoveredJob)
            try:
                results = await self.source.get_job_results(item.dashboard, item.name)
                records = flatten_job_results(item, results)
            except Exception as exc:
                self._fail("fetch", exc)
                continue
            for record in records:
                await builds.put(record)
            self.summary.builds_fetched += len(records)

    async def _persist(self, builds: asyncio.Queue[object]) -> None:
        tx: Transaction | None = None
        store: Store | None = None
        try:
            tx = await self.db.begin()
            store = Store(tx.conn, StoreCaches.lru(self.cache_sizes))
        except Exception as exc:
            self._fail("persist", exc)
        try:
            while True:
                item = await builds.get()
                if item is _END:
                    break
                if store is None or self.errors.failed:
                    continue
                assert isinstance(item, BuildRecord)
                try:
                    await self._persist_build(store, item)
                except Exception as exc:
                    self._fail("persist", exc)
            if tx is not None:
                if self.errors.failed:
                    logger.warning("rolling back ingest transaction")
                    await tx.rollback()
                else:
                    await tx.commit()
        finally:
            if tx is not None:
                await tx.rollback()

    async def _persist_build(self, store: Store, build: BuildRecord) -> None:
        if build.is_running:
            # stored on a later run, once the build has finished
            self.summary.builds_skipped += 1
            return
        job_id = await self._resolve_job(store, build)
        build_id = await store.upsert_build(job_id, build.number, build.timestamp, build.status)
        for test_name, status in build.tests.items():
            test_id = await store.upsert_test(test_name)
            if await store.upsert_test_result(build_id, test_id, status):
                self.summary.results_written += 1
            self.rate_counter.incr()
        self.summary.builds_written += 1

    async def _resolve_job(self, store: Store, build: BuildRecord) -> int:
        try:
            return await store.find_job(build.job_name)
        except NotFoundError:
            tags = self.classify(build.dashboard, build.job_name)
            return await store.insert_job(build.job_name, build.dashboard, tags)

    async def _report_rate(self) -> None:
        while True:
            await asyncio.sleep(self.rate_log_interval)
            logger.info(
                "insert rate",
                extra={"rows_per_sec": self.rate_counter.rate(), "state": str(self._state)},
            )


async def _close(queue: asyncio.Queue[object], consumers: int) -> None:
    for _ in range(consumers):
        await queue.put(_END)
