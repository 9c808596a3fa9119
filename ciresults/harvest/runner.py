from __future__ import annotations

import logging
import time
from datetime import UTC, datetime

from ciresults.config import CIResultsSettings
from ciresults.db.pool import Database
from ciresults.db.store import Store
from ciresults.harvest.classifier import NEVER_STABLE_JOBS, JobClassifier
from ciresults.harvest.pipeline import IngestPipeline, IngestSummary
from ciresults.harvest.step_tagger import StepTagger
from ciresults.infra.scheduler import AsyncScheduler, TaskSpec
from ciresults.sources.ciconfig_client import CIConfigClient
from ciresults.sources.testgrid_client import ResultSource

logger = logging.getLogger(__name__)


class IngestRunner:
    def __init__(
        self,
        settings: CIResultsSettings,
        db: Database,
        source: ResultSource,
        ciconfig: CIConfigClient | None = None,
    ) -> None:
        self.settings = settings
        self.db = db
        self.source = source
        self.ciconfig = ciconfig
        self.last_pipeline: IngestPipeline | None = None

    async def build_classifier(self) -> JobClassifier:
        never_stable = NEVER_STABLE_JOBS | self.settings.never_stable_jobs
        if self.ciconfig is None:
            return JobClassifier(never_stable=never_stable)
        tagger = StepTagger()
        for variant in self.settings.ci_config_variants:
            config = await self.ciconfig.download_config(
                self.settings.ci_config_org,
                self.settings.ci_config_repo,
                self.settings.ci_config_branch,
                variant,
            )
            tagger.add_config(config)
        logger.info(
            "step tagger loaded",
            extra={"variants": len(self.settings.ci_config_variants), "jobs": len(tagger)},
        )
        return JobClassifier(step_tagger=tagger, never_stable=never_stable)

    async def run_once(self) -> IngestSummary | None:
        """Run one ingestion and record it in ops_ingest_run.

        Returns None when the run failed; the error is logged, not raised.
        """
        started = datetime.now(tz=UTC)
        start_perf = time.perf_counter()
        summary = IngestSummary()
        status = "ok"
        error_code = None
        error_message = None
        try:
            classifier = await self.build_classifier()
            pipeline = IngestPipeline(
                self.db,
                self.source,
                classifier,
                self.settings.dashboards,
                fetch_workers=self.settings.fetch_workers,
                jobs_queue_size=self.settings.jobs_queue_size,
                builds_queue_size=self.settings.builds_queue_size,
                cache_sizes=self.settings.cache_sizes,
                rate_log_interval=self.settings.rate_log_interval,
            )
            self.last_pipeline = pipeline
            summary = pipeline.summary
            return await pipeline.run()
        except Exception as exc:
            status = "error"
            error_code = type(exc).__name__
            error_message = str(exc)
            logger.exception("ingest run failed")
            return None
        finally:
            elapsed = int((time.perf_counter() - start_perf) * 1000)
            finished = datetime.now(tz=UTC)
            # a failed run rolled back everything it wrote
            written = (summary.builds_written, summary.results_written) if status == "ok" else (0, 0)
            await self.db.execute(
                """
                insert into ops_ingest_run(
                    status, jobs_discovered, builds_fetched, builds_skipped, builds_written,
                    results_written, latency_ms, error_code, error_message, started_at, finished_at
                )
                values (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    status,
                    summary.jobs_discovered,
                    summary.builds_fetched,
                    summary.builds_skipped,
                    *written,
                    elapsed,
                    error_code,
                    error_message,
                    started.isoformat(),
                    finished.isoformat(),
                ),
            )

    async def run_forever(self) -> None:
        scheduler = AsyncScheduler(
            [TaskSpec(name="ingest", interval_sec=self.settings.ingest_interval, job=self.run_once)]
        )
        try:
            await scheduler.run()
        finally:
            await scheduler.stop()


async def reclassify_all(db: Database, classifier: JobClassifier) -> int:
    """Recompute the classification of every stored job in one transaction."""
    async with db.transaction() as conn:
        store = Store(conn)
        jobs = await store.list_jobs()
        for job in jobs:
            await store.reclassify_job(job["id"], classifier(job["dashboard"], job["name"]))
    logger.info("reclassified jobs", extra={"jobs": len(jobs)})
    return len(jobs)

