from __future__ import annotations

import logging
from datetime import UTC, datetime

import aiosqlite

from ciresults.db.store import NotFoundError, Store
from ciresults.sources.models import BuildStatus, TestStatus
from ciresults.stats.models import Stats, StatsRequest, StatsRow, StatsValues
from ciresults.stats.query import DIMENSIONS, TEST_RESULTS_JOIN, QueryBuilder, job_filter_query, placeholders

logger = logging.getLogger(__name__)

DAY_MS = 86_400_000

_BUILD_OUTCOMES = {
    BuildStatus.SUCCESS: "pass_",
    BuildStatus.FAILURE: "fail",
}

_TEST_OUTCOMES = {
    TestStatus.PASS: "pass_",
    TestStatus.PASS_WITH_SKIPS: "pass_",
    TestStatus.FLAKY: "flake",
    TestStatus.FAIL: "fail",
}


def window_bounds(periods: list[int], now_ms: int) -> list[tuple[int, int]]:
    """Lay the windows back to back, newest first, ending at ``now_ms``.

    Each bound is half open: ``start <= timestamp < end``.
    """
    bounds = []
    end = now_ms
    for days in periods:
        start = end - days * DAY_MS
        bounds.append((start, end))
        end = start
    return bounds


class StatsEngine:
    """Pass/flake/fail counts over trailing windows, grouped by job or test attributes."""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn

    async def build_stats(self, request: StatsRequest, now: datetime | None = None) -> Stats:
        now = now or datetime.now(tz=UTC)
        now_ms = int(now.timestamp() * 1000)
        stats = Stats()

        query = QueryBuilder("builds b")
        query.join("jobs j on j.id = b.job_id")

        if request.filter:
            job_ids = await self._find_job_ids(request)
            if not job_ids:
                return stats
            query.where(f"j.id in ({placeholders(len(job_ids))})", *job_ids)

        test_level = False
        for column in request.columns:
            dimension = DIMENSIONS[column]
            dimension.apply(query)
            test_level = test_level or dimension.test_level

        if request.testname:
            try:
                test_id = await Store(self.conn).find_test(request.testname)
            except NotFoundError:
                return stats
            if test_level:
                query.where("tr.test_id = ?", test_id)
            else:
                query.join(TEST_RESULTS_JOIN + " and tr.test_id = ?", test_id)
                test_level = True

        status_expr = "tr.status" if test_level else "b.status"
        status_idx = query.select(status_expr)
        query.group_by(status_expr)

        bounds = window_bounds(request.periods, now_ms)
        for start, end in bounds:
            query.select("sum(? <= b.timestamp and b.timestamp < ?)", start, end)
        oldest = bounds[-1][0] if bounds else now_ms
        query.where("b.timestamp >= ? and b.timestamp < ?", oldest, now_ms)

        sql, params = query.build()
        logger.debug("stats query", extra={"sql": sql, "params": len(params)})
        rows = await self.conn.execute_fetchall(sql, params)

        outcomes = _TEST_OUTCOMES if test_level else _BUILD_OUTCOMES
        by_group: dict[tuple[str, ...], StatsRow] = {}
        for row in rows:
            status = row[status_idx]
            outcome = outcomes.get(status)
            if outcome is None:
                logger.warning(
                    "unexpected status in stats row",
                    extra={"status": status, "test_level": test_level},
                )
                continue
            key = tuple(str(row[idx]) for idx in range(status_idx))
            group = by_group.get(key)
            if group is None:
                group = StatsRow(columns=list(key), values=[StatsValues() for _ in bounds])
                by_group[key] = group
                stats.data.append(group)
            for idx, values in enumerate(group.values):
                count = row[status_idx + 1 + idx] or 0
                setattr(values, outcome, getattr(values, outcome) + int(count))
        return stats

    async def _find_job_ids(self, request: StatsRequest) -> list[int]:
        sql, params = job_filter_query(request.filter)
        rows = await self.conn.execute_fetchall(sql, params)
        return [int(row[0]) for row in rows]
