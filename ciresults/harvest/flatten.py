from __future__ import annotations

from ciresults.sources.models import BuildRecord, DiscoveredJob, JobResults, TestStatus


def flatten_job_results(job: DiscoveredJob, results: JobResults) -> list[BuildRecord]:
    """Turn TestGrid's column-per-build grid into one record per build.

    Cells with no result are dropped; a test whose run-length encoded status
    list is shorter than the build axis has no result for the missing builds.
    """
    if len(results.changelists) != len(results.timestamps):
        raise ValueError(
            f"job {job.name}: {len(results.changelists)} changelists but {len(results.timestamps)} timestamps"
        )
    unpacked = {test.name: test.unpack() for test in results.tests}
    builds: list[BuildRecord] = []
    for idx, number in enumerate(results.changelists):
        tests: dict[str, int] = {}
        for test_name, statuses in unpacked.items():
            status = statuses[idx] if idx < len(statuses) else TestStatus.NO_RESULT
            if status == TestStatus.NO_RESULT:
                continue
            tests[test_name] = status
        builds.append(
            BuildRecord(
                dashboard=job.dashboard,
                job_name=job.name,
                number=number,
                timestamp=results.timestamps[idx],
                tests=tests,
            )
        )
    return builds
