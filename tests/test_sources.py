from __future__ import annotations

import httpx
import pytest

from ciresults.config import RetryConfig
from ciresults.infra.rate_limiter import AsyncTokenBucket
from ciresults.sources.ciconfig_client import CIConfigClient
from ciresults.sources.testgrid_client import TestGridClient

FAST_RETRY = RetryConfig(min_seconds=0.01, max_seconds=0.02, attempts=3)
DASHBOARD = "redhat-openshift-ocp-release-4.9-informing"

TABLE = {
    "query": "origin-ci-test/logs/job-a",
    "changelists": ["102", "101"],
    "timestamps": [1700000100000, 1700000000000],
    "tests": [
        {
            "name": "Overall",
            "original-name": "Overall",
            "messages": ["", ""],
            "short-texts": ["", ""],
            "statuses": [{"count": 1, "value": 12}, {"count": 1, "value": 1}],
            "target": "Overall",
        }
    ],
}


def _client(handler) -> TestGridClient:
    return TestGridClient(
        limiter=AsyncTokenBucket(1000, 10),
        retry=FAST_RETRY,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_list_jobs_reads_summary_keys() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        return httpx.Response(200, json={"job-a": {"overall_status": "PASSING"}, "job-b": {}})

    client = _client(handler)
    try:
        assert await client.list_jobs(DASHBOARD) == ["job-a", "job-b"]
    finally:
        await client.close()
    assert seen == [f"/{DASHBOARD}/summary"]


@pytest.mark.asyncio
async def test_get_job_results_parses_table() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == f"/{DASHBOARD}/table"
        assert request.url.params["tab"] == "job-a"
        assert "show-stale-tests" in request.url.params
        return httpx.Response(200, json=TABLE)

    client = _client(handler)
    try:
        results = await client.get_job_results(DASHBOARD, "job-a")
    finally:
        await client.close()

    assert results.changelists == ["102", "101"]
    assert results.tests[0].original_name == "Overall"
    assert results.tests[0].unpack() == [12, 1]


@pytest.mark.asyncio
async def test_server_errors_are_retried() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls < 3:
            return httpx.Response(503)
        return httpx.Response(200, json={"job-a": {}})

    client = _client(handler)
    try:
        assert await client.list_jobs(DASHBOARD) == ["job-a"]
    finally:
        await client.close()
    assert calls == 3


@pytest.mark.asyncio
async def test_client_errors_are_not_retried() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(404)

    client = _client(handler)
    try:
        with pytest.raises(httpx.HTTPStatusError):
            await client.list_jobs(DASHBOARD)
    finally:
        await client.close()
    assert calls == 1


@pytest.mark.asyncio
async def test_non_object_summary_is_rejected() -> None:
    client = _client(lambda request: httpx.Response(200, json=["job-a"]))
    try:
        with pytest.raises(ValueError, match="summary"):
            await client.list_jobs(DASHBOARD)
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_ci_config_download() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/config"
        assert dict(request.url.params) == {
            "org": "openshift",
            "repo": "release",
            "branch": "master",
            "variant": "nightly-4.9",
        }
        return httpx.Response(
            200,
            json={
                "zz_generated_metadata": {
                    "org": "openshift",
                    "repo": "release",
                    "branch": "master",
                    "variant": "nightly-4.9",
                },
                "tests": [{"as": "e2e-aws", "literal_steps": {"cluster_profile": "aws"}}],
            },
        )

    client = CIConfigClient(
        limiter=AsyncTokenBucket(1000, 10),
        retry=FAST_RETRY,
        transport=httpx.MockTransport(handler),
    )
    try:
        config = await client.download_config("openshift", "release", "master", "nightly-4.9")
    finally:
        await client.close()

    assert config.metadata.variant == "nightly-4.9"
    assert config.tests[0].as_ == "e2e-aws"
    assert config.tests[0].literal_steps.cluster_profile == "aws"
