from __future__ import annotations

import logging
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from ciresults.config import RetryConfig
from ciresults.infra.rate_limiter import AsyncTokenBucket
from ciresults.infra.retry import with_retry
from ciresults.sources.models import JobResults

logger = logging.getLogger(__name__)

TESTGRID_URL = "https://testgrid.k8s.io"


class ResultSource(Protocol):
    async def list_jobs(self, dashboard: str) -> list[str]: ...

    async def get_job_results(self, dashboard: str, job_name: str) -> JobResults: ...


class TestGridClient:
    __test__ = False

    def __init__(
        self,
        limiter: AsyncTokenBucket,
        retry: RetryConfig,
        timeout_seconds: float = 60.0,
        base_url: str = TESTGRID_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._limiter = limiter
        self._retry = retry
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout_seconds,
            headers={"accept": "application/json", "accept-encoding": "gzip"},
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def list_jobs(self, dashboard: str) -> list[str]:
        logger.debug("downloading dashboard summary", extra={"dashboard": dashboard})
        payload = await self._get_json(f"/{_quote(dashboard)}/summary", params={})
        if not isinstance(payload, dict):
            raise ValueError(f"unexpected summary payload for dashboard {dashboard}")
        return list(payload.keys())

    async def get_job_results(self, dashboard: str, job_name: str) -> JobResults:
        logger.debug("downloading job results", extra={"dashboard": dashboard, "job_name": job_name})
        payload = await self._get_json(
            f"/{_quote(dashboard)}/table",
            params={"tab": job_name, "show-stale-tests": ""},
        )
        return JobResults.model_validate(payload)

    async def _get_json(self, path: str, params: dict[str, str]) -> Any:
        async def _do() -> Any:
            await self._limiter.acquire()
            response = await self._client.get(path, params=params)
            response.raise_for_status()
            return response.json()

        return await with_retry(_do, self._retry)


def _quote(segment: str) -> str:
    return quote(segment, safe="")
