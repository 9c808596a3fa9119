from __future__ import annotations

import logging

import httpx

from ciresults.config import RetryConfig
from ciresults.infra.rate_limiter import AsyncTokenBucket
from ciresults.infra.retry import with_retry
from ciresults.sources.models import CIConfig

logger = logging.getLogger(__name__)

CONFIG_RESOLVER_URL = "https://config.ci.openshift.org"


class CIConfigClient:
    def __init__(
        self,
        limiter: AsyncTokenBucket,
        retry: RetryConfig,
        timeout_seconds: float = 60.0,
        base_url: str = CONFIG_RESOLVER_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._limiter = limiter
        self._retry = retry
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout_seconds,
            headers={"accept": "application/json"},
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def download_config(self, org: str, repo: str, branch: str, variant: str = "") -> CIConfig:
        params = {"org": org, "repo": repo, "branch": branch}
        if variant:
            params["variant"] = variant

        async def _do() -> CIConfig:
            await self._limiter.acquire()
            response = await self._client.get("/config", params=params)
            response.raise_for_status()
            return CIConfig.model_validate(response.json())

        logger.debug("downloading ci config", extra={"org": org, "repo": repo, "branch": branch, "variant": variant})
        return await with_retry(_do, self._retry)
