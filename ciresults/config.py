from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from dotenv import dotenv_values
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_DASHBOARDS = ",".join(
    [
        "redhat-openshift-ocp-release-4.8-blocking",
        "redhat-openshift-ocp-release-4.8-informing",
        "redhat-openshift-ocp-release-4.9-blocking",
        "redhat-openshift-ocp-release-4.9-informing",
    ]
)

DEFAULT_CI_CONFIG_VARIANTS = ",".join(
    [
        "ci-4.8",
        "ci-4.8-upgrade-from-stable-4.7",
        "ci-4.8-upgrade-from-from-stable-4.7-from-stable-4.6",
        "nightly-4.8",
        "nightly-4.8-upgrade-from-stable-4.7",
        "ci-4.9",
        "ci-4.9-upgrade-from-stable-4.8",
        "ci-4.9-upgrade-from-stable-4.8-from-stable-4.7",
        "nightly-4.9",
        "nightly-4.9-upgrade-from-stable-4.8",
        "nightly-4.9-upgrade-from-stable-4.7",
    ]
)


class RateLimitConfig(BaseModel):
    rate: float
    burst: int


class RetryConfig(BaseModel):
    min_seconds: float = 0.5
    max_seconds: float = 20.0
    attempts: int = 5


class CacheSizes(BaseModel):
    jobs: int = 20
    builds: int = 100
    tests: int = 5000


class CIResultsSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CIRESULTS_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    database_path: str = Field(default="./results.db")
    log_level: str = Field(default="INFO")

    dashboard_names: str = Field(default=DEFAULT_DASHBOARDS)
    ci_config_org: str = Field(default="openshift")
    ci_config_repo: str = Field(default="release")
    ci_config_branch: str = Field(default="master")
    ci_config_variant_names: str = Field(default=DEFAULT_CI_CONFIG_VARIANTS)
    never_stable_job_names: str = Field(default="")

    fetch_workers: int = Field(default=5, ge=1)
    jobs_queue_size: int = Field(default=100, ge=1)
    builds_queue_size: int = Field(default=1000, ge=1)

    jobs_cache_size: int = Field(default=20, ge=1)
    builds_cache_size: int = Field(default=100, ge=1)
    tests_cache_size: int = Field(default=5000, ge=1)

    testgrid_rate: float = Field(default=10.0)
    testgrid_burst: int = Field(default=5)
    ciconfig_rate: float = Field(default=2.0)
    ciconfig_burst: int = Field(default=2)
    http_timeout_seconds: float = Field(default=60.0)

    rate_log_interval: float = Field(default=1.0)
    ingest_interval: int = Field(default=3 * 3600)

    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8001)

    @property
    def dashboards(self) -> list[str]:
        return _split_csv(self.dashboard_names)

    @property
    def ci_config_variants(self) -> list[str]:
        return _split_csv(self.ci_config_variant_names)

    @property
    def never_stable_jobs(self) -> set[str]:
        return set(_split_csv(self.never_stable_job_names))

    @property
    def retry(self) -> RetryConfig:
        return RetryConfig()

    @property
    def cache_sizes(self) -> CacheSizes:
        return CacheSizes(
            jobs=self.jobs_cache_size,
            builds=self.builds_cache_size,
            tests=self.tests_cache_size,
        )

    def rate_limit(self, source: str) -> RateLimitConfig:
        source_map = {
            "testgrid": RateLimitConfig(rate=self.testgrid_rate, burst=self.testgrid_burst),
            "ciconfig": RateLimitConfig(rate=self.ciconfig_rate, burst=self.ciconfig_burst),
        }
        return source_map[source]


def _split_csv(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


@lru_cache(maxsize=1)
def load_settings() -> CIResultsSettings:
    return CIResultsSettings()


def refresh_process_env_from_file(
    path: str | Path = ".env",
    prefix: str = "CIRESULTS_",
    preserve_existing: bool = False,
) -> bool:
    """Copy prefixed .env entries into os.environ; True when anything changed."""
    env_path = Path(path)
    if not env_path.is_file():
        return False
    changed = False
    for key, value in dotenv_values(env_path).items():
        if value is None or not key.startswith(prefix):
            continue
        if preserve_existing and key in os.environ:
            continue
        if os.environ.get(key) != value:
            os.environ[key] = value
            changed = True
    return changed
