from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum

from pydantic import BaseModel, Field


class TestStatus(IntEnum):
    """TestGrid cell status codes (testgrid pb/test_status)."""

    NO_RESULT = 0
    PASS = 1
    PASS_WITH_SKIPS = 3
    RUNNING = 4
    FAIL = 12
    FLAKY = 13


class BuildStatus(IntEnum):
    SUCCESS = 1
    FAILURE = 2


OVERALL_TEST = "Overall"


class StatusRun(BaseModel):
    count: int = 0
    value: int = TestStatus.NO_RESULT


class GridTest(BaseModel):
    name: str
    original_name: str | None = Field(default=None, alias="original-name")
    statuses: list[StatusRun] = Field(default_factory=list)

    def unpack(self) -> list[int]:
        result: list[int] = []
        for run in self.statuses:
            result.extend([run.value] * max(run.count, 0))
        return result


class JobResults(BaseModel):
    query: str | None = None
    changelists: list[str] = Field(default_factory=list)
    timestamps: list[int] = Field(default_factory=list)
    tests: list[GridTest] = Field(default_factory=list)


class CIStepEnv(BaseModel):
    name: str
    default: str | None = None


class CIStep(BaseModel):
    as_: str | None = Field(default=None, alias="as")
    from_: str | None = Field(default=None, alias="from")
    env: list[CIStepEnv] = Field(default_factory=list)

    def env_default(self, key: str) -> str:
        for item in self.env:
            if item.name == key:
                return item.default or ""
        return ""


class CILiteralSteps(BaseModel):
    cluster_profile: str = ""
    pre: list[CIStep] = Field(default_factory=list)
    test: list[CIStep] = Field(default_factory=list)
    post: list[CIStep] = Field(default_factory=list)


class CITest(BaseModel):
    as_: str = Field(alias="as")
    cron: str | None = None
    literal_steps: CILiteralSteps = Field(default_factory=CILiteralSteps)


class CIGeneratedMetadata(BaseModel):
    org: str
    repo: str
    branch: str
    variant: str = ""


class CIConfig(BaseModel):
    metadata: CIGeneratedMetadata = Field(alias="zz_generated_metadata")
    tests: list[CITest] = Field(default_factory=list)


@dataclass(slots=True, frozen=True)
class DiscoveredJob:
    dashboard: str
    name: str


@dataclass(slots=True)
class BuildRecord:
    dashboard: str
    job_name: str
    number: str
    timestamp: int
    tests: dict[str, int] = field(default_factory=dict)

    @property
    def is_running(self) -> bool:
        return any(status == TestStatus.RUNNING for status in self.tests.values())

    @property
    def status(self) -> BuildStatus:
        if self.tests.get(OVERALL_TEST) == TestStatus.FAIL:
            return BuildStatus.FAILURE
        return BuildStatus.SUCCESS


@dataclass(slots=True, frozen=True)
class JobTags:
    platform: str
    mod: str
    testtype: str
    tags: tuple[str, ...] = ()
