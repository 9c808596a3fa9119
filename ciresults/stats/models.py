from __future__ import annotations

import re
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_COLUMNS = "sippytags"
DEFAULT_PERIODS = "7,7"

_TAG_TERM = re.compile(r"^[a-z0-9.-]+$")


class InvalidStatsRequest(ValueError):
    """Malformed column, filter term or period in a stats request."""


class GroupColumn(StrEnum):
    TAG = "sippytags"
    JOB_NAME = "name"
    DASHBOARD = "dashboard"
    TEST_NAME = "test"


class TagTerm(BaseModel):
    tag: str
    exclude: bool = False

    @classmethod
    def parse(cls, term: str) -> "TagTerm":
        if not _TAG_TERM.match(term):
            raise InvalidStatsRequest(f"invalid filter term: {term}")
        exclude = term.startswith("-")
        tag = term[1:] if exclude else term
        if not tag:
            raise InvalidStatsRequest(f"invalid filter term: {term}")
        return cls(tag=tag, exclude=exclude)


class StatsRequest(BaseModel):
    columns: list[GroupColumn] = Field(default_factory=lambda: [GroupColumn.TAG])
    filter: list[TagTerm] = Field(default_factory=list)
    periods: list[int] = Field(default_factory=lambda: [7, 7])
    testname: str = ""

    @classmethod
    def from_params(
        cls,
        columns: str | None = None,
        filter: str | None = None,
        periods: str | None = None,
        testname: str | None = None,
    ) -> "StatsRequest":
        """Parse the query-string forms; empty values take the defaults."""
        return cls(
            columns=parse_columns(columns or DEFAULT_COLUMNS),
            filter=parse_filter(filter or ""),
            periods=parse_periods(periods or DEFAULT_PERIODS),
            testname=testname or "",
        )


def parse_columns(raw: str) -> list[GroupColumn]:
    columns = []
    for name in raw.split(","):
        try:
            columns.append(GroupColumn(name))
        except ValueError:
            raise InvalidStatsRequest(f"unknown column {name}") from None
    return columns


def parse_filter(raw: str) -> list[TagTerm]:
    # consecutive spaces leave empty terms behind; they mean nothing
    return [TagTerm.parse(term) for term in raw.split(" ") if term]


def parse_periods(raw: str) -> list[int]:
    periods = []
    for part in raw.split(","):
        if not (part.isascii() and part.isdigit()):
            raise InvalidStatsRequest(f"invalid period {part!r}: expected a non-negative number of days")
        periods.append(int(part))
    return periods


class StatsValues(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pass_: int = Field(default=0, alias="pass")
    flake: int = 0
    fail: int = 0


class StatsRow(BaseModel):
    columns: list[str]
    values: list[StatsValues]


class Stats(BaseModel):
    data: list[StatsRow] = Field(default_factory=list)

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True)
