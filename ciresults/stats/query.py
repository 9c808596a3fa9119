"""Parameterized SQL assembly for the stats engine.

Every user supplied value goes through a ``?`` placeholder. Identifiers
(table aliases, column expressions) come only from the fixed fragments in
this module.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from ciresults.stats.models import GroupColumn, TagTerm


@dataclass(slots=True)
class _Join:
    kind: str
    clause: str
    params: tuple[Any, ...]


@dataclass(slots=True)
class QueryBuilder:
    table: str
    _columns: list[str] = field(default_factory=list)
    _select_params: list[Any] = field(default_factory=list)
    _joins: list[_Join] = field(default_factory=list)
    _conditions: list[str] = field(default_factory=list)
    _where_params: list[Any] = field(default_factory=list)
    _group_by: list[str] = field(default_factory=list)

    def select(self, expr: str, *params: Any) -> int:
        """Add an output column and return its position in the result row."""
        self._columns.append(expr)
        self._select_params.extend(params)
        return len(self._columns) - 1

    def join(self, clause: str, *params: Any, kind: str = "join") -> None:
        join = _Join(kind=kind, clause=clause, params=params)
        if join in self._joins:
            return
        self._joins.append(join)

    def where(self, condition: str, *params: Any) -> None:
        self._conditions.append(condition)
        self._where_params.extend(params)

    def group_by(self, expr: str) -> None:
        self._group_by.append(expr)

    def build(self) -> tuple[str, list[Any]]:
        if not self._columns:
            raise ValueError("query has no output columns")
        parts = ["select " + ", ".join(self._columns), "from " + self.table]
        params: list[Any] = list(self._select_params)
        for join in self._joins:
            parts.append(f"{join.kind} {join.clause}")
            params.extend(join.params)
        if self._conditions:
            parts.append("where " + " and ".join(self._conditions))
            params.extend(self._where_params)
        if self._group_by:
            parts.append("group by " + ", ".join(self._group_by))
        return " ".join(parts), params


@dataclass(slots=True, frozen=True)
class Dimension:
    expr: str
    joins: tuple[str, ...] = ()
    test_level: bool = False

    def apply(self, query: QueryBuilder) -> int:
        for clause in self.joins:
            query.join(clause)
        query.group_by(self.expr)
        return query.select(self.expr)


TEST_RESULTS_JOIN = "test_results tr on tr.build_id = b.id"

DIMENSIONS: dict[GroupColumn, Dimension] = {
    GroupColumn.TAG: Dimension("jt.tag", joins=("job_tags jt on jt.job_id = j.id",)),
    GroupColumn.JOB_NAME: Dimension("j.name"),
    GroupColumn.DASHBOARD: Dimension("j.dashboard"),
    GroupColumn.TEST_NAME: Dimension(
        "t.name",
        joins=(TEST_RESULTS_JOIN, "tests t on t.id = tr.test_id"),
        test_level=True,
    ),
}


def job_filter_query(terms: Sequence[TagTerm]) -> tuple[str, list[Any]]:
    """Select the ids of jobs carrying every included tag and none of the excluded ones."""
    query = QueryBuilder("jobs j")
    query.select("j.id")
    for idx, term in enumerate(terms, start=1):
        alias = f"jt{idx}"
        clause = f"job_tags {alias} on {alias}.job_id = j.id and {alias}.tag = ?"
        if term.exclude:
            query.join(clause, term.tag, kind="left join")
            query.where(f"{alias}.job_id is null")
        else:
            query.join(clause, term.tag)
    return query.build()


def placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))
