"""Batch planner - merge many compiled queries into one statement.

a dashboard load asks for a dozen breakdowns at once and most of them have
the same output shape (name, pageviews, visitors). instead of a dozen round
trips we compile every (request, parameter) pair, and if they all project
the same columns we glue them together with UNION ALL, tagging every member
with its request id, parameter and metric type so the rows can be split
apart again afterwards.

anything that doesn't fit - more than one shape, a projection we can't
name, a pair that doesn't compile - raises UnificationError and the
orchestrator runs the pairs one by one instead. that's expected control
flow, not a failure.
"""

import logging
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from pulsequery.compiler.sql_builder import PARAM_RE, SQLCompiler
from pulsequery.errors import QueryError, UnificationError
from pulsequery.models.request import QueryRequest
from pulsequery.models.result import CompiledQuery

logger = logging.getLogger(__name__)

TAG_COLUMNS = ("request_id", "parameter", "metric_type")

ColumnSignature = tuple[str, ...]


def column_signature(sql: str, dialect: str = "duckdb") -> ColumnSignature:
    """Lower-cased output column names of the outermost projection.

    parameters are swapped for NULL first - the text is only parsed for its
    shape, never executed. raises UnificationError for anything we can't
    name (SELECT *, an unaliased expression, text sqlglot can't parse).
    """
    try:
        parsed = sqlglot.parse_one(PARAM_RE.sub("NULL", sql), dialect=dialect)
    except SqlglotError as e:
        raise UnificationError(f"Could not parse query projection: {e}") from e

    if not isinstance(parsed, exp.Query):
        raise UnificationError("Statement is not a query")

    names = []
    for projection in parsed.selects:
        if projection.is_star:
            raise UnificationError("Projection contains *, output columns are unknown")
        # only aliases and bare columns have a name we can rely on
        if isinstance(projection, exp.Alias | exp.Column) and projection.alias_or_name:
            names.append(projection.alias_or_name.lower())
        else:
            raise UnificationError(f"Unnamed projection: {projection.sql(dialect=dialect)}")
    return tuple(names)


@dataclass(frozen=True)
class PlannedQuery:
    """One compiled (request, parameter) pair."""

    request: QueryRequest
    parameter: str
    compiled: CompiledQuery
    signature: ColumnSignature

    @property
    def key(self) -> tuple[str, str]:
        return (self.request.id, self.parameter)


@dataclass
class UnifiedQuery:
    """A UNION ALL of every member, plus the merged (namespaced) params."""

    sql: str
    params: dict[str, Any]
    members: list[PlannedQuery] = field(default_factory=list)
    signature: ColumnSignature = ()

    def to_compiled(self) -> CompiledQuery:
        return CompiledQuery(sql=self.sql, params=self.params)


def namespace_params(sql: str, params: dict[str, Any], prefix: str) -> tuple[str, dict[str, Any]]:
    """Rename $key -> $<prefix>key for every bound key, in text and params."""

    def rename(match: re.Match[str]) -> str:
        name = match.group(1)
        return f"${prefix}{name}" if name in params else match.group(0)

    renamed_sql = PARAM_RE.sub(rename, sql)
    renamed_params = {f"{prefix}{key}": value for key, value in params.items()}
    return renamed_sql, renamed_params


class BatchPlanner:
    """Compiles a batch and merges it into a single statement when it can."""

    def __init__(
        self,
        compiler: SQLCompiler,
        metric_type_for: Callable[[str], str],
    ) -> None:
        self.compiler = compiler
        self.metric_type_for = metric_type_for

    def compile_pair(
        self, request: QueryRequest, parameter: str, website_domain: str | None = None
    ) -> PlannedQuery:
        compiled = self.compiler.compile(request.for_parameter(parameter), website_domain)
        return PlannedQuery(
            request=request,
            parameter=parameter,
            compiled=compiled,
            signature=column_signature(compiled.sql, self.compiler.dialect),
        )

    def plan(
        self,
        pairs: Sequence[tuple[QueryRequest, str]],
        website_domains: Mapping[str, str | None] | None = None,
    ) -> UnifiedQuery:
        """Compile every pair and merge them, or raise UnificationError.

        website_domains maps tenant id -> domain for the tenants in the batch.
        """
        website_domains = website_domains or {}
        if not pairs:
            raise UnificationError("Nothing to unify")

        planned: list[PlannedQuery] = []
        for request, parameter in pairs:
            website_domain = website_domains.get(request.tenant_id)
            try:
                planned.append(self.compile_pair(request, parameter, website_domain))
            except UnificationError:
                raise
            except QueryError as e:
                # the per-pair path will report this one properly
                raise UnificationError(f"{parameter} failed to compile: {e}") from e

        buckets: dict[ColumnSignature, list[PlannedQuery]] = {}
        for item in planned:
            buckets.setdefault(item.signature, []).append(item)

        if len(buckets) != 1:
            raise UnificationError(f"Batch has {len(buckets)} distinct column signatures")
        # a member column named like a tag would shadow it in the merged rows
        clashing = set(planned[0].signature) & set(TAG_COLUMNS)
        if clashing:
            raise UnificationError(f"Output columns clash with tag columns: {sorted(clashing)}")

        return self._unify(planned)

    def _unify(self, members: list[PlannedQuery]) -> UnifiedQuery:
        parts = []
        params: dict[str, Any] = {}
        for index, member in enumerate(members):
            prefix = f"u{index}_"
            sql, member_params = namespace_params(member.compiled.sql, member.compiled.params, prefix)
            # tags are bound values too
            member_params[f"{prefix}request_id"] = member.request.id
            member_params[f"{prefix}parameter"] = member.parameter
            member_params[f"{prefix}metric_type"] = self.metric_type_for(member.parameter)
            params.update(member_params)
            parts.append(
                f"SELECT CAST(${prefix}request_id AS VARCHAR) AS request_id, "
                f"CAST(${prefix}parameter AS VARCHAR) AS parameter, "
                f"CAST(${prefix}metric_type AS VARCHAR) AS metric_type, "
                f"* FROM (\n{sql}\n) AS u{index}"
            )

        logger.debug("Unified %d queries into one statement", len(members))
        return UnifiedQuery(
            sql="\nUNION ALL\n".join(parts),
            params=params,
            members=members,
            signature=members[0].signature,
        )
