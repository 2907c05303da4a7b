"""SQL compiler for catalog queries.

turns one catalog definition plus one request into parameterized sql for the
store. the flow for declarative definitions:
  1. vet the grouping/ordering text (the only caller text that lands in sql)
  2. compile filters against the definition's allowed set
  3. build select/from/where/group by/order by/limit/offset in that order
  4. bind tenant, dates and filter values; drop params the text never uses

custom definitions skip step 3 - their generator writes the statement and
gets the compiled filters handed over through CustomSqlHelpers.

sqlglot is only used for pretty printing here (format_sql). the text we hand
to duckdb is exactly what we assembled.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import sqlglot
from sqlglot.errors import SqlglotError

from pulsequery.catalog.registry import QueryCatalog
from pulsequery.compiler.filters import CompiledFilters, FilterCompiler
from pulsequery.errors import QueryError, UnsafeClauseError
from pulsequery.models.definition import CustomQuery, DeclarativeQuery
from pulsequery.models.request import CompileRequest
from pulsequery.models.result import CompiledQuery

# word-boundary matches, case-insensitive
DENYLIST_KEYWORDS = (
    "DROP",
    "DELETE",
    "INSERT",
    "UPDATE",
    "CREATE",
    "ALTER",
    "TRUNCATE",
    "EXEC",
    "EXECUTE",
    "ATTACH",
    "COPY",
    "PRAGMA",
    "INSTALL",
    "LOAD",
)
DENYLIST_TOKENS = (";", "--", "/*")
_DENYLIST_RE = re.compile(r"\b(" + "|".join(DENYLIST_KEYWORDS) + r")\b", re.IGNORECASE)

# columns that session attribution pins to the first event of the session
SESSION_DIMENSIONS = (
    "referrer",
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "country",
    "device_type",
    "browser_name",
    "os_name",
)

WEBSITE_DOMAIN_PLACEHOLDER = "{websiteDomain}"
WEBSITE_DOMAIN_PARAM = "websiteDomain"

PARAM_RE = re.compile(r"\$([A-Za-z_][A-Za-z0-9_]*)")


def check_clause_safe(text: str, clause: str = "clause") -> None:
    """Reject grouping/ordering text that carries a blocked keyword or token."""
    match = _DENYLIST_RE.search(text)
    if match:
        raise UnsafeClauseError(
            f"{clause} '{text}' contains a disallowed keyword: {match.group(1).upper()}"
        )
    for token in DENYLIST_TOKENS:
        if token in text:
            raise UnsafeClauseError(f"{clause} '{text}' contains a disallowed token: {token}")


def format_datetime(value: str) -> str:
    """'2024-01-31T10:00:00.123Z' -> '2024-01-31 10:00:00'."""
    text = value.strip().replace("T", " ")
    text = text.split(".", 1)[0]
    return text.removesuffix("Z")


def end_of_day_sql(placeholder: str = "$to") -> str:
    """Last second of the day the placeholder's value falls on."""
    return f"CAST(concat(CAST(CAST({placeholder} AS TIMESTAMP) AS DATE), ' 23:59:59') AS TIMESTAMP)"


def time_bounds_sql(time_field: str, append_end_of_day: bool = True) -> list[str]:
    """Tenant and date range predicates every query carries."""
    upper = end_of_day_sql() if append_end_of_day else "CAST($to AS TIMESTAMP)"
    return [
        "client_id = $websiteId",
        f"{time_field} >= CAST($from AS TIMESTAMP)",
        f"{time_field} <= {upper}",
    ]


def referenced_params(sql: str) -> set[str]:
    return set(PARAM_RE.findall(sql))


def session_attribution_cte(
    table: str = "events", time_field: str = "time", append_end_of_day: bool = True
) -> str:
    """Two CTEs: first-touch values per session, and events rewritten to use them."""
    time_bounds = time_bounds_sql(time_field, append_end_of_day)
    aggregates = ",\n    ".join(
        f"arg_min({dim}, {time_field}) AS session_{dim}" for dim in SESSION_DIMENSIONS
    )
    bounds = "\n    AND ".join(time_bounds)
    e_bounds = "\n    AND ".join(f"e.{condition}" for condition in time_bounds)
    replaced = ",\n    ".join(f"sa.session_{dim} AS {dim}" for dim in SESSION_DIMENSIONS)
    return (
        "session_attribution AS (\n"
        "  SELECT\n"
        "    session_id,\n"
        f"    {aggregates}\n"
        f"  FROM {table}\n"
        f"  WHERE {bounds}\n"
        "    AND session_id != ''\n"
        "  GROUP BY session_id\n"
        "),\n"
        "attributed_events AS (\n"
        "  SELECT\n"
        f"    e.* EXCLUDE ({', '.join(SESSION_DIMENSIONS)}),\n"
        f"    {replaced}\n"
        f"  FROM {table} e\n"
        "  INNER JOIN session_attribution sa ON e.session_id = sa.session_id\n"
        f"  WHERE {e_bounds}\n"
        "    AND e.session_id != ''\n"
        ")"
    )


def session_attribution_join(alias: str = "e") -> str:
    return f"INNER JOIN session_attribution sa ON {alias}.session_id = sa.session_id"


@dataclass
class CustomSqlHelpers:
    """What a custom generator gets besides the plain request values.

    `filters` is already vetted against the definition's allowed set, so a
    generator can AND `filters.where_sql` into its statement and must return
    (or leave to the compiler) `filters.params`. the session attribution
    helpers are None unless the definition turned session attribution on.

    $websiteId, $from, $to, $timezone and $websiteDomain are bound by the
    compiler; generators can reference them without returning them.
    """

    filters: CompiledFilters
    website_domain: str | None = None
    session_attribution_cte: Callable[..., str] | None = None
    session_attribution_join: Callable[..., str] | None = None


class SQLCompiler:
    """Compiles catalog queries into parameterized SQL.

    stateless - takes a catalog reference but never modifies it. the same
    request always produces the same text and params, which is what lets
    the planner compare and merge compiled queries.
    """

    def __init__(self, catalog: QueryCatalog, dialect: str = "duckdb") -> None:
        self.catalog = catalog
        self.dialect = dialect  # passed to sqlglot for formatting

    def compile(self, request: CompileRequest, website_domain: str | None = None) -> CompiledQuery:
        """Convert a CompileRequest into a CompiledQuery.

        raises UnknownParameterError, DisallowedFilterError,
        InvalidFilterError or UnsafeClauseError - all before any sql exists.
        """
        definition = self.catalog.get(request.name)

        # caller-controlled text gets vetted before we build anything else
        group_by, order_by = self._grouping(definition, request)
        for expr in group_by:
            check_clause_safe(expr, "Grouping by field")
        if order_by:
            check_clause_safe(order_by, "Ordering by field")

        filters = FilterCompiler(definition.allowed_filters, definition.name).compile(
            request.filters
        )

        params: dict[str, Any] = {
            "websiteId": request.tenant_id,
            "from": format_datetime(request.start_date),
            "to": format_datetime(request.end_date),
        }

        if isinstance(definition, CustomQuery):
            return self._compile_custom(definition, request, filters, params, website_domain)
        if isinstance(definition, DeclarativeQuery):
            return self._compile_declarative(
                definition, request, filters, params, website_domain, group_by, order_by
            )
        raise QueryError(f"Unsupported definition kind for {request.name}")

    def _grouping(
        self, definition: DeclarativeQuery | CustomQuery, request: CompileRequest
    ) -> tuple[list[str], str | None]:
        """Request overrides win over definition defaults, if the definition allows them."""
        default_group = list(getattr(definition, "group_by", ()))
        default_order = getattr(definition, "order_by", None)
        if not definition.customizable:
            return default_group, default_order
        group_by = list(request.group_by) if request.group_by else default_group
        order_by = request.order_by or default_order
        return group_by, order_by

    # --- declarative ---

    def _compile_declarative(
        self,
        definition: DeclarativeQuery,
        request: CompileRequest,
        filters: CompiledFilters,
        params: dict[str, Any],
        website_domain: str | None,
        group_by: list[str],
        order_by: str | None,
    ) -> CompiledQuery:
        select_exprs = [
            self._substitute_domain(expr) for expr in definition.fields
        ] or ["*"]
        static_where = self._static_predicates(definition.where, website_domain)
        params.update(filters.params)

        if definition.session_attribution:
            # bounds live in the CTEs, so the outer query only needs the rest
            cte = session_attribution_cte(
                definition.table, definition.time_field, definition.append_end_of_day
            )
            from_clause = "attributed_events"
            where_conditions = static_where + filters.clauses
        else:
            cte = None
            from_clause = definition.table
            where_conditions = (
                static_where
                + time_bounds_sql(definition.time_field, definition.append_end_of_day)
                + filters.clauses
            )

        limit = request.limit if request.limit is not None else definition.limit
        sql = self._assemble_query(
            select_exprs=select_exprs,
            from_clause=from_clause,
            where_conditions=where_conditions,
            group_by_exprs=group_by,
            order_by=order_by,
            limit=limit,
            offset=request.offset,
            cte=cte,
        )
        params[WEBSITE_DOMAIN_PARAM] = website_domain or ""
        return CompiledQuery(sql=sql, params=self._prune_params(sql, params))

    def _static_predicates(self, where: tuple[str, ...], website_domain: str | None) -> list[str]:
        predicates = []
        for predicate in where:
            if WEBSITE_DOMAIN_PLACEHOLDER in predicate and not website_domain:
                # nothing to compare against, so the predicate can't exclude anything
                predicates.append("1=1")
            else:
                predicates.append(self._substitute_domain(predicate))
        return predicates

    @staticmethod
    def _substitute_domain(text: str) -> str:
        # the domain is bound like any other value, never spliced in
        return text.replace(WEBSITE_DOMAIN_PLACEHOLDER, f"${WEBSITE_DOMAIN_PARAM}")

    def _assemble_query(
        self,
        select_exprs: list[str],
        from_clause: str,
        where_conditions: list[str],
        group_by_exprs: list[str],
        order_by: str | None,
        limit: int | None,
        offset: int = 0,
        cte: str | None = None,
    ) -> str:
        """Assemble the final SQL query.

        plain string concatenation in a fixed clause order. limit and offset
        are validated ints by the time they get here.
        """
        parts = []
        if cte:
            parts.append(f"WITH {cte}")
        columns = ",\n  ".join(select_exprs)
        parts.append(f"SELECT\n  {columns}")
        parts.append(f"FROM {from_clause}")

        if where_conditions:
            parts.append(f"WHERE {' AND '.join(where_conditions)}")

        if group_by_exprs:
            parts.append(f"GROUP BY {', '.join(group_by_exprs)}")

        if order_by:
            parts.append(f"ORDER BY {order_by}")

        if limit:
            parts.append(f"LIMIT {int(limit)}")

        if offset:
            parts.append(f"OFFSET {int(offset)}")

        return "\n".join(parts)

    # --- custom ---

    def _compile_custom(
        self,
        definition: CustomQuery,
        request: CompileRequest,
        filters: CompiledFilters,
        params: dict[str, Any],
        website_domain: str | None,
    ) -> CompiledQuery:
        helpers = CustomSqlHelpers(filters=filters, website_domain=website_domain)
        if definition.session_attribution:
            helpers.session_attribution_cte = (
                lambda time_field="time", table="events": session_attribution_cte(
                    table, time_field, definition.append_end_of_day
                )
            )
            helpers.session_attribution_join = session_attribution_join

        limit = request.limit if request.limit is not None else definition.limit
        result = definition.generator(
            request.tenant_id,
            params["from"],
            params["to"],
            request.filters,
            request.granularity,
            limit,
            request.offset,
            request.timezone,
            helpers=helpers,
        )

        if isinstance(result, CompiledQuery):
            sql, extra = result.sql, result.params
        elif isinstance(result, str):
            sql, extra = result, {}
        else:
            sql, extra = result

        params.update(filters.params)
        params["timezone"] = request.timezone
        params[WEBSITE_DOMAIN_PARAM] = website_domain or ""
        params.update(extra)
        return CompiledQuery(sql=sql, params=self._prune_params(sql, params))

    # --- helpers ---

    @staticmethod
    def _prune_params(sql: str, params: dict[str, Any]) -> dict[str, Any]:
        # duckdb rejects named params the statement doesn't use
        used = referenced_params(sql)
        return {key: value for key, value in params.items() if key in used}

    def format_sql(self, sql: str) -> str:
        """Pretty print SQL using sqlglot, for humans only.

        if sqlglot can't parse something duckdb accepts, the text comes back
        unformatted.
        """
        try:
            parsed = sqlglot.parse_one(sql, dialect=self.dialect)
            return parsed.sql(dialect=self.dialect, pretty=True)
        except SqlglotError:
            return sql
