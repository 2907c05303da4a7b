"""Filter compiler - (field, operator, value) triples to sql fragments.

values always travel as bound parameters ($f0, $f1, ...), never as text in
the statement. the only structural choices a caller gets to make are which
allowed field and which operator, both of which come from closed sets.

three fields get rewritten before the operator is applied:
  - path: compared on the normalized path (no scheme/host, no trailing slash)
  - referrer: compared on the normalized origin (see referrers.py)
  - device_type: replaced wholesale by the classifier's sql condition
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from pulsequery.compiler.referrers import (
    normalize_referrer_filter_value,
    normalize_referrer_search_value,
    referrer_case_sql,
)
from pulsequery.devices.classifier import DeviceType, device_type_condition_sql
from pulsequery.errors import DisallowedFilterError, InvalidFilterError
from pulsequery.models.request import SET_OPERATORS, FilterClause, FilterOperator

PATH_FIELD = "path"
REFERRER_FIELD = "referrer"
DEVICE_TYPE_FIELD = "device_type"

OPERATOR_SQL: dict[FilterOperator, str] = {
    FilterOperator.EQUALS: "=",
    FilterOperator.NOT_EQUALS: "!=",
    FilterOperator.GREATER_THAN: ">",
    FilterOperator.GREATER_OR_EQUAL: ">=",
    FilterOperator.LESS_THAN: "<",
    FilterOperator.LESS_OR_EQUAL: "<=",
    FilterOperator.CONTAINS: "LIKE",
    FilterOperator.LIKE: "LIKE",
    FilterOperator.STARTS_WITH: "LIKE",
}

WILDCARD_OPERATORS = frozenset({FilterOperator.CONTAINS, FilterOperator.LIKE})

_SCHEME_HOST_PATTERN = r"^[a-zA-Z][a-zA-Z0-9+.\-]*://[^/]*"
_SCHEME_HOST_RE = re.compile(_SCHEME_HOST_PATTERN)

# filter fields end up in sql as bare identifiers, so they have to look like one
_IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


def path_expression_sql(column: str = "path") -> str:
    """Normalized path: scheme+host stripped, trailing slash trimmed, '' -> '/'."""
    stripped = f"rtrim(regexp_replace({column}, '{_SCHEME_HOST_PATTERN}', ''), '/')"
    return f"CASE WHEN {stripped} = '' THEN '/' ELSE {stripped} END"


def normalize_path(value: str | None) -> str:
    """Python twin of path_expression_sql."""
    stripped = _SCHEME_HOST_RE.sub("", value or "", count=1).rstrip("/")
    return stripped or "/"


@dataclass
class CompiledFilter:
    clause: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class CompiledFilters:
    """All filter fragments for one query, ready to AND into a WHERE clause."""

    clauses: list[str] = field(default_factory=list)
    params: dict[str, Any] = field(default_factory=dict)

    @property
    def where_sql(self) -> str:
        return " AND ".join(self.clauses) if self.clauses else "1=1"

    def __bool__(self) -> bool:
        return bool(self.clauses)


class FilterCompiler:
    """Compiles filter clauses for one query definition.

    the allowed set is enforced up front - a field outside it is an error,
    not something we quietly drop. silently ignoring a filter would return
    numbers that look right and aren't.
    """

    def __init__(
        self,
        allowed_filters: Iterable[str] | None = None,
        query_name: str | None = None,
        key_prefix: str = "f",
    ) -> None:
        self.allowed_filters = frozenset(allowed_filters or ())
        self.query_name = query_name
        self.key_prefix = key_prefix

    def check_allowed(self, filters: Iterable[FilterClause]) -> None:
        for clause in filters:
            if clause.field not in self.allowed_filters:
                raise DisallowedFilterError(clause.field, self.query_name)

    def compile(self, filters: Iterable[FilterClause]) -> CompiledFilters:
        filters = list(filters)
        # check everything before building anything
        self.check_allowed(filters)

        compiled = CompiledFilters()
        for index, clause in enumerate(filters):
            fragment = self.compile_one(clause, index)
            compiled.clauses.append(fragment.clause)
            compiled.params.update(fragment.params)
        return compiled

    def compile_one(self, clause: FilterClause, index: int) -> CompiledFilter:
        if clause.field not in self.allowed_filters:
            raise DisallowedFilterError(clause.field, self.query_name)
        if not _IDENTIFIER_RE.fullmatch(clause.field):
            raise InvalidFilterError(f"Invalid filter field: {clause.field!r}")

        key = f"{self.key_prefix}{index}"
        if clause.field == DEVICE_TYPE_FIELD:
            return self._device_type_filter(clause)
        if clause.field == PATH_FIELD:
            return self._comparison(path_expression_sql(), clause, key)
        if clause.field == REFERRER_FIELD:
            return self._referrer_filter(clause, key)
        return self._comparison(clause.field, clause, key, cast_sets=True)

    def _comparison(
        self,
        expression: str,
        clause: FilterClause,
        key: str,
        cast_sets: bool = False,
        value: Any = None,
    ) -> CompiledFilter:
        """Apply an operator to an expression with the value bound as $key."""
        op = clause.operator
        if op in SET_OPERATORS:
            values = value if value is not None else clause.value_list
            if not values:
                raise InvalidFilterError(f"Filter on '{clause.field}' needs at least one value")
            # set members bind as text, so compare the expression as text too
            target = f"CAST({expression} AS VARCHAR)" if cast_sets else expression
            test = f"list_contains(${key}, {target})"
            if op is FilterOperator.NOT_IN:
                test = f"NOT {test}"
            return CompiledFilter(test, {key: [str(v) for v in values]})

        if value is None:
            value = self._scalar(clause)
        if op in WILDCARD_OPERATORS:
            value = f"%{value}%"
        elif op is FilterOperator.STARTS_WITH:
            value = f"{value}%"
        return CompiledFilter(f"{expression} {OPERATOR_SQL[op]} ${key}", {key: value})

    def _referrer_filter(self, clause: FilterClause, key: str) -> CompiledFilter:
        expression = referrer_case_sql()
        op = clause.operator
        if op in WILDCARD_OPERATORS:
            search = normalize_referrer_search_value(str(self._scalar(clause)))
            return self._comparison(expression, clause, key, value=search)
        if op in SET_OPERATORS:
            values = [normalize_referrer_filter_value(str(v)) for v in clause.value_list]
            return self._comparison(expression, clause, key, value=values)
        normalized = normalize_referrer_filter_value(str(self._scalar(clause)))
        return self._comparison(expression, clause, key, value=normalized)

    def _device_type_filter(self, clause: FilterClause) -> CompiledFilter:
        """Device type has no column - it's the classifier's condition, no params."""
        op = clause.operator
        if op not in (FilterOperator.EQUALS, FilterOperator.NOT_EQUALS, *SET_OPERATORS):
            raise InvalidFilterError(
                f"Operator '{op.value}' is not supported for {DEVICE_TYPE_FIELD}"
            )
        if op in SET_OPERATORS:
            raw_values = clause.value_list
        else:
            raw_values = [self._scalar(clause)]

        conditions = []
        for raw in raw_values:
            try:
                device = DeviceType(str(raw).strip().lower())
            except ValueError:
                known = ", ".join(d.value for d in DeviceType)
                raise InvalidFilterError(
                    f"Unknown device type '{raw}'. Expected one of: {known}"
                ) from None
            conditions.append(device_type_condition_sql(device))

        condition = conditions[0] if len(conditions) == 1 else f"({' OR '.join(conditions)})"
        if op in (FilterOperator.NOT_EQUALS, FilterOperator.NOT_IN):
            condition = f"NOT {condition}"
        return CompiledFilter(condition)

    @staticmethod
    def _scalar(clause: FilterClause) -> str | int | float:
        if isinstance(clause.value, list):
            raise InvalidFilterError(
                f"Operator '{clause.operator.value}' on '{clause.field}' expects a single value"
            )
        return clause.value
