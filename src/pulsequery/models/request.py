"""Pydantic models for analytics requests and filters.

the request model captures what the caller wants to see, not how to compute
it. the wire format has grown a few spellings over time (eq vs equals,
notIn vs not_in, hourly vs hour) so validators fold all of them into one
canonical vocabulary before anything downstream looks at them.
"""

from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

FilterValue = str | int | float | list[str | int | float]


class FilterOperator(str, Enum):
    """Canonical filter operators understood by the filter compiler."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    GREATER_OR_EQUAL = "greater_or_equal"
    LESS_THAN = "less_than"
    LESS_OR_EQUAL = "less_or_equal"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    LIKE = "like"


# every spelling we accept over the wire -> canonical operator
OPERATOR_ALIASES: dict[str, FilterOperator] = {
    "eq": FilterOperator.EQUALS,
    "=": FilterOperator.EQUALS,
    "ne": FilterOperator.NOT_EQUALS,
    "neq": FilterOperator.NOT_EQUALS,
    "!=": FilterOperator.NOT_EQUALS,
    "gt": FilterOperator.GREATER_THAN,
    "gte": FilterOperator.GREATER_OR_EQUAL,
    "lt": FilterOperator.LESS_THAN,
    "lte": FilterOperator.LESS_OR_EQUAL,
    "notin": FilterOperator.NOT_IN,
    "not_in": FilterOperator.NOT_IN,
    "startswith": FilterOperator.STARTS_WITH,
}

SET_OPERATORS = frozenset({FilterOperator.IN, FilterOperator.NOT_IN})


def normalize_operator(value: Any) -> FilterOperator:
    """Map any accepted operator spelling onto FilterOperator."""
    if isinstance(value, FilterOperator):
        return value
    text = str(value).strip()
    try:
        return FilterOperator(text.lower())
    except ValueError:
        pass
    alias = OPERATOR_ALIASES.get(text.lower())
    if alias is None:
        raise ValueError(f"Unsupported filter operator: {value}")
    return alias


class FilterClause(BaseModel):
    """A single (field, operator, value) filter."""

    model_config = ConfigDict(frozen=True)

    field: str = Field(min_length=1)
    # the compile endpoint historically sent "op", the query endpoint "operator"
    operator: FilterOperator
    value: FilterValue

    @model_validator(mode="before")
    @classmethod
    def _accept_op_key(cls, data: Any) -> Any:
        if isinstance(data, dict) and "operator" not in data and "op" in data:
            data = {k: v for k, v in data.items() if k != "op"} | {"operator": data["op"]}
        return data

    @field_validator("operator", mode="before")
    @classmethod
    def _normalize_operator(cls, value: Any) -> FilterOperator:
        return normalize_operator(value)

    @property
    def value_list(self) -> list[str | int | float]:
        """The value as a list - scalars become one-element lists."""
        if isinstance(self.value, list):
            return list(self.value)
        return [self.value]


class Granularity(str, Enum):
    HOUR = "hour"
    DAY = "day"


def normalize_granularity(value: Any) -> Granularity:
    if isinstance(value, Granularity):
        return value
    if value is None:
        return Granularity.DAY
    text = str(value).strip().lower()
    if text in ("hour", "hourly"):
        return Granularity.HOUR
    if text in ("day", "daily", ""):
        return Granularity.DAY
    raise ValueError(f"Unsupported granularity: {value}")


def new_request_id() -> str:
    return uuid4().hex


class QueryRequest(BaseModel):
    """A request to compute one or more query types for a single tenant.

    every parameter in `parameters` is computed over the same date range,
    filters and pagination. the id ties results back to the request when a
    batch is merged into one statement.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_request_id)
    tenant_id: str = Field(min_length=1)
    parameters: list[str] = Field(min_length=1)
    # optional here so a batch with one undated request still runs the others
    start_date: str | None = None
    end_date: str | None = None
    timezone: str = "UTC"
    granularity: Granularity = Granularity.DAY
    # the engine applies the configured default and maximum
    limit: int = Field(default=100, ge=1)
    page: int = Field(default=1, ge=1)
    filters: list[FilterClause] = Field(default_factory=list)
    group_by: list[str] | None = None
    order_by: str | None = None

    @field_validator("granularity", mode="before")
    @classmethod
    def _normalize_granularity(cls, value: Any) -> Granularity:
        return normalize_granularity(value)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @property
    def has_dates(self) -> bool:
        return bool(self.start_date and self.end_date)

    def for_parameter(self, parameter: str) -> "CompileRequest":
        """The compile-level view of this request for one of its parameters."""
        return CompileRequest(
            tenant_id=self.tenant_id,
            name=parameter,
            start_date=self.start_date,
            end_date=self.end_date,
            timezone=self.timezone,
            granularity=self.granularity,
            limit=self.limit,
            offset=self.offset,
            filters=self.filters,
            group_by=self.group_by,
            order_by=self.order_by,
        )


class CompileRequest(BaseModel):
    """Everything the sql compiler needs to build one query."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str = Field(min_length=1)
    name: str
    start_date: str
    end_date: str
    timezone: str = "UTC"
    granularity: Granularity = Granularity.DAY
    limit: int | None = Field(default=None, ge=1)
    offset: int = Field(default=0, ge=0)
    filters: list[FilterClause] = Field(default_factory=list)
    group_by: list[str] | None = None
    order_by: str | None = None

    @field_validator("granularity", mode="before")
    @classmethod
    def _normalize_granularity(cls, value: Any) -> Granularity:
        return normalize_granularity(value)
