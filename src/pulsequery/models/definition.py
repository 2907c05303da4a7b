"""Pydantic models for query definitions.

a query definition is one entry in the catalog - it describes how to build
one named analytical query. there are two shapes:

  - declarative: table + projection + static predicates + grouping. the sql
    compiler assembles the statement itself. this covers the vast majority
    of breakdowns (pages, browsers, countries, ...).
  - custom: a python function that writes the sql. for things the
    declarative shape can't express - CTE pipelines, gap-filled time series,
    cross-table joins.

they're a tagged union on `kind` so the compiler dispatches explicitly
instead of poking at optional fields to figure out what it's holding.
"""

from collections.abc import Callable
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OutputField(BaseModel):
    """Describes one column a query returns. purely informational."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: str = "string"
    label: str | None = None
    description: str | None = None
    unit: str | None = None


class QueryMeta(BaseModel):
    """Descriptive metadata shown by the types endpoint and the cli."""

    model_config = ConfigDict(frozen=True)

    title: str | None = None
    description: str | None = None
    category: str | None = None
    tags: tuple[str, ...] = ()
    output_fields: tuple[OutputField, ...] = ()
    default_visualization: str | None = None
    supports_granularity: tuple[str, ...] = ("hour", "day")
    version: str = "1.0"


class _BaseDefinition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    name: str = Field(min_length=1)
    time_field: str = "time"
    allowed_filters: frozenset[str] = frozenset()
    # most queries want "to" to cover the whole final day
    append_end_of_day: bool = True
    session_attribution: bool = False
    customizable: bool = True
    meta: QueryMeta = Field(default_factory=QueryMeta)

    @field_validator("allowed_filters", mode="before")
    @classmethod
    def _to_frozenset(cls, value: Any) -> frozenset[str]:
        if value is None:
            return frozenset()
        return frozenset(value)


class DeclarativeQuery(_BaseDefinition):
    """A query the sql compiler can assemble from its parts."""

    kind: Literal["declarative"] = "declarative"
    table: str
    fields: tuple[str, ...] = ()  # empty means SELECT *
    where: tuple[str, ...] = ()  # static predicates, ANDed in front of everything else
    group_by: tuple[str, ...] = ()
    order_by: str | None = None
    limit: int | None = Field(default=None, ge=1)


# (tenant_id, from, to, filters, granularity, limit, offset, timezone, *, helpers)
#   -> CompiledQuery | tuple[str, dict]
QueryGenerator = Callable[..., Any]


class CustomQuery(_BaseDefinition):
    """A query whose sql is written by a python function."""

    kind: Literal["custom"] = "custom"
    generator: QueryGenerator
    limit: int | None = Field(default=None, ge=1)


QueryDefinition = Annotated[DeclarativeQuery | CustomQuery, Field(discriminator="kind")]
