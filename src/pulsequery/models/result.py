"""Pydantic models for compiled queries and results."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CompiledQuery(BaseModel):
    """Parameterized sql plus its bound values - the unit of execution.

    values are always bound, never spliced into the text. the only things
    that end up in the sql verbatim are identifiers and expressions that come
    from the catalog, plus the vetted grouping/ordering overrides.
    """

    model_config = ConfigDict(frozen=True)

    sql: str
    params: dict[str, Any] = Field(default_factory=dict)


class ParameterResult(BaseModel):
    """Outcome of one query type within a request."""

    parameter: str
    data: list[dict[str, Any]] = Field(default_factory=list)
    success: bool = True
    error: str | None = None

    def to_wire(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "parameter": self.parameter,
            "data": self.data,
            "success": self.success,
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


class EnvelopeMeta(BaseModel):
    parameters: list[str]
    total_parameters: int
    page: int
    limit: int
    filters_applied: int


class QueryEnvelope(BaseModel):
    """All parameter results for one request, plus pagination metadata."""

    query_id: str
    data: list[ParameterResult]
    meta: EnvelopeMeta
    success: bool = True
    error: str | None = None

    def result_for(self, parameter: str) -> ParameterResult | None:
        for result in self.data:
            if result.parameter == parameter:
                return result
        return None

    def to_wire(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "queryId": self.query_id,
            "data": [result.to_wire() for result in self.data],
            "meta": self.meta.model_dump(),
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


class QueryResult(BaseModel):
    """Rows returned by the store for a single statement.

    returning the sql alongside data is useful for debugging and auditing.
    """

    sql: str
    columns: list[str]
    data: list[dict[str, Any]]
    row_count: int
    execution_time_ms: float
