"""Pydantic models for PulseQuery."""

from pulsequery.models.definition import (
    CustomQuery,
    DeclarativeQuery,
    OutputField,
    QueryDefinition,
    QueryMeta,
)
from pulsequery.models.request import (
    CompileRequest,
    FilterClause,
    FilterOperator,
    Granularity,
    QueryRequest,
)
from pulsequery.models.result import (
    CompiledQuery,
    EnvelopeMeta,
    ParameterResult,
    QueryEnvelope,
    QueryResult,
)

__all__ = [
    "CompileRequest",
    "CompiledQuery",
    "CustomQuery",
    "DeclarativeQuery",
    "EnvelopeMeta",
    "FilterClause",
    "FilterOperator",
    "Granularity",
    "OutputField",
    "ParameterResult",
    "QueryDefinition",
    "QueryEnvelope",
    "QueryMeta",
    "QueryRequest",
    "QueryResult",
]
