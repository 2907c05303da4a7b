"""Exception types raised by the query engine.

everything derives from QueryError so the http and cli layers can catch one
type and turn it into a {success: false, error} record. UnificationError is
the odd one out - it's normal control flow for the planner, not a failure
anybody outside the orchestrator should ever see.
"""


class QueryError(Exception):
    """Base class for all query engine errors."""


class CatalogError(QueryError):
    """Raised when query definitions can't be loaded or registered."""


class UnknownParameterError(QueryError):
    """Raised when a caller asks for a query type the catalog doesn't have."""

    def __init__(self, parameter: str, available: list[str]) -> None:
        self.parameter = parameter
        self.available = sorted(available)
        super().__init__(
            f"Unknown query type: {parameter}. "
            f"Available types: {', '.join(self.available)}"
        )


class DisallowedFilterError(QueryError):
    """Raised when a filter references a field outside the allowed set."""

    def __init__(self, field: str, query_name: str | None = None) -> None:
        self.field = field
        self.query_name = query_name
        super().__init__(f"Filter on field '{field}' is not permitted.")


class InvalidFilterError(QueryError):
    """Raised when a filter's operator or value can't be compiled."""


class UnsafeClauseError(QueryError):
    """Raised when a grouping/ordering override contains a blocked keyword."""


class UnificationError(QueryError):
    """Raised when a batch can't be merged into a single statement."""


class StoreExecutionError(QueryError):
    """Raised when the analytical store rejects or fails a query."""
