"""DuckDB query executor for PulseQuery.

duckdb is the analytical store - embedded, columnar, and speaks sql with
named parameters ($name), which is all the compiler needs. the in-memory
mode is great for tests and one-off exploration.

duckdb calls block, so the async entry point (fetch) runs them in a worker
thread. every call gets its own cursor - a cursor is an independent
connection to the same database, which is what makes concurrent fallback
queries safe.
"""

import asyncio
import logging
import time
from collections.abc import Iterable, Mapping
from typing import Any

import duckdb

from pulsequery.errors import StoreExecutionError
from pulsequery.executor.schema import SCHEMA_DDL, TABLE_COLUMNS
from pulsequery.models.result import CompiledQuery, QueryResult

logger = logging.getLogger(__name__)


class DuckDBExecutor:
    """Execute compiled queries against DuckDB.

    thin wrapper around duckdb that handles connection management, cursor
    lifetime and result formatting. keeps the duckdb-specific bits isolated.
    """

    def __init__(self, database_path: str | None = None) -> None:
        """Initialize the executor.

        Args:
            database_path: Path to DuckDB file, or None for in-memory.
        """
        self.database_path = database_path
        self._conn: duckdb.DuckDBPyConnection | None = None  # lazy init

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        """Get or create the DuckDB connection.

        lazy initialization so we don't open a db until we actually need it.
        ":memory:" is the duckdb convention for in-memory database.
        """
        if self._conn is None:
            self._conn = duckdb.connect(self.database_path or ":memory:")
        return self._conn

    def bootstrap_schema(self) -> None:
        """Create the event tables if they don't exist yet."""
        for table_name, ddl in SCHEMA_DDL.items():
            self.conn.execute(ddl)
            logger.debug("Ensured table %s", table_name)

    def execute(self, sql: str, params: Mapping[str, Any] | None = None) -> QueryResult:
        """Execute SQL on a fresh cursor and return structured results."""
        return self._run(self.conn.cursor(), sql, dict(params or {}))

    async def fetch(self, query: CompiledQuery) -> QueryResult:
        """Execute a compiled query without blocking the event loop.

        if the awaiting task gets cancelled (timeout, sibling failure) the
        cursor is interrupted so duckdb stops working on a result nobody
        will read.
        """
        cursor = self.conn.cursor()
        try:
            return await asyncio.to_thread(self._run, cursor, query.sql, dict(query.params))
        except asyncio.CancelledError:
            cursor.interrupt()
            raise

    def _run(
        self, cursor: duckdb.DuckDBPyConnection, sql: str, params: dict[str, Any]
    ) -> QueryResult:
        """Run one statement on its own cursor. closes the cursor when done."""
        start = time.perf_counter()
        try:
            result = cursor.execute(sql, params) if params else cursor.execute(sql)
            # result.description gives us (name, type_code, ...) tuples
            # statements without a result set (DDL) have no description
            columns = [desc[0] for desc in result.description or ()]
            rows = result.fetchall() if columns else []
        except duckdb.Error as e:
            raise StoreExecutionError(str(e)) from e
        finally:
            cursor.close()

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug("Query returned %d rows in %.2fms", len(rows), elapsed_ms)

        # convert rows to list of dicts - easier to work with in python
        data = [dict(zip(columns, row)) for row in rows]

        return QueryResult(
            sql=sql,
            columns=columns,
            data=data,
            row_count=len(data),
            execution_time_ms=round(elapsed_ms, 2),
        )

    def insert_rows(self, table_name: str, rows: Iterable[Mapping[str, Any]]) -> int:
        """Append rows (dicts keyed by column name) to one of the store tables.

        missing columns are inserted as NULL. meant for tests and the sample
        data script - real data arrives through ingestion.
        """
        if table_name not in TABLE_COLUMNS:
            raise ValueError(f"Unknown table: {table_name}")
        columns = TABLE_COLUMNS[table_name]
        values = [tuple(row.get(column) for column in columns) for row in rows]
        if not values:
            return 0

        placeholders = ", ".join(["?"] * len(columns))
        # executemany is more efficient than individual inserts
        self.conn.executemany(
            f"INSERT INTO {table_name} ({', '.join(columns)}) VALUES ({placeholders})",
            values,
        )
        return len(values)

    def table_exists(self, table_name: str) -> bool:
        """Check if a table exists.

        querying information_schema is the portable way to do this.
        """
        result = self.conn.execute(
            "SELECT COUNT(*) FROM information_schema.tables WHERE table_name = ?",
            [table_name],
        )
        return result.fetchone()[0] > 0

    def get_table_schema(self, table_name: str) -> list[tuple[str, str]]:
        """Get column names and types for a table."""
        result = self.conn.execute(f"DESCRIBE {table_name}")
        return [(row[0], row[1]) for row in result.fetchall()]

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    # context manager support for clean resource management
    def __enter__(self) -> "DuckDBExecutor":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
