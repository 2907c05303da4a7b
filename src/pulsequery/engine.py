"""Main AnalyticsEngine interface for PulseQuery.

wires the catalog, compiler, planner, store and orchestrator together. build
one at process start, call start(), hand it to whoever needs it (the api keeps
it on app.state, the cli creates one per command) and stop() it on shutdown.
"""

import logging
from collections.abc import Sequence
from typing import Any

from pulsequery.batch.orchestrator import ExecutionOrchestrator
from pulsequery.batch.planner import BatchPlanner
from pulsequery.catalog.registry import QueryCatalog, build_default_catalog
from pulsequery.compiler.sql_builder import SQLCompiler
from pulsequery.config import Settings, get_settings
from pulsequery.errors import QueryError
from pulsequery.executor.duckdb_executor import DuckDBExecutor
from pulsequery.models.request import CompileRequest, QueryRequest
from pulsequery.models.result import CompiledQuery, QueryEnvelope
from pulsequery.processors.registry import metric_type_for
from pulsequery.tenants import StaticTenantResolver, TenantResolver

logger = logging.getLogger(__name__)


class AnalyticsEngine:
    """Main interface for PulseQuery."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        catalog: QueryCatalog | None = None,
        executor: DuckDBExecutor | None = None,
        tenant_resolver: TenantResolver | None = None,
    ) -> None:
        """Initialize the engine. nothing is loaded or opened until start().

        Args:
            settings: Configuration, defaults to the process-wide settings.
            catalog: Prebuilt catalog, defaults to the bundled definitions.
            executor: Store executor, defaults to one on settings.database_path.
            tenant_resolver: Website -> tenant lookup, defaults to settings.website_domains.
        """
        self.settings = settings or get_settings()
        self._catalog = catalog
        self._executor = executor
        self.tenant_resolver = tenant_resolver or StaticTenantResolver(self.settings.website_domains)
        self._compiler: SQLCompiler | None = None
        self._orchestrator: ExecutionOrchestrator | None = None

    # --- lifecycle ---

    @property
    def started(self) -> bool:
        return self._orchestrator is not None

    def start(self) -> "AnalyticsEngine":
        if self.started:
            return self

        # load and validate definitions upfront - fail fast if there are problems
        if self._catalog is None:
            self._catalog = build_default_catalog(self.settings.catalog_paths)
        if self._executor is None:
            self._executor = DuckDBExecutor(self.settings.database_path)
        if self.settings.bootstrap_schema:
            self._executor.bootstrap_schema()

        self._compiler = SQLCompiler(self._catalog)
        planner = BatchPlanner(self._compiler, metric_type_for)
        self._orchestrator = ExecutionOrchestrator(
            self._catalog,
            planner,
            self._executor,
            timeout_seconds=self.settings.query_timeout_seconds,
        )
        logger.info(
            "Analytics engine started (%d query types, database=%s)",
            len(self._catalog),
            self.settings.database_path or ":memory:",
        )
        return self

    def stop(self) -> None:
        if self._executor is not None:
            self._executor.close()
        self._orchestrator = None
        self._compiler = None
        logger.info("Analytics engine stopped")

    def __enter__(self) -> "AnalyticsEngine":
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    # --- components ---

    @property
    def catalog(self) -> QueryCatalog:
        self._require_started()
        return self._catalog  # type: ignore[return-value]

    @property
    def compiler(self) -> SQLCompiler:
        self._require_started()
        return self._compiler  # type: ignore[return-value]

    @property
    def executor(self) -> DuckDBExecutor:
        self._require_started()
        return self._executor  # type: ignore[return-value]

    def _require_started(self) -> None:
        if not self.started:
            raise RuntimeError("AnalyticsEngine.start() has not been called")

    # --- queries ---

    def list_types(self) -> list[str]:
        return self.catalog.names()

    def describe(self) -> dict[str, dict[str, Any]]:
        return self.catalog.describe()

    def describe_type(self, name: str) -> dict[str, Any]:
        """Metadata of one query type. raises UnknownParameterError."""
        definition = self.catalog.get(name)
        return {
            "name": definition.name,
            "kind": definition.kind,
            "allowedFilters": sorted(definition.allowed_filters),
            "customizable": definition.customizable,
            "defaultLimit": definition.limit,
            "sessionAttribution": definition.session_attribution,
            **definition.meta.model_dump(mode="json"),
        }

    def website_domain(self, website_id: str) -> str | None:
        tenant = self.tenant_resolver.resolve(website_id)
        if tenant is None:
            raise QueryError(f"Unknown website: {website_id}")
        return tenant.domain

    def compile(self, request: CompileRequest) -> CompiledQuery:
        """Get the sql without executing it."""
        if request.limit is not None:
            self._check_limit(request.limit)
        return self.compiler.compile(request, self.website_domain(request.tenant_id))

    def _check_limit(self, limit: int) -> None:
        if limit > self.settings.max_limit:
            raise QueryError(f"Limit {limit} exceeds the maximum of {self.settings.max_limit}")

    def _with_limits(self, request: QueryRequest) -> QueryRequest:
        # requests that never asked for a limit get the configured default
        if "limit" not in request.model_fields_set:
            request = request.model_copy(update={"limit": self.settings.default_limit})
        self._check_limit(request.limit)
        return request

    async def execute(self, requests: Sequence[QueryRequest]) -> list[QueryEnvelope]:
        """Run a batch of requests. one envelope per request, same order."""
        self._require_started()
        requests = [self._with_limits(request) for request in requests]
        domains = {
            tenant_id: self.website_domain(tenant_id)
            for tenant_id in dict.fromkeys(request.tenant_id for request in requests)
        }
        return await self._orchestrator.run(requests, domains)  # type: ignore[union-attr]

    async def query(self, request: QueryRequest) -> QueryEnvelope:
        """Run a single request."""
        (envelope,) = await self.execute([request])
        return envelope
