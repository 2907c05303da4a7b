"""Execution orchestrator - run a batch of requests against the store.

the happy path is one round trip: plan the whole batch into a single
UNION ALL, fetch it, split the rows per (request, parameter) and post-process
each bucket. if the batch can't be unified, or the store rejects the merged
statement, every pair runs on its own, concurrently, and a failing pair only
fails itself.

pairs that can never succeed (unknown query type, no date range) are
answered up front and never reach the planner.
"""

import asyncio
import logging
from collections.abc import Mapping, Sequence

from pulsequery.batch.demux import PairKey, split_unified_rows
from pulsequery.batch.planner import BatchPlanner
from pulsequery.catalog.registry import QueryCatalog
from pulsequery.errors import QueryError, StoreExecutionError, UnificationError, UnknownParameterError
from pulsequery.executor.duckdb_executor import DuckDBExecutor
from pulsequery.models.request import QueryRequest
from pulsequery.models.result import EnvelopeMeta, ParameterResult, QueryEnvelope
from pulsequery.processors.registry import ProcessingContext, process

logger = logging.getLogger(__name__)

MISSING_DATES_ERROR = "Missing required parameters: website_id, start_date, or end_date"

Pair = tuple[QueryRequest, str]


class ExecutionOrchestrator:
    """Runs batches: unified first, per-pair concurrent fallback."""

    def __init__(
        self,
        catalog: QueryCatalog,
        planner: BatchPlanner,
        executor: DuckDBExecutor,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.catalog = catalog
        self.planner = planner
        self.executor = executor
        self.timeout_seconds = timeout_seconds

    async def run(
        self,
        requests: Sequence[QueryRequest],
        website_domains: Mapping[str, str | None] | None = None,
    ) -> list[QueryEnvelope]:
        """Execute every request and return one envelope per request, in order."""
        website_domains = website_domains or {}
        ids = [request.id for request in requests]
        if len(set(ids)) != len(ids):
            raise QueryError("Request ids within a batch must be unique")

        results: dict[PairKey, ParameterResult] = {}
        pairs: list[Pair] = []
        for request in requests:
            for parameter in _unique(request.parameters):
                key = (request.id, parameter)
                if parameter not in self.catalog:
                    error = UnknownParameterError(parameter, self.catalog.names())
                    results[key] = _failure(parameter, str(error))
                elif not request.has_dates:
                    results[key] = _failure(parameter, MISSING_DATES_ERROR)
                else:
                    pairs.append((request, parameter))

        if pairs:
            try:
                async with asyncio.timeout(self.timeout_seconds):
                    results.update(await self._execute(pairs, website_domains))
            except TimeoutError:
                logger.warning(
                    "Batch of %d queries timed out after %ss", len(pairs), self.timeout_seconds
                )
                message = f"Query timed out after {self.timeout_seconds:g}s"
                for request, parameter in pairs:
                    results[(request.id, parameter)] = _failure(parameter, message)

        return [self._envelope(request, results) for request in requests]

    async def _execute(
        self, pairs: list[Pair], website_domains: Mapping[str, str | None]
    ) -> dict[PairKey, ParameterResult]:
        # a single pair gains nothing from the union wrapper
        if len(pairs) > 1:
            try:
                return await self._execute_unified(pairs, website_domains)
            except UnificationError as e:
                logger.info("Running %d queries individually: %s", len(pairs), e)
            except StoreExecutionError as e:
                logger.warning("Unified query failed, running %d queries individually: %s", len(pairs), e)

        async with asyncio.TaskGroup() as tg:
            tasks = {
                (request.id, parameter): tg.create_task(
                    self._execute_pair(request, parameter, website_domains.get(request.tenant_id))
                )
                for request, parameter in pairs
            }
        return {key: task.result() for key, task in tasks.items()}

    async def _execute_unified(
        self, pairs: list[Pair], website_domains: Mapping[str, str | None]
    ) -> dict[PairKey, ParameterResult]:
        unified = self.planner.plan(pairs, website_domains)
        result = await self.executor.fetch(unified.to_compiled())
        buckets = split_unified_rows(result.data, unified.members)
        logger.debug("Unified batch of %d queries returned %d rows", len(pairs), result.row_count)

        return {
            member.key: _processed(
                member.request,
                member.parameter,
                buckets[member.key],
                _context(member.request, member.parameter, website_domains),
            )
            for member in unified.members
        }

    async def _execute_pair(
        self, request: QueryRequest, parameter: str, website_domain: str | None
    ) -> ParameterResult:
        """Compile, fetch and process one pair. never raises a QueryError."""
        try:
            compiled = self.planner.compiler.compile(request.for_parameter(parameter), website_domain)
            result = await self.executor.fetch(compiled)
        except QueryError as e:
            logger.warning("Query %s failed for request %s: %s", parameter, request.id, e)
            return _failure(parameter, str(e))

        context = ProcessingContext(
            parameter=parameter, website_domain=website_domain, timezone=request.timezone
        )
        return _processed(request, parameter, result.data, context)

    def _envelope(
        self, request: QueryRequest, results: Mapping[PairKey, ParameterResult]
    ) -> QueryEnvelope:
        parameters = _unique(request.parameters)
        return QueryEnvelope(
            query_id=request.id,
            data=[results[(request.id, parameter)] for parameter in parameters],
            meta=EnvelopeMeta(
                parameters=parameters,
                total_parameters=len(parameters),
                page=request.page,
                limit=request.limit,
                filters_applied=len(request.filters),
            ),
        )


def _unique(parameters: Sequence[str]) -> list[str]:
    # asking for the same breakdown twice gets it once
    return list(dict.fromkeys(parameters))


def _failure(parameter: str, error: str) -> ParameterResult:
    return ParameterResult(parameter=parameter, success=False, error=error)


def _processed(
    request: QueryRequest, parameter: str, rows: list[dict], context: ProcessingContext
) -> ParameterResult:
    # processors see whatever the trackers stored, so a bad row fails only its own pair
    try:
        data = process(parameter, rows, context)
    except Exception as e:
        logger.warning(
            "Processing %s failed for request %s: %s", parameter, request.id, e, exc_info=True
        )
        return _failure(parameter, f"Failed to process results: {e}")
    return ParameterResult(parameter=parameter, data=data)


def _context(
    request: QueryRequest, parameter: str, website_domains: Mapping[str, str | None]
) -> ProcessingContext:
    return ProcessingContext(
        parameter=parameter,
        website_domain=website_domains.get(request.tenant_id),
        timezone=request.timezone,
    )
