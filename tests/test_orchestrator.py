"""Tests for batch execution: unified runs, fallback and failure isolation."""

import asyncio
import logging
from datetime import datetime

import pytest

from pulsequery.batch.orchestrator import MISSING_DATES_ERROR, ExecutionOrchestrator
from pulsequery.batch.planner import BatchPlanner
from pulsequery.catalog.registry import QueryCatalog
from pulsequery.compiler.sql_builder import SQLCompiler
from pulsequery.config import Settings
from pulsequery.engine import AnalyticsEngine
from pulsequery.errors import QueryError, StoreExecutionError
from pulsequery.executor.duckdb_executor import DuckDBExecutor
from pulsequery.models.request import CompileRequest, FilterClause, QueryRequest
from pulsequery.models.result import CompiledQuery, QueryResult
from pulsequery.processors.registry import metric_type_for, process

from conftest import DOMAIN, JANUARY, TENANT


def _request(parameters: list[str], **kwargs) -> QueryRequest:
    start, end = JANUARY
    values = {"tenant_id": TENANT, "parameters": parameters, "start_date": start, "end_date": end}
    return QueryRequest(**(values | kwargs))


def _by_name(rows: list[dict]) -> list[dict]:
    return sorted(rows, key=lambda row: str(row.get("name")))


class RecordingExecutor:
    """Delegates to a real executor and remembers what it was asked to run."""

    def __init__(self, executor: DuckDBExecutor, fail_unified: bool = False) -> None:
        self.executor = executor
        self.fail_unified = fail_unified
        self.statements: list[str] = []

    async def fetch(self, query: CompiledQuery) -> QueryResult:
        self.statements.append(query.sql)
        if self.fail_unified and "UNION ALL" in query.sql:
            raise StoreExecutionError("merged statement rejected")
        return await self.executor.fetch(query)


class SlowExecutor:
    async def fetch(self, query: CompiledQuery) -> QueryResult:
        await asyncio.sleep(5)
        raise AssertionError("should have timed out")


def _orchestrator(catalog: QueryCatalog, executor, timeout_seconds: float = 10.0) -> ExecutionOrchestrator:
    planner = BatchPlanner(SQLCompiler(catalog), metric_type_for)
    return ExecutionOrchestrator(catalog, planner, executor, timeout_seconds=timeout_seconds)


class TestUnifiedExecution:
    @pytest.mark.asyncio
    async def test_unified_batch_is_one_statement(self, catalog: QueryCatalog, executor: DuckDBExecutor):
        """Same-shaped breakdowns run as a single statement."""
        recording = RecordingExecutor(executor)
        orchestrator = _orchestrator(catalog, recording)

        (envelope,) = await orchestrator.run(
            [_request(["top_pages", "country", "browser_name"])], {TENANT: DOMAIN}
        )

        assert len(recording.statements) == 1
        assert "UNION ALL" in recording.statements[0]
        assert [r.parameter for r in envelope.data] == ["top_pages", "country", "browser_name"]
        assert all(r.success for r in envelope.data)

    @pytest.mark.asyncio
    async def test_unified_matches_individual_runs(self, catalog: QueryCatalog, executor: DuckDBExecutor):
        """Unified results equal what each pair returns on its own, post-processing included."""
        orchestrator = _orchestrator(catalog, executor)
        parameters = ["top_pages", "country", "language", "top_referrers"]

        (batched,) = await orchestrator.run([_request(parameters)], {TENANT: DOMAIN})
        for parameter in parameters:
            (alone,) = await orchestrator.run([_request([parameter])], {TENANT: DOMAIN})
            assert _by_name(batched.result_for(parameter).data) == _by_name(alone.data[0].data)

    @pytest.mark.asyncio
    async def test_store_failure_falls_back(self, catalog: QueryCatalog, executor: DuckDBExecutor):
        """A rejected merged statement falls back to per-pair execution."""
        recording = RecordingExecutor(executor, fail_unified=True)
        orchestrator = _orchestrator(catalog, recording)

        (envelope,) = await orchestrator.run([_request(["top_pages", "country"])], {TENANT: DOMAIN})

        assert all(r.success for r in envelope.data)
        assert len(recording.statements) == 3
        assert envelope.result_for("top_pages").data[0] == {"name": "/pricing", "pageviews": 2, "visitors": 2}

    @pytest.mark.asyncio
    async def test_single_pair_skips_union(self, catalog: QueryCatalog, executor: DuckDBExecutor):
        """A lone pair runs its own statement."""
        recording = RecordingExecutor(executor)
        await _orchestrator(catalog, recording).run([_request(["top_pages"])])
        assert len(recording.statements) == 1
        assert "UNION ALL" not in recording.statements[0]


class TestFallback:
    @pytest.mark.asyncio
    async def test_mixed_signatures(self, catalog: QueryCatalog, executor: DuckDBExecutor):
        """Different output shapes run one by one, concurrently."""
        recording = RecordingExecutor(executor)
        orchestrator = _orchestrator(catalog, recording)

        (envelope,) = await orchestrator.run(
            [_request(["top_pages", "custom_events", "revenue_summary"])], {TENANT: DOMAIN}
        )

        assert len(recording.statements) == 3
        assert all(r.success for r in envelope.data)
        events = envelope.result_for("custom_events").data
        assert [(e["name"], e["total_events"]) for e in events] == [("signup_click", 2)]

    @pytest.mark.asyncio
    async def test_failing_pair_does_not_fail_siblings(self, catalog: QueryCatalog, executor: DuckDBExecutor):
        """A filter one query doesn't allow fails only that query."""
        orchestrator = _orchestrator(catalog, executor)
        request = _request(
            ["top_pages", "custom_events"],
            filters=[FilterClause(field="event_name", operator="eq", value="signup_click")],
        )

        (envelope,) = await orchestrator.run([request])

        top_pages = envelope.result_for("top_pages")
        assert not top_pages.success
        assert top_pages.error == "Filter on field 'event_name' is not permitted."
        assert top_pages.data == []
        custom_events = envelope.result_for("custom_events")
        assert custom_events.success
        assert custom_events.data[0]["total_events"] == 2

    @pytest.mark.asyncio
    async def test_fallback_matches_individual_runs(self, catalog: QueryCatalog, executor: DuckDBExecutor):
        """Fallback results equal independent runs of each pair."""
        orchestrator = _orchestrator(catalog, executor)
        parameters = ["top_pages", "custom_events", "summary_metrics", "device_types"]

        (batched,) = await orchestrator.run([_request(parameters)])
        for parameter in parameters:
            (alone,) = await orchestrator.run([_request([parameter])])
            assert _by_name(batched.result_for(parameter).data) == _by_name(alone.data[0].data)


class TestRequestValidation:
    @pytest.mark.asyncio
    async def test_unknown_parameter(self, catalog: QueryCatalog, executor: DuckDBExecutor):
        """Unknown types fail on their own, known ones still run."""
        (envelope,) = await _orchestrator(catalog, executor).run([_request(["top_pages", "nope"])])

        nope = envelope.result_for("nope")
        assert not nope.success
        assert nope.error.startswith("Unknown query type: nope. Available types: ")
        assert envelope.result_for("top_pages").success

    @pytest.mark.asyncio
    async def test_missing_dates(self, catalog: QueryCatalog, executor: DuckDBExecutor):
        """A request without a date range fails every parameter, other requests still run."""
        undated = QueryRequest(tenant_id=TENANT, parameters=["top_pages", "country"])
        dated = _request(["country"])

        first, second = await _orchestrator(catalog, executor).run([undated, dated])

        assert [r.error for r in first.data] == [MISSING_DATES_ERROR, MISSING_DATES_ERROR]
        assert second.data[0].success

    @pytest.mark.asyncio
    async def test_duplicate_parameters(self, catalog: QueryCatalog, executor: DuckDBExecutor):
        """Asking for the same type twice returns it once."""
        (envelope,) = await _orchestrator(catalog, executor).run([_request(["country", "country"])])
        assert [r.parameter for r in envelope.data] == ["country"]
        assert envelope.meta.parameters == ["country"]
        assert envelope.meta.total_parameters == 1

    @pytest.mark.asyncio
    async def test_duplicate_request_ids(self, catalog: QueryCatalog, executor: DuckDBExecutor):
        """Request ids tie rows to requests, so they must be unique."""
        with pytest.raises(QueryError):
            await _orchestrator(catalog, executor).run(
                [_request(["country"], id="same"), _request(["top_pages"], id="same")]
            )

    @pytest.mark.asyncio
    async def test_envelope_meta(self, catalog: QueryCatalog, executor: DuckDBExecutor):
        """Envelopes carry pagination and filter counts."""
        request = _request(
            ["country"],
            id="req-1",
            page=2,
            limit=5,
            filters=[FilterClause(field="country", operator="ne", value="US")],
        )
        (envelope,) = await _orchestrator(catalog, executor).run([request])

        assert envelope.query_id == "req-1"
        assert envelope.meta.page == 2
        assert envelope.meta.limit == 5
        assert envelope.meta.filters_applied == 1


class TestMultipleRequests:
    @pytest.mark.asyncio
    async def test_requests_keep_their_own_options(self, catalog: QueryCatalog, executor: DuckDBExecutor):
        """Each request in a unified batch gets its own filters and limits."""
        all_countries = _request(["country"])
        only_gb = _request(["country"], filters=[FilterClause(field="country", operator="eq", value="GB")])

        first, second = await _orchestrator(catalog, executor).run([all_countries, only_gb])

        assert len(first.data[0].data) == 4
        assert [row["name"] for row in second.data[0].data] == ["United Kingdom"]

    @pytest.mark.asyncio
    async def test_tenants_are_isolated(self, catalog: QueryCatalog, executor: DuckDBExecutor):
        """Rows of one tenant never show up in another's results."""
        mine = _request(["top_pages"])
        theirs = _request(["top_pages"], tenant_id="site_b")

        first, second = await _orchestrator(catalog, executor).run([mine, theirs])

        assert "/secret" not in [row["name"] for row in first.data[0].data]
        assert [row["name"] for row in second.data[0].data] == ["/secret"]


def _break_timezone_processing(monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_process(parameter, rows, context=None):
        if parameter == "timezone":
            raise RuntimeError("bad timezone row")
        return process(parameter, rows, context)

    monkeypatch.setattr("pulsequery.batch.orchestrator.process", failing_process)


class TestProcessingFailures:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("sibling", ["top_pages", "custom_events"])
    async def test_processing_error_fails_only_its_pair(
        self,
        catalog: QueryCatalog,
        executor: DuckDBExecutor,
        monkeypatch: pytest.MonkeyPatch,
        caplog: pytest.LogCaptureFixture,
        sibling: str,
    ):
        """A processor raising fails its own pair, unified or not, and siblings still succeed."""
        _break_timezone_processing(monkeypatch)

        with caplog.at_level(logging.WARNING):
            (envelope,) = await _orchestrator(catalog, executor).run([_request(["timezone", sibling])])

        timezone = envelope.result_for("timezone")
        assert not timezone.success
        assert timezone.error == "Failed to process results: bad timezone row"
        assert envelope.result_for(sibling).success
        assert envelope.result_for(sibling).data
        assert "Processing timezone failed" in caplog.text

    @pytest.mark.asyncio
    @pytest.mark.parametrize("sibling", ["top_pages", "custom_events"])
    async def test_zone_directory_name(self, catalog: QueryCatalog, executor: DuckDBExecutor, sibling: str):
        """A timezone that names a zoneinfo directory is labelled without an offset."""
        executor.insert_rows(
            "events",
            [{"id": "tz-1", "client_id": TENANT, "event_name": "screen_view", "anonymous_id": "a9",
              "session_id": "s9", "time": datetime(2024, 1, 20, 9, 0), "path": "/", "timezone": "America"}],
        )

        (envelope,) = await _orchestrator(catalog, executor).run([_request(["timezone", sibling])])

        assert all(r.success for r in envelope.data)
        labels = {row["name"]: row for row in envelope.result_for("timezone").data}
        assert labels["America"]["offset"] is None
        assert labels["America"]["label"] == "America"


class TestTimeout:
    @pytest.mark.asyncio
    async def test_timeout_fails_every_pair(self, catalog: QueryCatalog, caplog: pytest.LogCaptureFixture):
        """Running past the deadline fails the batch's pairs with a timeout error."""
        orchestrator = _orchestrator(catalog, SlowExecutor(), timeout_seconds=0.05)

        with caplog.at_level(logging.WARNING):
            (envelope,) = await orchestrator.run([_request(["top_pages", "custom_events"])])

        assert [r.error for r in envelope.data] == ["Query timed out after 0.05s"] * 2
        assert "timed out" in caplog.text


class TestEngine:
    @pytest.mark.asyncio
    async def test_engine_query(self, engine: AnalyticsEngine):
        """The engine resolves the tenant domain and runs the request."""
        envelope = await engine.query(_request(["top_referrers", "revenue_summary"]))

        referrers = envelope.result_for("top_referrers").data
        assert {row["name"] for row in referrers} == {"Google", "X (Twitter)", "news.ycombinator.com"}
        (summary,) = envelope.result_for("revenue_summary").data
        assert summary["total_transactions"] == 3
        assert summary["successful_transactions"] == 2
        assert summary["total_refunds"] == 1

    def test_engine_requires_start(self, settings):
        """Components aren't available before start()."""
        with pytest.raises(RuntimeError):
            AnalyticsEngine(settings).compiler

    def test_describe_type(self, engine: AnalyticsEngine):
        """describe_type merges definition settings and metadata."""
        meta = engine.describe_type("top_pages")
        assert meta["name"] == "top_pages"
        assert meta["kind"] == "declarative"
        assert meta["defaultLimit"] == 100
        assert meta["title"] == "Top pages"
        assert meta["sessionAttribution"] is False


class TestEngineLimits:
    @pytest.fixture
    def limited(self, catalog: QueryCatalog, executor: DuckDBExecutor) -> AnalyticsEngine:
        settings = Settings(website_domains={TENANT: DOMAIN}, default_limit=2, max_limit=5)
        return AnalyticsEngine(settings, catalog=catalog, executor=executor).start()

    @pytest.mark.asyncio
    async def test_default_limit_applies(self, limited: AnalyticsEngine):
        """Requests that don't set a limit get the configured default."""
        envelope = await limited.query(_request(["top_pages"]))
        assert envelope.meta.limit == 2
        assert len(envelope.data[0].data) <= 2

    @pytest.mark.asyncio
    async def test_explicit_limit_wins(self, limited: AnalyticsEngine):
        """An explicit limit within the maximum is kept."""
        envelope = await limited.query(_request(["top_pages"], limit=4))
        assert envelope.meta.limit == 4

    @pytest.mark.asyncio
    async def test_limit_above_maximum(self, limited: AnalyticsEngine):
        """Limits above the configured maximum are rejected."""
        with pytest.raises(QueryError, match="exceeds the maximum of 5"):
            await limited.query(_request(["top_pages"], limit=6))

    def test_compile_limit_above_maximum(self, limited: AnalyticsEngine):
        """The dry run enforces the same maximum."""
        start, end = JANUARY
        with pytest.raises(QueryError, match="exceeds the maximum"):
            limited.compile(
                CompileRequest(tenant_id=TENANT, name="top_pages", start_date=start, end_date=end, limit=6)
            )
