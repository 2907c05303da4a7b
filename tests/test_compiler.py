"""Tests for SQL compiler."""

import pytest

from pulsequery.catalog.custom import revenue_by_referrer
from pulsequery.catalog.registry import QueryCatalog
from pulsequery.compiler.sql_builder import (
    SQLCompiler,
    check_clause_safe,
    format_datetime,
    referenced_params,
)
from pulsequery.devices.classifier import device_type_condition_sql
from pulsequery.errors import (
    DisallowedFilterError,
    QueryError,
    UnknownParameterError,
    UnsafeClauseError,
)
from pulsequery.executor.duckdb_executor import DuckDBExecutor
from pulsequery.models.definition import CustomQuery, DeclarativeQuery
from pulsequery.models.request import CompileRequest, FilterClause
from pulsequery.models.result import CompiledQuery

from conftest import DOMAIN, JANUARY, TENANT


def _request(name: str, **kwargs) -> CompileRequest:
    start, end = JANUARY
    return CompileRequest(tenant_id=TENANT, name=name, start_date=start, end_date=end, **kwargs)


def _rows(executor: DuckDBExecutor, compiled: CompiledQuery) -> list[dict]:
    return executor.execute(compiled.sql, compiled.params).data


class TestSQLCompiler:
    def test_compile_declarative(self, compiler: SQLCompiler):
        """Compiles a declarative definition with tenant and date bounds bound as params."""
        compiled = compiler.compile(_request("top_pages"))

        assert compiled.sql.startswith("SELECT")
        assert "FROM events" in compiled.sql
        assert "client_id = $websiteId" in compiled.sql
        assert "time >= CAST($from AS TIMESTAMP)" in compiled.sql
        assert "GROUP BY path" in compiled.sql
        assert "ORDER BY pageviews DESC" in compiled.sql
        assert "LIMIT 100" in compiled.sql
        assert compiled.params == {"websiteId": TENANT, "from": "2024-01-01", "to": "2024-01-31"}

    def test_compile_is_idempotent(self, compiler: SQLCompiler):
        """The same request always yields the same sql and params."""
        request = _request(
            "custom_events",
            filters=[FilterClause(field="country", operator="in", value=["US", "GB"])],
        )
        assert compiler.compile(request) == compiler.compile(request)

    def test_every_referenced_param_is_bound(self, compiler: SQLCompiler, catalog: QueryCatalog):
        """Params and $placeholders match exactly, for every definition."""
        for name in catalog.names():
            compiled = compiler.compile(_request(name), DOMAIN)
            assert referenced_params(compiled.sql) == set(compiled.params), name

    def test_unknown_name(self, compiler: SQLCompiler):
        """Unknown query types list what is available."""
        with pytest.raises(UnknownParameterError) as exc_info:
            compiler.compile(_request("no_such_query"))
        assert "Unknown query type: no_such_query" in str(exc_info.value)
        assert "top_pages" in str(exc_info.value)

    def test_request_limit_and_offset(self, compiler: SQLCompiler):
        """Request pagination overrides the definition limit."""
        compiled = compiler.compile(_request("top_pages", limit=10, offset=20))
        assert compiled.sql.endswith("LIMIT 10\nOFFSET 20")

    def test_datetime_inputs_are_normalized(self, compiler: SQLCompiler):
        """ISO timestamps lose their T, fraction and Z."""
        compiled = compiler.compile(
            CompileRequest(
                tenant_id=TENANT,
                name="top_pages",
                start_date="2024-01-01T00:00:00.000Z",
                end_date="2024-01-31T10:30:00Z",
            )
        )
        assert compiled.params["from"] == "2024-01-01 00:00:00"
        assert compiled.params["to"] == "2024-01-31 10:30:00"

    def test_format_datetime(self):
        """Plain dates pass through."""
        assert format_datetime("2024-01-31") == "2024-01-31"
        assert format_datetime(" 2024-01-31T23:59:59.999Z ") == "2024-01-31 23:59:59"

    def test_format_sql(self, compiler: SQLCompiler):
        """format_sql pretty prints and falls back to the input."""
        compiled = compiler.compile(_request("top_pages"))
        assert "SELECT" in compiler.format_sql(compiled.sql)
        assert compiler.format_sql("SELECT (1") == "SELECT (1"


class TestFilters:
    def test_device_type_filter(self, compiler: SQLCompiler):
        """device_type adds the classifier condition and no param."""
        compiled = compiler.compile(
            _request(
                "custom_events",
                filters=[FilterClause(field="device_type", operator="eq", value="mobile")],
            )
        )
        assert device_type_condition_sql("mobile") in compiled.sql
        assert "event_name NOT IN ('screen_view', 'page_exit', 'error', 'web_vitals', 'link_out')" in compiled.sql
        assert not any(key.startswith("f") and key[1:].isdigit() for key in compiled.params)

    def test_disallowed_filter(self, compiler: SQLCompiler):
        """A filter outside the definition's allowed set raises."""
        with pytest.raises(DisallowedFilterError):
            compiler.compile(
                _request("top_pages", filters=[FilterClause(field="event_name", operator="eq", value="x")])
            )

    def test_custom_query_filters(self, compiler: SQLCompiler):
        """Custom generators get the compiled filters and their params are kept."""
        compiled = compiler.compile(
            _request("summary_metrics", filters=[FilterClause(field="country", operator="eq", value="US")])
        )
        assert "country = $f0" in compiled.sql
        assert compiled.params["f0"] == "US"

    def test_custom_query_allowed_filters(self, compiler: SQLCompiler):
        """Custom definitions enforce their own allowed set."""
        with pytest.raises(DisallowedFilterError):
            compiler.compile(
                _request("active_stats", filters=[FilterClause(field="country", operator="eq", value="US")])
            )


class TestClauseSafety:
    @pytest.mark.parametrize(
        "text",
        [
            "path; DROP TABLE events",
            "drop",
            "visitors DESC -- comment",
            "path /* x */",
            "Delete",
            "(SELECT 1); INSERT INTO events VALUES (1)",
            "pageviews; ATTACH 'x.db'",
        ],
    )
    def test_unsafe_order_by(self, compiler: SQLCompiler, text: str):
        """Blocked keywords and tokens are rejected in any case."""
        with pytest.raises(UnsafeClauseError):
            compiler.compile(_request("top_pages", order_by=text))

    def test_unsafe_group_by(self, compiler: SQLCompiler):
        """Grouping overrides are vetted the same way."""
        with pytest.raises(UnsafeClauseError) as exc_info:
            compiler.compile(_request("top_pages", group_by=["path", "truncate"]))
        assert "TRUNCATE" in str(exc_info.value)

    def test_keywords_match_whole_words(self):
        """Identifiers that merely contain a keyword are fine."""
        check_clause_safe("updated_at DESC")
        check_clause_safe("created")
        check_clause_safe("dropped_frames")

    def test_overrides_apply(self, compiler: SQLCompiler):
        """Customizable definitions accept grouping and ordering overrides."""
        compiled = compiler.compile(_request("top_pages", order_by="visitors DESC"))
        assert "ORDER BY visitors DESC" in compiled.sql

    def test_non_customizable_ignores_overrides(self):
        """Definitions that opt out keep their own grouping and ordering."""
        catalog = QueryCatalog()
        catalog.register(
            DeclarativeQuery(
                name="fixed",
                table="events",
                fields=("path AS name", "COUNT(*) AS pageviews"),
                group_by=("path",),
                order_by="pageviews DESC",
                customizable=False,
            )
        )
        compiled = SQLCompiler(catalog).compile(
            _request("fixed", group_by=["country"], order_by="name")
        )
        assert "GROUP BY path" in compiled.sql
        assert "ORDER BY pageviews DESC" in compiled.sql
        assert "country" not in compiled.sql


class TestWebsiteDomain:
    def test_domain_is_bound(self, compiler: SQLCompiler):
        """The domain placeholder becomes a bound param."""
        compiled = compiler.compile(_request("top_referrers"), DOMAIN)
        assert "{websiteDomain}" not in compiled.sql
        assert "$websiteDomain" in compiled.sql
        assert compiled.params["websiteDomain"] == DOMAIN
        assert DOMAIN not in compiled.sql

    def test_unknown_domain_drops_predicates(self, compiler: SQLCompiler):
        """Without a domain the self-referral predicates become 1=1."""
        compiled = compiler.compile(_request("top_referrers"))
        assert "websiteDomain" not in compiled.sql
        assert "websiteDomain" not in compiled.params
        assert "1=1" in compiled.sql

    def test_self_referrals_excluded(self, compiler: SQLCompiler, executor: DuckDBExecutor):
        """Internal navigation isn't counted as a referrer."""
        with_domain = _rows(executor, compiler.compile(_request("top_referrers"), DOMAIN))
        without = _rows(executor, compiler.compile(_request("top_referrers")))

        assert "https://example.com/" not in [row["name"] for row in with_domain]
        assert "https://example.com/" in [row["name"] for row in without]


class TestSessionAttribution:
    def test_cte_structure(self, compiler: SQLCompiler):
        """Attributed queries read from the attributed_events CTE."""
        compiled = compiler.compile(_request("utm_sources"))
        assert compiled.sql.startswith("WITH session_attribution AS (")
        assert "arg_min(utm_source, time) AS session_utm_source" in compiled.sql
        assert "FROM attributed_events" in compiled.sql

    def test_first_touch_credit(self, compiler: SQLCompiler, executor: DuckDBExecutor):
        """Every pageview of a session is credited to its first utm source."""
        rows = _rows(executor, compiler.compile(_request("utm_sources")))
        assert rows == [{"name": "newsletter", "pageviews": 2, "visitors": 1}]

    def test_filters_apply_to_attributed_values(self, compiler: SQLCompiler, executor: DuckDBExecutor):
        """Filtering on an attributed dimension uses the session's value."""
        compiled = compiler.compile(
            _request(
                "utm_sources",
                filters=[FilterClause(field="utm_medium", operator="eq", value="email")],
            )
        )
        assert _rows(executor, compiled) == [{"name": "newsletter", "pageviews": 2, "visitors": 1}]

    def test_bounds_follow_end_of_day_setting(self):
        """Without end of day the CTE bounds stop at the raw upper date."""
        catalog = QueryCatalog()
        catalog.register(
            DeclarativeQuery(
                name="live_sources",
                table="events",
                fields=("utm_source AS name", "COUNT(*) AS pageviews"),
                group_by=("utm_source",),
                session_attribution=True,
                append_end_of_day=False,
            )
        )
        sql = SQLCompiler(catalog).compile(_request("live_sources")).sql
        assert "23:59:59" not in sql
        assert "AND time <= CAST($to AS TIMESTAMP)" in sql
        assert "e.time <= CAST($to AS TIMESTAMP)" in sql

    def test_default_bounds_cover_final_day(self, compiler: SQLCompiler):
        """Attributed queries include the whole last day by default."""
        sql = compiler.compile(_request("utm_sources")).sql
        assert "e.time <= CAST(concat(" in sql

    def test_custom_helper_follows_end_of_day_setting(self):
        """Generators get a CTE built with their definition's end of day setting."""

        def generator(tenant_id, start, end, filters, granularity, limit, offset, timezone, *, helpers):
            return f"WITH {helpers.session_attribution_cte()} SELECT COUNT(*) AS n FROM attributed_events"

        catalog = QueryCatalog()
        catalog.register(
            CustomQuery(name="live", generator=generator, session_attribution=True, append_end_of_day=False)
        )
        sql = SQLCompiler(catalog).compile(_request("live")).sql
        assert "23:59:59" not in sql
        assert "e.time <= CAST($to AS TIMESTAMP)" in sql


class TestCustomQueries:
    def test_generator_extra_params(self):
        """A generator may return its own params alongside the sql."""

        def generator(tenant_id, start, end, filters, granularity, limit, offset, timezone, *, helpers):
            return "SELECT $answer AS answer WHERE client_id = $websiteId", {"answer": 42, "unused": 1}

        catalog = QueryCatalog()
        catalog.register(CustomQuery(name="answer", generator=generator))
        compiled = SQLCompiler(catalog).compile(_request("answer"))
        assert compiled.params == {"answer": 42, "websiteId": TENANT}

    def test_summary_metrics(self, compiler: SQLCompiler, executor: DuckDBExecutor):
        """Summary counts pageviews, visitors, sessions and bounces in range."""
        (row,) = _rows(executor, compiler.compile(_request("summary_metrics")))
        assert row["pageviews"] == 5
        assert row["unique_visitors"] == 4
        assert row["sessions"] == 4
        assert float(row["bounce_rate"]) == 75.0
        assert row["total_events"] == 7

    def test_end_of_day_is_inclusive(self, compiler: SQLCompiler, executor: DuckDBExecutor):
        """Events late on the last day of the range are included."""
        rows = _rows(executor, compiler.compile(_request("top_pages")))
        assert "/late" in [row["name"] for row in rows]

    def test_events_by_date_fills_gaps(self, compiler: SQLCompiler, executor: DuckDBExecutor):
        """Every day in range has a row, empty days included."""
        rows = _rows(executor, compiler.compile(_request("events_by_date")))
        by_date = {row["date"]: row for row in rows}

        assert len(rows) == 31
        assert by_date["2024-01-10"]["pageviews"] == 2
        assert by_date["2024-01-10"]["sessions"] == 1
        assert by_date["2024-01-01"]["pageviews"] == 0

    def test_events_by_date_hourly(self, compiler: SQLCompiler, executor: DuckDBExecutor):
        """Hourly granularity buckets every hour of the range."""
        compiled = compiler.compile(
            CompileRequest(
                tenant_id=TENANT,
                name="events_by_date",
                start_date="2024-01-10",
                end_date="2024-01-10",
                granularity="hourly",
            )
        )
        rows = _rows(executor, compiled)
        assert len(rows) == 24
        assert {row["date"]: row["pageviews"] for row in rows}["2024-01-10 10:00:00"] == 2

    def test_device_types(self, compiler: SQLCompiler, executor: DuckDBExecutor):
        """Pageviews are bucketed by classified device type."""
        rows = _rows(executor, compiler.compile(_request("device_types")))
        pageviews = {row["name"]: row["pageviews"] for row in rows}
        assert pageviews == {"desktop": 2, "mobile": 1, "ultrawide": 1, "laptop": 1}

    def test_entry_pages(self, compiler: SQLCompiler, executor: DuckDBExecutor):
        """Entry pages are the first page of each session."""
        rows = _rows(executor, compiler.compile(_request("entry_pages")))
        assert sorted(row["name"] for row in rows) == ["/", "/late", "/pricing", "https://example.com/blog/"]

    def test_revenue_by_referrer(self, compiler: SQLCompiler, executor: DuckDBExecutor):
        """Payments are credited to the first-touch referrer of their session."""
        rows = _rows(executor, compiler.compile(_request("revenue_by_referrer")))
        revenue = {(row["name"], row["currency"]): row["total_revenue"] for row in rows}
        assert revenue == {
            ("https://www.google.com/search?q=analytics", "usd"): 2500,
            ("https://t.co/abc123", "jpy"): 1200,
        }

    def test_revenue_by_referrer_needs_attribution(self):
        """Registered without session attribution it fails with a query error."""
        catalog = QueryCatalog()
        catalog.register(CustomQuery(name="referrer_revenue", generator=revenue_by_referrer))
        with pytest.raises(QueryError, match="needs session attribution"):
            SQLCompiler(catalog).compile(_request("referrer_revenue"))
