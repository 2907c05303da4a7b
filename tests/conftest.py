"""Pytest fixtures for PulseQuery tests."""

from collections.abc import Generator
from datetime import datetime

import pytest

from pulsequery.catalog.registry import QueryCatalog, build_default_catalog
from pulsequery.compiler.sql_builder import SQLCompiler
from pulsequery.config import Settings
from pulsequery.engine import AnalyticsEngine
from pulsequery.executor.duckdb_executor import DuckDBExecutor

TENANT = "site_a"
OTHER_TENANT = "site_b"
DOMAIN = "example.com"
JANUARY = ("2024-01-01", "2024-01-31")


def _event(session: str, anonymous_id: str, when: datetime, **values) -> dict:
    return {
        "id": f"{session}-{when:%H%M%S}-{values.get('event_name', 'screen_view')}",
        "client_id": values.pop("client_id", TENANT),
        "event_name": values.pop("event_name", "screen_view"),
        "anonymous_id": anonymous_id,
        "session_id": session,
        "time": when,
        **values,
    }


@pytest.fixture
def sample_events() -> list[dict]:
    """Four january sessions for site_a, plus noise that filters must exclude."""
    s1 = {
        "screen_resolution": "1920x1080",
        "browser_name": "Chrome",
        "browser_version": "120",
        "os_name": "Windows",
        "country": "US",
        "language": "en-US",
        "timezone": "America/New_York",
    }
    s2 = {
        "screen_resolution": "844x390",
        "browser_name": "Safari",
        "browser_version": "17",
        "os_name": "iOS",
        "country": "GB",
        "language": "en-GB",
        "timezone": "Europe/London",
    }
    s3 = {
        "screen_resolution": "3440x1440",
        "browser_name": "Firefox",
        "browser_version": "121",
        "os_name": "Linux",
        "country": "",
        "language": "de",
    }
    s4 = {
        "screen_resolution": "1366x768",
        "browser_name": "Chrome",
        "browser_version": "119",
        "os_name": "macOS",
        "country": "DE",
        "language": "de-DE",
    }
    return [
        # s1: google visitor on desktop, arrives from a newsletter, then browses
        _event(
            "s1", "a1", datetime(2024, 1, 10, 10, 0), path="/", title="Home",
            referrer="https://www.google.com/search?q=analytics",
            utm_source="newsletter", utm_medium="email", utm_campaign="launch",
            load_time=800, ttfb=100, **s1,
        ),
        _event(
            "s1", "a1", datetime(2024, 1, 10, 10, 1), path="/pricing/", title="Pricing",
            referrer="https://example.com/", load_time=1200, ttfb=150, **s1,
        ),
        _event(
            "s1", "a1", datetime(2024, 1, 10, 10, 2), event_name="signup_click",
            path="/pricing", properties='{"plan": "pro"}', **s1,
        ),
        # s2: twitter visitor on a phone
        _event(
            "s2", "a2", datetime(2024, 1, 11, 12, 0), path="/pricing", title="Pricing",
            referrer="https://t.co/abc123", **s2,
        ),
        _event(
            "s2", "a2", datetime(2024, 1, 11, 12, 5), event_name="signup_click",
            path="/pricing", properties="not json", **s2,
        ),
        # s3: direct visitor on an ultrawide, full url in path
        _event(
            "s3", "a3", datetime(2024, 1, 12, 9, 0), path="https://example.com/blog/",
            title="Blog", referrer="", **s3,
        ),
        # s4: last evening of the range
        _event(
            "s4", "a4", datetime(2024, 1, 31, 23, 30), path="/late", title="Late",
            referrer="https://news.ycombinator.com/item?id=1", **s4,
        ),
        # outside the range
        _event("s5", "a5", datetime(2024, 2, 5, 8, 0), path="/", referrer="", **s1),
        # another tenant
        _event(
            "s6", "a6", datetime(2024, 1, 10, 8, 0), client_id=OTHER_TENANT,
            path="/secret", referrer="", **s1,
        ),
    ]


@pytest.fixture
def sample_payments() -> list[dict]:
    return [
        {"id": "p1", "client_id": TENANT, "created": datetime(2024, 1, 10, 10, 5),
         "status": "succeeded", "currency": "usd", "amount": 2500, "customer_id": "a1",
         "session_id": "s1"},
        {"id": "p2", "client_id": TENANT, "created": datetime(2024, 1, 11, 12, 10),
         "status": "succeeded", "currency": "jpy", "amount": 1200, "customer_id": "a2",
         "session_id": "s2"},
        {"id": "p3", "client_id": TENANT, "created": datetime(2024, 1, 12, 9, 5),
         "status": "failed", "currency": "usd", "amount": 999, "customer_id": "a3",
         "session_id": "s3"},
    ]


@pytest.fixture
def executor(sample_events: list[dict], sample_payments: list[dict]) -> Generator[DuckDBExecutor, None, None]:
    """An in-memory store with the schema and the sample rows."""
    executor = DuckDBExecutor()
    executor.bootstrap_schema()
    executor.insert_rows("events", sample_events)
    executor.insert_rows("payments", sample_payments)
    executor.insert_rows(
        "refunds",
        [{"id": "r1", "client_id": TENANT, "created": datetime(2024, 1, 15), "status": "succeeded",
          "reason": "requested_by_customer", "currency": "usd", "amount": 2500,
          "payment_intent_id": "p1", "session_id": "s1"}],
    )
    executor.insert_rows(
        "errors",
        [{"id": "e1", "client_id": TENANT, "anonymous_id": "a1", "session_id": "s1",
          "time": datetime(2024, 1, 10, 10, 1), "path": "/pricing", "message": "x is undefined",
          "error_type": "TypeError", "browser_name": "Chrome", "country": "US"}],
    )
    executor.insert_rows(
        "web_vitals",
        [{"id": "v1", "client_id": TENANT, "anonymous_id": "a1", "session_id": "s1",
          "timestamp": datetime(2024, 1, 10, 10, 0, 5), "path": "/",
          "screen_resolution": "1920x1080", "browser_name": "Chrome", "browser_version": "120",
          "os_name": "Windows", "country": "US", "region": "California",
          "fcp": 900.0, "lcp": 2100.0, "cls": 0.05, "fid": 12.0, "inp": 180.0}],
    )
    yield executor
    executor.close()


@pytest.fixture
def catalog() -> QueryCatalog:
    """The bundled catalog."""
    return build_default_catalog()


@pytest.fixture
def compiler(catalog: QueryCatalog) -> SQLCompiler:
    return SQLCompiler(catalog)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_path=None,
        website_domains={TENANT: DOMAIN},
        query_timeout_seconds=10,
    )


@pytest.fixture
def engine(
    settings: Settings, catalog: QueryCatalog, executor: DuckDBExecutor
) -> Generator[AnalyticsEngine, None, None]:
    """A started engine over the sample store."""
    engine = AnalyticsEngine(settings, catalog=catalog, executor=executor).start()
    yield engine
    engine.stop()
