"""Custom query generators.

for queries the declarative shape can't express: CTE pipelines, gap-filled
time series, cross-table joins. each generator gets

    (tenant_id, start, end, filters, granularity, limit, offset, timezone, *, helpers)

and returns sql (plus optional extra params). $websiteId, $from, $to,
$timezone and $websiteDomain are bound by the compiler, so generators just
reference them. filters arrive already compiled in helpers.filters - AND
`where_sql` in wherever the raw event rows are read.

dates are already normalized ('YYYY-MM-DD' or 'YYYY-MM-DD HH:MM:SS').
"""

from typing import Any

from pulsequery.compiler.sql_builder import CustomSqlHelpers, end_of_day_sql, time_bounds_sql
from pulsequery.devices.classifier import device_type_case_sql
from pulsequery.errors import QueryError
from pulsequery.models.definition import CustomQuery, OutputField, QueryMeta
from pulsequery.models.request import Granularity

EVENT_FILTERS = frozenset(
    {
        "path",
        "referrer",
        "device_type",
        "browser_name",
        "os_name",
        "country",
        "region",
        "city",
        "language",
        "utm_source",
        "utm_medium",
        "utm_campaign",
    }
)
PAYMENT_FILTERS = frozenset({"currency", "status"})


def _bounds(time_field: str = "time", append_end_of_day: bool = True) -> str:
    return " AND ".join(time_bounds_sql(time_field, append_end_of_day))


def _page(limit: int | None, offset: int) -> str:
    text = f"LIMIT {int(limit)}" if limit else ""
    if offset:
        text += f" OFFSET {int(offset)}"
    return text


def _local_time(timezone: str, column: str = "time") -> str:
    """Event time shifted to the requested timezone (stored times are UTC)."""
    if not timezone or timezone.upper() == "UTC":
        return column
    return f"timezone($timezone, timezone('UTC', {column}))"


# --- summary ---


def summary_metrics(
    tenant_id: str,
    start: str,
    end: str,
    filters: list[Any],
    granularity: Granularity,
    limit: int | None,
    offset: int,
    timezone: str,
    *,
    helpers: CustomSqlHelpers,
) -> str:
    return f"""
WITH base_events AS (
  SELECT session_id, anonymous_id, event_name, time
  FROM events
  WHERE {_bounds()}
    AND session_id != ''
    AND {helpers.filters.where_sql}
),
session_metrics AS (
  SELECT
    session_id,
    count(*) FILTER (WHERE event_name = 'screen_view') AS page_count,
    date_diff('second', MIN(time), MAX(time)) AS duration
  FROM base_events
  GROUP BY session_id
)
SELECT
  (SELECT count(*) FILTER (WHERE event_name = 'screen_view') FROM base_events) AS pageviews,
  (SELECT count(DISTINCT anonymous_id) FROM base_events WHERE event_name = 'screen_view') AS unique_visitors,
  (SELECT count(*) FROM session_metrics) AS sessions,
  (SELECT ROUND(CASE WHEN count(*) > 0
      THEN count(*) FILTER (WHERE page_count = 1) * 100.0 / count(*) ELSE 0 END, 2)
   FROM session_metrics) AS bounce_rate,
  (SELECT ROUND(COALESCE(median(duration), 0), 2) FROM session_metrics) AS avg_session_duration,
  (SELECT count(*) FROM base_events) AS total_events
""".strip()


def events_by_date(
    tenant_id: str,
    start: str,
    end: str,
    filters: list[Any],
    granularity: Granularity,
    limit: int | None,
    offset: int,
    timezone: str,
    *,
    helpers: CustomSqlHelpers,
) -> str:
    """Gap-filled time series - every bucket in range shows up, even empty ones."""
    hourly = granularity is Granularity.HOUR
    unit = "hour" if hourly else "day"
    label_format = "%Y-%m-%d %H:00:00" if hourly else "%Y-%m-%d"
    last_bucket = "date_trunc('day', CAST($to AS TIMESTAMP))"
    if hourly:
        last_bucket += " + INTERVAL 23 HOUR"

    return f"""
WITH base_events AS (
  SELECT session_id, anonymous_id, event_name, {_local_time(timezone)} AS local_time
  FROM events
  WHERE {_bounds()}
    AND session_id != ''
    AND {helpers.filters.where_sql}
),
buckets AS (
  SELECT unnest(generate_series(
    date_trunc('{unit}', CAST($from AS TIMESTAMP)),
    {last_bucket},
    INTERVAL 1 {unit.upper()}
  )) AS bucket
),
session_details AS (
  SELECT
    session_id,
    date_trunc('{unit}', MIN(local_time)) AS session_start,
    count(*) FILTER (WHERE event_name = 'screen_view') AS page_count,
    date_diff('second', MIN(local_time), MAX(local_time)) AS duration
  FROM base_events
  GROUP BY session_id
),
session_metrics AS (
  SELECT
    session_start AS bucket,
    count(*) AS sessions,
    count(*) FILTER (WHERE page_count = 1) AS bounced_sessions,
    median(duration) AS median_duration
  FROM session_details
  GROUP BY session_start
),
event_metrics AS (
  SELECT
    date_trunc('{unit}', local_time) AS bucket,
    count(*) FILTER (WHERE event_name = 'screen_view') AS pageviews,
    count(DISTINCT anonymous_id) AS visitors
  FROM base_events
  GROUP BY date_trunc('{unit}', local_time)
)
SELECT
  strftime(b.bucket, '{label_format}') AS date,
  COALESCE(em.pageviews, 0) AS pageviews,
  COALESCE(em.visitors, 0) AS visitors,
  COALESCE(sm.sessions, 0) AS sessions,
  ROUND(CASE WHEN COALESCE(sm.sessions, 0) > 0
    THEN sm.bounced_sessions * 100.0 / sm.sessions ELSE 0 END, 2) AS bounce_rate,
  ROUND(COALESCE(sm.median_duration, 0), 2) AS avg_session_duration,
  ROUND(CASE WHEN COALESCE(sm.sessions, 0) > 0
    THEN COALESCE(em.pageviews, 0) * 1.0 / sm.sessions ELSE 0 END, 2) AS pages_per_session
FROM buckets b
LEFT JOIN session_metrics sm ON b.bucket = sm.bucket
LEFT JOIN event_metrics em ON b.bucket = em.bucket
ORDER BY b.bucket ASC
""".strip()


def active_stats(
    tenant_id: str,
    start: str,
    end: str,
    filters: list[Any],
    granularity: Granularity,
    limit: int | None,
    offset: int,
    timezone: str,
    *,
    helpers: CustomSqlHelpers,
) -> str:
    # callers pass an exact window here ("last 5 minutes"), so no end of day
    return f"""
SELECT
  COUNT(DISTINCT anonymous_id) AS active_users,
  COUNT(DISTINCT session_id) AS active_sessions
FROM events
WHERE event_name = 'screen_view'
  AND session_id != ''
  AND {_bounds(append_end_of_day=False)}
  AND {helpers.filters.where_sql}
""".strip()


# --- devices and pages ---


def device_types(
    tenant_id: str,
    start: str,
    end: str,
    filters: list[Any],
    granularity: Granularity,
    limit: int | None,
    offset: int,
    timezone: str,
    *,
    helpers: CustomSqlHelpers,
) -> str:
    device = device_type_case_sql("screen_resolution")
    return f"""
SELECT
  {device} AS name,
  COUNT(*) AS pageviews,
  COUNT(DISTINCT anonymous_id) AS visitors
FROM events
WHERE event_name = 'screen_view'
  AND {_bounds()}
  AND {helpers.filters.where_sql}
GROUP BY 1
ORDER BY visitors DESC
{_page(limit, offset)}
""".strip()


def _session_edge_pages(pick: str, helpers: CustomSqlHelpers, limit: int | None, offset: int) -> str:
    # pick is arg_min (entry) or arg_max (exit)
    return f"""
WITH session_pages AS (
  SELECT
    session_id,
    {pick}(path, time) AS page,
    {pick}(anonymous_id, time) AS anonymous_id
  FROM events
  WHERE event_name = 'screen_view'
    AND session_id != ''
    AND path IS NOT NULL
    AND path != ''
    AND {_bounds()}
    AND {helpers.filters.where_sql}
  GROUP BY session_id
)
SELECT
  page AS name,
  COUNT(*) AS pageviews,
  COUNT(DISTINCT anonymous_id) AS visitors
FROM session_pages
GROUP BY page
ORDER BY pageviews DESC
{_page(limit, offset)}
""".strip()


def entry_pages(
    tenant_id: str,
    start: str,
    end: str,
    filters: list[Any],
    granularity: Granularity,
    limit: int | None,
    offset: int,
    timezone: str,
    *,
    helpers: CustomSqlHelpers,
) -> str:
    return _session_edge_pages("arg_min", helpers, limit, offset)


def exit_pages(
    tenant_id: str,
    start: str,
    end: str,
    filters: list[Any],
    granularity: Granularity,
    limit: int | None,
    offset: int,
    timezone: str,
    *,
    helpers: CustomSqlHelpers,
) -> str:
    return _session_edge_pages("arg_max", helpers, limit, offset)


# --- revenue ---
# amounts stay in minor units here; the revenue post-processor converts them


def revenue_summary(
    tenant_id: str,
    start: str,
    end: str,
    filters: list[Any],
    granularity: Granularity,
    limit: int | None,
    offset: int,
    timezone: str,
    *,
    helpers: CustomSqlHelpers,
) -> str:
    return f"""
SELECT
  COALESCE(SUM(amount) FILTER (WHERE status = 'succeeded'), 0) AS total_revenue,
  COUNT(*) AS total_transactions,
  COUNT(DISTINCT id) FILTER (WHERE status = 'succeeded') AS successful_transactions,
  (SELECT COUNT(*) FROM refunds r
   WHERE r.client_id = $websiteId
     AND r.created >= CAST($from AS TIMESTAMP)
     AND r.created <= {end_of_day_sql()}) AS total_refunds,
  COALESCE(AVG(amount) FILTER (WHERE status = 'succeeded'), 0) AS avg_order_value,
  ROUND(CASE WHEN COUNT(*) > 0
    THEN COUNT(DISTINCT id) FILTER (WHERE status = 'succeeded') * 100.0 / COUNT(*)
    ELSE 0 END, 2) AS success_rate
FROM payments
WHERE {_bounds("created")}
  AND {helpers.filters.where_sql}
""".strip()


def revenue_trends(
    tenant_id: str,
    start: str,
    end: str,
    filters: list[Any],
    granularity: Granularity,
    limit: int | None,
    offset: int,
    timezone: str,
    *,
    helpers: CustomSqlHelpers,
) -> str:
    hourly = granularity is Granularity.HOUR
    unit = "hour" if hourly else "day"
    label_format = "%Y-%m-%d %H:00:00" if hourly else "%Y-%m-%d"
    return f"""
SELECT
  strftime(date_trunc('{unit}', created), '{label_format}') AS time,
  currency,
  COALESCE(SUM(amount) FILTER (WHERE status = 'succeeded'), 0) AS total_revenue,
  COUNT(*) AS total_transactions,
  COALESCE(AVG(amount) FILTER (WHERE status = 'succeeded'), 0) AS avg_order_value,
  ROUND(COUNT(DISTINCT id) FILTER (WHERE status = 'succeeded') * 100.0 / COUNT(*), 2) AS success_rate
FROM payments
WHERE {_bounds("created")}
  AND {helpers.filters.where_sql}
GROUP BY 1, 2
ORDER BY 1 DESC, 2
{_page(limit, offset)}
""".strip()


def recent_transactions(
    tenant_id: str,
    start: str,
    end: str,
    filters: list[Any],
    granularity: Granularity,
    limit: int | None,
    offset: int,
    timezone: str,
    *,
    helpers: CustomSqlHelpers,
) -> str:
    return f"""
SELECT id, created, status, currency, amount, customer_id, session_id
FROM payments
WHERE {_bounds("created")}
  AND {helpers.filters.where_sql}
ORDER BY created DESC
{_page(limit, offset)}
""".strip()


def recent_refunds(
    tenant_id: str,
    start: str,
    end: str,
    filters: list[Any],
    granularity: Granularity,
    limit: int | None,
    offset: int,
    timezone: str,
    *,
    helpers: CustomSqlHelpers,
) -> str:
    return f"""
SELECT id, created, status, reason, currency, amount, payment_intent_id, session_id
FROM refunds
WHERE {_bounds("created")}
  AND {helpers.filters.where_sql}
ORDER BY created DESC
{_page(limit, offset)}
""".strip()


def revenue_by_country(
    tenant_id: str,
    start: str,
    end: str,
    filters: list[Any],
    granularity: Granularity,
    limit: int | None,
    offset: int,
    timezone: str,
    *,
    helpers: CustomSqlHelpers,
) -> str:
    """Succeeded payments credited to the country of the paying session."""
    return f"""
WITH session_countries AS (
  SELECT session_id, arg_min(country, time) AS country
  FROM events
  WHERE client_id = $websiteId
    AND session_id != ''
    AND country IS NOT NULL
    AND country != ''
  GROUP BY session_id
)
SELECT
  sc.country AS name,
  p.currency,
  SUM(p.amount) AS total_revenue,
  COUNT(p.id) AS total_transactions,
  AVG(p.amount) AS avg_order_value
FROM payments p
INNER JOIN session_countries sc ON p.session_id = sc.session_id
WHERE p.client_id = $websiteId
  AND p.created >= CAST($from AS TIMESTAMP)
  AND p.created <= {end_of_day_sql()}
  AND p.status = 'succeeded'
  AND {helpers.filters.where_sql}
GROUP BY sc.country, p.currency
ORDER BY total_revenue DESC
{_page(limit, offset)}
""".strip()


def revenue_by_referrer(
    tenant_id: str,
    start: str,
    end: str,
    filters: list[Any],
    granularity: Granularity,
    limit: int | None,
    offset: int,
    timezone: str,
    *,
    helpers: CustomSqlHelpers,
) -> str:
    """Succeeded payments credited to the first-touch referrer of the session."""
    if helpers.session_attribution_cte is None or helpers.session_attribution_join is None:
        raise QueryError("revenue_by_referrer needs session attribution enabled")
    return f"""
WITH {helpers.session_attribution_cte("time")}
SELECT
  CASE WHEN sa.session_referrer IS NULL OR sa.session_referrer = ''
    THEN 'direct' ELSE sa.session_referrer END AS name,
  p.currency,
  SUM(p.amount) AS total_revenue,
  COUNT(p.id) AS total_transactions
FROM payments p
{helpers.session_attribution_join("p")}
WHERE p.client_id = $websiteId
  AND p.created >= CAST($from AS TIMESTAMP)
  AND p.created <= {end_of_day_sql()}
  AND p.status = 'succeeded'
  AND {helpers.filters.where_sql}
GROUP BY 1, p.currency
ORDER BY total_revenue DESC
{_page(limit, offset)}
""".strip()


def _fields(*names: str) -> tuple[OutputField, ...]:
    return tuple(OutputField(name=name) for name in names)


CUSTOM_QUERIES: tuple[CustomQuery, ...] = (
    CustomQuery(
        name="summary_metrics",
        generator=summary_metrics,
        allowed_filters=EVENT_FILTERS,
        meta=QueryMeta(
            title="Summary",
            description="Headline traffic numbers for the range",
            category="summary",
            default_visualization="stat",
            output_fields=_fields(
                "pageviews", "unique_visitors", "sessions", "bounce_rate",
                "avg_session_duration", "total_events",
            ),
        ),
    ),
    CustomQuery(
        name="events_by_date",
        generator=events_by_date,
        allowed_filters=EVENT_FILTERS,
        meta=QueryMeta(
            title="Traffic over time",
            category="summary",
            default_visualization="line",
            output_fields=_fields(
                "date", "pageviews", "visitors", "sessions", "bounce_rate",
                "avg_session_duration", "pages_per_session",
            ),
        ),
    ),
    CustomQuery(
        name="active_stats",
        generator=active_stats,
        allowed_filters=frozenset({"path", "referrer"}),
        append_end_of_day=False,
        meta=QueryMeta(title="Active visitors", category="realtime", default_visualization="stat"),
    ),
    CustomQuery(
        name="device_types",
        generator=device_types,
        allowed_filters=EVENT_FILTERS,
        limit=100,
        meta=QueryMeta(
            title="Device types",
            description="Visitors by device category, derived from screen resolution",
            category="devices",
            default_visualization="pie",
            output_fields=_fields("name", "pageviews", "visitors"),
        ),
    ),
    CustomQuery(
        name="entry_pages",
        generator=entry_pages,
        allowed_filters=EVENT_FILTERS,
        limit=100,
        meta=QueryMeta(title="Entry pages", category="pages", default_visualization="table"),
    ),
    CustomQuery(
        name="exit_pages",
        generator=exit_pages,
        allowed_filters=EVENT_FILTERS,
        limit=100,
        meta=QueryMeta(title="Exit pages", category="pages", default_visualization="table"),
    ),
    CustomQuery(
        name="revenue_summary",
        generator=revenue_summary,
        allowed_filters=PAYMENT_FILTERS,
        meta=QueryMeta(
            title="Revenue",
            category="revenue",
            default_visualization="stat",
            output_fields=(
                OutputField(name="total_revenue", type="number", unit="currency"),
                OutputField(name="total_transactions", type="number"),
                OutputField(name="successful_transactions", type="number"),
                OutputField(name="total_refunds", type="number"),
                OutputField(name="avg_order_value", type="number", unit="currency"),
                OutputField(name="success_rate", type="number", unit="percent"),
            ),
        ),
    ),
    CustomQuery(
        name="revenue_trends",
        generator=revenue_trends,
        allowed_filters=PAYMENT_FILTERS,
        limit=100,
        meta=QueryMeta(title="Revenue over time", category="revenue", default_visualization="line"),
    ),
    CustomQuery(
        name="recent_transactions",
        generator=recent_transactions,
        allowed_filters=PAYMENT_FILTERS,
        limit=50,
        meta=QueryMeta(title="Recent transactions", category="revenue", default_visualization="table"),
    ),
    CustomQuery(
        name="recent_refunds",
        generator=recent_refunds,
        allowed_filters=frozenset({"currency", "status", "reason"}),
        limit=50,
        meta=QueryMeta(title="Recent refunds", category="revenue", default_visualization="table"),
    ),
    CustomQuery(
        name="revenue_by_country",
        generator=revenue_by_country,
        allowed_filters=PAYMENT_FILTERS,
        limit=100,
        meta=QueryMeta(title="Revenue by country", category="revenue", default_visualization="map"),
    ),
    CustomQuery(
        name="revenue_by_referrer",
        generator=revenue_by_referrer,
        allowed_filters=PAYMENT_FILTERS,
        session_attribution=True,
        limit=100,
        meta=QueryMeta(
            title="Revenue by referrer",
            description="Revenue credited to the referrer that started the paying session",
            category="revenue",
            default_visualization="table",
        ),
    ),
)
