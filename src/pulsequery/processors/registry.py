"""Post-processor routing.

every result bucket - a slice of a unified result or a per-pair fallback
result - goes through the steps registered for its parameter name. the
same table decides the metric_type tag the planner stamps on unified rows.
names that aren't in the table pass through untouched.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pulsequery.processors.audience import group_browser_versions, label_timezones, name_languages
from pulsequery.processors.events import validate_event_properties
from pulsequery.processors.geography import normalize_countries
from pulsequery.processors.pages import merge_pages
from pulsequery.processors.referrers import group_referrers
from pulsequery.processors.revenue import convert_revenue_rows, summarize_revenue

Rows = list[dict[str, Any]]


@dataclass(frozen=True)
class ProcessingContext:
    """What a processor may need to know besides the rows themselves."""

    parameter: str
    website_domain: str | None = None
    timezone: str = "UTC"


Processor = Callable[[Rows, ProcessingContext], Rows]

DEFAULT_METRIC_TYPE = "general"

# parameter -> (metric type, processing steps in order)
ROUTES: dict[str, tuple[str, tuple[Processor, ...]]] = {
    # geography
    "country": ("geographic", (normalize_countries,)),
    "countries": ("geographic", (normalize_countries,)),
    "region": ("geographic", (normalize_countries,)),
    "regions": ("geographic", (normalize_countries,)),
    "city": ("geographic", (normalize_countries,)),
    "performance_by_country": ("geographic", (normalize_countries,)),
    "errors_by_country": ("geographic", (normalize_countries,)),
    # revenue
    "revenue_summary": ("revenue", (summarize_revenue,)),
    "revenue_trends": ("revenue", (convert_revenue_rows,)),
    "recent_transactions": ("revenue", (convert_revenue_rows,)),
    "recent_refunds": ("revenue", (convert_revenue_rows,)),
    "revenue_by_country": ("revenue", (normalize_countries, convert_revenue_rows)),
    "revenue_by_referrer": ("revenue", (convert_revenue_rows,)),
    # custom events
    "custom_events": ("custom_events", (validate_event_properties,)),
    "custom_event_properties": ("custom_events", (validate_event_properties,)),
    "custom_events_by_page": ("custom_events", (validate_event_properties,)),
    # pages
    "top_pages": ("pages", (merge_pages,)),
    "entry_pages": ("pages", (merge_pages,)),
    "exit_pages": ("pages", (merge_pages,)),
    # audience
    "top_referrers": ("referrers", (group_referrers,)),
    "language": ("languages", (name_languages,)),
    "browsers_grouped": ("browsers", (group_browser_versions,)),
    "timezone": ("timezones", (label_timezones,)),
}


def metric_type_for(parameter: str) -> str:
    route = ROUTES.get(parameter)
    return route[0] if route else DEFAULT_METRIC_TYPE


def process(parameter: str, rows: Rows, context: ProcessingContext | None = None) -> Rows:
    """Run the registered steps for `parameter` over `rows`.

    always returns a fresh list of plain dicts, even for pass-through names.
    """
    context = context or ProcessingContext(parameter=parameter)
    result = [dict(row) for row in rows]
    route = ROUTES.get(parameter)
    if route is None:
        return result
    for step in route[1]:
        result = step(result, context)
    return result
