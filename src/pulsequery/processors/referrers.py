"""Referrer display grouping.

raw referrer urls are folded onto one entry per source (every google
property is "Google"), and referrals from the tenant's own domain count as
direct traffic - that's somebody navigating within the site.
"""

from typing import Any

from pulsequery.compiler.referrers import (
    DIRECT,
    extract_domain,
    is_self_referral,
    normalize_referrer,
    source_for,
)


def describe_referrer(url: str | None, website_domain: str | None = None) -> dict[str, str]:
    """Display fields for one raw referrer."""
    if not url or is_self_referral(url, website_domain):
        return {"referrer": DIRECT, "name": "Direct", "domain": "", "type": "direct"}

    source = source_for(url)
    if source is not None:
        return {
            "referrer": source.origin,
            "name": source.label or source.name,
            "domain": source.domains[0],
            "type": source.kind,
        }
    domain = extract_domain(url)
    return {
        "referrer": normalize_referrer(url),
        "name": domain.removeprefix("www.") or url,
        "domain": domain,
        "type": "referral",
    }


def group_referrers(rows: list[dict[str, Any]], context: Any = None) -> list[dict[str, Any]]:
    website_domain = getattr(context, "website_domain", None)
    grouped: dict[str, dict[str, Any]] = {}
    for row in rows:
        raw = row.get("name", row.get("referrer"))
        display = describe_referrer(raw, website_domain)
        key = display["referrer"]
        entry = grouped.get(key)
        if entry is None:
            grouped[key] = {**display, "pageviews": 0, "visitors": 0}
            entry = grouped[key]
        entry["pageviews"] += row.get("pageviews") or 0
        entry["visitors"] += row.get("visitors") or 0

    return sorted(grouped.values(), key=lambda entry: entry["visitors"], reverse=True)
