"""Page list post-processing.

the tracker records whatever location the browser reports, so one page can
show up as "/pricing", "/pricing/" and "https://example.com/pricing". fold
them onto the normalized path and add their numbers together.
"""

from typing import Any

from pulsequery.compiler.filters import normalize_path


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def merge_pages(rows: list[dict[str, Any]], context: Any = None) -> list[dict[str, Any]]:
    merged: dict[str, dict[str, Any]] = {}
    for row in rows:
        column = "name" if "name" in row else "path"
        path = normalize_path(row.get(column))
        existing = merged.get(path)
        if existing is None:
            merged[path] = {**row, column: path}
            continue
        for key, value in row.items():
            if _is_number(value) and _is_number(existing.get(key)):
                existing[key] += value

    pages = list(merged.values())
    # merging changes totals, so re-rank
    if pages and "pageviews" in pages[0]:
        pages.sort(key=lambda page: page.get("pageviews") or 0, reverse=True)
    return pages
