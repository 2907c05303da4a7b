"""Split the rows of a unified statement back into per-pair buckets."""

from collections.abc import Iterable, Sequence
from typing import Any

from pulsequery.batch.planner import TAG_COLUMNS, PlannedQuery

PairKey = tuple[str, str]


def split_unified_rows(
    rows: Iterable[dict[str, Any]], members: Sequence[PlannedQuery]
) -> dict[PairKey, list[dict[str, Any]]]:
    """Group rows by (request_id, parameter) and drop the tag columns.

    every member gets a bucket, even if it produced no rows - an empty
    breakdown is a successful empty result, not a missing one.
    """
    buckets: dict[PairKey, list[dict[str, Any]]] = {member.key: [] for member in members}
    for row in rows:
        key = (row["request_id"], row["parameter"])
        if key not in buckets:
            # can't happen unless the store invents tags
            raise KeyError(f"Row tagged with unknown pair {key}")
        buckets[key].append({k: v for k, v in row.items() if k not in TAG_COLUMNS})
    return buckets
