"""Custom event post-processing.

properties come in as whatever json string the site sent. parse it so api
consumers get an object, and replace anything that isn't a json object
with an empty one instead of passing garbage through.
"""

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)


def parse_properties(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    if not value:
        return {}
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError):
        logger.debug("Dropping unparsable event properties: %r", value)
        return {}
    return parsed if isinstance(parsed, dict) else {}


def validate_event_properties(
    rows: list[dict[str, Any]], context: Any = None
) -> list[dict[str, Any]]:
    processed = []
    for row in rows:
        if "properties" in row:
            row = {**row, "properties": parse_properties(row["properties"])}
        else:
            row = dict(row)
        processed.append(row)
    return processed
