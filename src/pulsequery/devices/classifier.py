"""Screen resolution -> device type classification.

we don't trust user agents for device type (tablets lie, desktop-mode phones
lie harder) so the category is derived from the reported screen resolution.

the same decision has to happen in two places: in python for display and
tests, and inside sql so we can filter on device type without a materialized
column. both forms are generated from the one rule table below - if you
change a threshold, change it there and both sides move together.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum


class DeviceType(str, Enum):
    MOBILE = "mobile"
    TABLET = "tablet"
    LAPTOP = "laptop"
    DESKTOP = "desktop"
    ULTRAWIDE = "ultrawide"
    WATCH = "watch"
    UNKNOWN = "unknown"


# orientation-agnostic keys: always "long x short"
KNOWN_RESOLUTIONS: dict[str, DeviceType] = {
    "896x414": DeviceType.MOBILE,
    "844x390": DeviceType.MOBILE,
    "932x430": DeviceType.MOBILE,
    "800x360": DeviceType.MOBILE,
    "780x360": DeviceType.MOBILE,
    "736x414": DeviceType.MOBILE,
    "667x375": DeviceType.MOBILE,
    "640x360": DeviceType.MOBILE,
    "568x320": DeviceType.MOBILE,
    "1366x1024": DeviceType.TABLET,
    "1280x800": DeviceType.TABLET,
    "1180x820": DeviceType.TABLET,
    "1024x768": DeviceType.TABLET,
    "1280x720": DeviceType.TABLET,
    "1366x768": DeviceType.LAPTOP,
    "1440x900": DeviceType.LAPTOP,
    "1536x864": DeviceType.LAPTOP,
    "1920x1080": DeviceType.DESKTOP,
    "2560x1440": DeviceType.DESKTOP,
    "3840x2160": DeviceType.DESKTOP,
    "3440x1440": DeviceType.ULTRAWIDE,
    "3840x1600": DeviceType.ULTRAWIDE,
    "5120x1440": DeviceType.ULTRAWIDE,
}

# six digits per side is plenty (8k is 7680) and keeps the sql casts exact
RESOLUTION_PATTERN = "[0-9]{1,6}x[0-9]{1,6}"
_RESOLUTION_RE = re.compile(RESOLUTION_PATTERN)


@dataclass(frozen=True)
class _Rule:
    """One heuristic step. `test` and `sql` must say the same thing."""

    device_type: DeviceType
    test: Callable[[float, float, float], bool]  # (long_side, short_side, aspect)
    sql: str  # template over {long}, {short}, {aspect}


# evaluated in order, first match wins
HEURISTIC_RULES: tuple[_Rule, ...] = (
    _Rule(
        DeviceType.WATCH,
        lambda long, short, aspect: aspect <= 1.15 and long <= 400,
        "{aspect} <= 1.15 AND {long} <= 400",
    ),
    _Rule(
        DeviceType.ULTRAWIDE,
        lambda long, short, aspect: aspect >= 2.0 and long >= 2560,
        "{aspect} >= 2.0 AND {long} >= 2560",
    ),
    _Rule(DeviceType.MOBILE, lambda long, short, aspect: short <= 480, "{short} <= 480"),
    _Rule(DeviceType.TABLET, lambda long, short, aspect: short <= 900, "{short} <= 900"),
    _Rule(DeviceType.LAPTOP, lambda long, short, aspect: long <= 1600, "{long} <= 1600"),
    _Rule(DeviceType.DESKTOP, lambda long, short, aspect: long <= 3000, "{long} <= 3000"),
)
FALLBACK_DEVICE_TYPE = DeviceType.DESKTOP


def normalize_resolution(raw: str | None) -> str:
    """Trim spaces, lower-case, and fold the unicode multiplication sign to x."""
    if raw is None:
        return ""
    return raw.strip(" ").lower().replace("×", "x")


def parse_resolution(raw: str | None) -> tuple[int, int] | None:
    """Parse WIDTHxHEIGHT into (width, height), or None if it's garbage."""
    text = normalize_resolution(raw)
    if not _RESOLUTION_RE.fullmatch(text):
        return None
    width_text, height_text = text.split("x")
    width, height = int(width_text), int(height_text)
    if width <= 0 or height <= 0:
        return None
    return width, height


def resolution_key(width: int, height: int) -> str:
    return f"{max(width, height)}x{min(width, height)}"


def classify_resolution(raw: str | None) -> DeviceType:
    """Map a raw screen resolution string to a device type."""
    parsed = parse_resolution(raw)
    if parsed is None:
        return DeviceType.UNKNOWN

    width, height = parsed
    known = KNOWN_RESOLUTIONS.get(resolution_key(width, height))
    if known is not None:
        return known

    long_side, short_side = float(max(width, height)), float(min(width, height))
    aspect = long_side / short_side
    for rule in HEURISTIC_RULES:
        if rule.test(long_side, short_side, aspect):
            return rule.device_type
    return FALLBACK_DEVICE_TYPE


# --- sql twin ---


def _quoted(values: list[str]) -> str:
    return ", ".join(f"'{value}'" for value in values)


@dataclass(frozen=True)
class _ResolutionSql:
    """Sql sub-expressions over one resolution column."""

    valid: str
    key: str
    long: str
    short: str
    aspect: str


def _resolution_sql(column: str) -> _ResolutionSql:
    # trim only plain spaces, like normalize_resolution
    normalized = f"replace(lower(trim(coalesce({column}, ''), ' ')), '×', 'x')"
    width = f"TRY_CAST(split_part({normalized}, 'x', 1) AS DOUBLE)"
    height = f"TRY_CAST(split_part({normalized}, 'x', 2) AS DOUBLE)"
    long_side = f"greatest({width}, {height})"
    short_side = f"least({width}, {height})"
    return _ResolutionSql(
        valid=(
            f"(regexp_full_match({normalized}, '{RESOLUTION_PATTERN}') "
            f"AND {width} > 0 AND {height} > 0)"
        ),
        key=(
            f"(CAST(TRY_CAST({long_side} AS BIGINT) AS VARCHAR) || 'x' || "
            f"CAST(TRY_CAST({short_side} AS BIGINT) AS VARCHAR))"
        ),
        long=long_side,
        short=short_side,
        aspect=f"({long_side} / NULLIF({short_side}, 0))",
    )


def _heuristic_case_sql(parts: _ResolutionSql) -> str:
    whens = " ".join(
        "WHEN {cond} THEN '{device}'".format(
            cond=rule.sql.format(long=parts.long, short=parts.short, aspect=parts.aspect),
            device=rule.device_type.value,
        )
        for rule in HEURISTIC_RULES
    )
    return f"CASE {whens} ELSE '{FALLBACK_DEVICE_TYPE.value}' END"


def device_type_case_sql(column: str = "screen_resolution") -> str:
    """A CASE expression that evaluates to the device type name of a row."""
    parts = _resolution_sql(column)
    exact = " ".join(
        f"WHEN {parts.key} IN ({_quoted(_known_keys(device))}) THEN '{device.value}'"
        for device in DeviceType
        if _known_keys(device)
    )
    heuristic = _heuristic_case_sql(parts)
    return (
        f"CASE WHEN NOT {parts.valid} THEN '{DeviceType.UNKNOWN.value}' "
        f"{exact} ELSE {heuristic} END"
    )


def device_type_condition_sql(
    device_type: DeviceType | str, column: str = "screen_resolution"
) -> str:
    """A boolean sql condition that is true exactly when the row classifies as device_type.

    curated resolutions are matched directly and OR-ed with the heuristic
    path, which only applies to resolutions outside the curated table.
    """
    device = DeviceType(device_type)
    parts = _resolution_sql(column)
    if device is DeviceType.UNKNOWN:
        return f"(NOT {parts.valid})"

    all_keys = _quoted(list(KNOWN_RESOLUTIONS))
    heuristic = (
        f"({parts.key} NOT IN ({all_keys}) "
        f"AND {_heuristic_case_sql(parts)} = '{device.value}')"
    )
    own_keys = _known_keys(device)
    if own_keys:
        matched = f"({parts.key} IN ({_quoted(own_keys)}) OR {heuristic})"
    else:
        matched = heuristic
    return f"({parts.valid} AND {matched})"


def _known_keys(device: DeviceType) -> list[str]:
    return [key for key, known in KNOWN_RESOLUTIONS.items() if known is device]
