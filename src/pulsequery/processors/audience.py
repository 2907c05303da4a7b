"""Audience post-processors: language names, browser versions, timezones."""

from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

LANGUAGE_NAMES: dict[str, str] = {
    "ar": "Arabic",
    "bg": "Bulgarian",
    "bn": "Bengali",
    "ca": "Catalan",
    "cs": "Czech",
    "da": "Danish",
    "de": "German",
    "el": "Greek",
    "en": "English",
    "es": "Spanish",
    "et": "Estonian",
    "fa": "Persian",
    "fi": "Finnish",
    "fr": "French",
    "he": "Hebrew",
    "hi": "Hindi",
    "hr": "Croatian",
    "hu": "Hungarian",
    "id": "Indonesian",
    "it": "Italian",
    "ja": "Japanese",
    "ko": "Korean",
    "lt": "Lithuanian",
    "lv": "Latvian",
    "ms": "Malay",
    "nb": "Norwegian Bokmål",
    "nl": "Dutch",
    "no": "Norwegian",
    "pl": "Polish",
    "pt": "Portuguese",
    "ro": "Romanian",
    "ru": "Russian",
    "sk": "Slovak",
    "sl": "Slovenian",
    "sr": "Serbian",
    "sv": "Swedish",
    "th": "Thai",
    "tr": "Turkish",
    "uk": "Ukrainian",
    "ur": "Urdu",
    "vi": "Vietnamese",
    "zh": "Chinese",
}


def language_name(code: str | None) -> str:
    """'en-US' -> 'English (US)', 'fr' -> 'French'. unknown codes come back as-is."""
    if not code:
        return "Unknown"
    base, _, region = code.replace("_", "-").partition("-")
    name = LANGUAGE_NAMES.get(base.lower())
    if name is None:
        return code
    return f"{name} ({region.upper()})" if region else name


def name_languages(rows: list[dict[str, Any]], context: Any = None) -> list[dict[str, Any]]:
    return [{**row, "code": row.get("name"), "name": language_name(row.get("name"))} for row in rows]


def group_browser_versions(rows: list[dict[str, Any]], context: Any = None) -> list[dict[str, Any]]:
    """Flat (browser, version) rows -> one row per browser with nested versions."""
    browsers: dict[str, dict[str, Any]] = {}
    for row in rows:
        browser = row.get("browser_name") or "Unknown"
        entry = browsers.setdefault(
            browser, {"name": browser, "pageviews": 0, "visitors": 0, "versions": []}
        )
        pageviews = row.get("pageviews") or 0
        visitors = row.get("visitors") or 0
        entry["pageviews"] += pageviews
        entry["visitors"] += visitors
        entry["versions"].append(
            {
                "version": row.get("browser_version") or "Unknown",
                "pageviews": pageviews,
                "visitors": visitors,
            }
        )

    for entry in browsers.values():
        entry["versions"].sort(key=lambda version: version["visitors"], reverse=True)
    return sorted(browsers.values(), key=lambda entry: entry["visitors"], reverse=True)


def utc_offset(name: str, at: datetime | None = None) -> str | None:
    """'+05:30' style offset of a timezone right now, or None if it isn't one."""
    try:
        zone = ZoneInfo(name)
    # ZoneInfo("America") hits a directory and raises IsADirectoryError
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return None
    offset = (at or datetime.now(zone)).astimezone(zone).utcoffset()
    if offset is None:
        return None
    minutes = int(offset.total_seconds() // 60)
    sign = "+" if minutes >= 0 else "-"
    hours, minutes = divmod(abs(minutes), 60)
    return f"{sign}{hours:02d}:{minutes:02d}"


def label_timezones(rows: list[dict[str, Any]], context: Any = None) -> list[dict[str, Any]]:
    labelled = []
    for row in rows:
        name = row.get("name") or "Unknown"
        offset = utc_offset(name) if row.get("name") else None
        label = f"{name} (UTC{offset})" if offset else name
        labelled.append({**row, "name": name, "offset": offset, "label": label})
    return labelled
