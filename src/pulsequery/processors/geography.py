"""Country normalization.

the geo lookup at ingestion stores ISO 3166 alpha-2 codes, but older data
(and some sdk versions) carry full names, and plenty of rows have nothing.
reports want one spelling: the english name, with the code kept alongside
for flags and map lookups.
"""

from typing import Any

UNKNOWN_COUNTRY = "Unknown"

COUNTRY_NAMES: dict[str, str] = {
    "AE": "United Arab Emirates",
    "AR": "Argentina",
    "AT": "Austria",
    "AU": "Australia",
    "BD": "Bangladesh",
    "BE": "Belgium",
    "BG": "Bulgaria",
    "BR": "Brazil",
    "CA": "Canada",
    "CH": "Switzerland",
    "CL": "Chile",
    "CN": "China",
    "CO": "Colombia",
    "CZ": "Czechia",
    "DE": "Germany",
    "DK": "Denmark",
    "EE": "Estonia",
    "EG": "Egypt",
    "ES": "Spain",
    "FI": "Finland",
    "FR": "France",
    "GB": "United Kingdom",
    "GR": "Greece",
    "HK": "Hong Kong",
    "HR": "Croatia",
    "HU": "Hungary",
    "ID": "Indonesia",
    "IE": "Ireland",
    "IL": "Israel",
    "IN": "India",
    "IR": "Iran",
    "IS": "Iceland",
    "IT": "Italy",
    "JP": "Japan",
    "KE": "Kenya",
    "KR": "South Korea",
    "LT": "Lithuania",
    "LU": "Luxembourg",
    "LV": "Latvia",
    "MA": "Morocco",
    "MX": "Mexico",
    "MY": "Malaysia",
    "NG": "Nigeria",
    "NL": "Netherlands",
    "NO": "Norway",
    "NP": "Nepal",
    "NZ": "New Zealand",
    "PE": "Peru",
    "PH": "Philippines",
    "PK": "Pakistan",
    "PL": "Poland",
    "PT": "Portugal",
    "RO": "Romania",
    "RS": "Serbia",
    "RU": "Russia",
    "SA": "Saudi Arabia",
    "SE": "Sweden",
    "SG": "Singapore",
    "SI": "Slovenia",
    "SK": "Slovakia",
    "TH": "Thailand",
    "TR": "Türkiye",
    "TW": "Taiwan",
    "UA": "Ukraine",
    "US": "United States",
    "UY": "Uruguay",
    "VE": "Venezuela",
    "VN": "Vietnam",
    "ZA": "South Africa",
}

_CODES_BY_NAME = {name.lower(): code for code, name in COUNTRY_NAMES.items()}
# a few names people (and old sdks) actually send
_CODES_BY_NAME.update(
    {
        "usa": "US",
        "united states of america": "US",
        "uk": "GB",
        "great britain": "GB",
        "czech republic": "CZ",
        "turkey": "TR",
        "korea": "KR",
        "republic of korea": "KR",
        "russian federation": "RU",
    }
)


def normalize_country(value: Any) -> tuple[str, str | None]:
    """Return (display name, ISO code or None) for whatever the row holds."""
    if value is None:
        return UNKNOWN_COUNTRY, None
    text = str(value).strip()
    if not text:
        return UNKNOWN_COUNTRY, None

    code = text.upper()
    if code in COUNTRY_NAMES:
        return COUNTRY_NAMES[code], code

    code = _CODES_BY_NAME.get(text.lower())
    if code is not None:
        return COUNTRY_NAMES[code], code
    # not something we know - show it as sent
    return text, None


def normalize_countries(rows: list[dict[str, Any]], context: Any = None) -> list[dict[str, Any]]:
    """Normalize the country column of each row.

    breakdowns by country put it in `name`; region and city breakdowns carry
    it in a separate `country` column next to the region/city name.
    """
    processed = []
    for row in rows:
        column = "country" if "country" in row else "name"
        if column not in row:
            processed.append(dict(row))
            continue
        name, code = normalize_country(row[column])
        processed.append({**row, column: name, "country_code": code})
    return processed
