"""Referrer normalization.

raw referrers are full urls with every flavor of subdomain and tracking
junk. for reporting (and filtering) we fold them into one origin per source:
empty -> "direct", any google property -> https://google.com, and so on.
everything else becomes https://<domain>.

like the device classifier this exists twice - as a sql CASE expression the
filter compiler embeds, and as python used by the referrer post-processor.
both are generated from KNOWN_SOURCES.
"""

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class ReferrerSource:
    name: str  # what people type: "google"
    origin: str  # canonical display value: "https://google.com"
    domains: tuple[str, ...]  # matched exactly or as a suffix (".google.com")
    label: str = ""  # shown in reports: "Google"
    kind: str = "referral"  # search, social or referral


KNOWN_SOURCES: tuple[ReferrerSource, ...] = (
    ReferrerSource(
        "google",
        "https://google.com",
        ("google.com", "google.co.uk", "google.ca", "google.de", "google.fr",
         "google.com.au", "google.co.in", "google.es", "google.it", "google.nl"),
        label="Google",
        kind="search",
    ),
    ReferrerSource("bing", "https://bing.com", ("bing.com",), label="Bing", kind="search"),
    ReferrerSource(
        "duckduckgo", "https://duckduckgo.com", ("duckduckgo.com",), label="DuckDuckGo", kind="search"
    ),
    ReferrerSource(
        "facebook", "https://facebook.com", ("facebook.com", "fb.com"), label="Facebook", kind="social"
    ),
    ReferrerSource(
        "twitter", "https://twitter.com", ("twitter.com", "t.co", "x.com"), label="X (Twitter)", kind="social"
    ),
    ReferrerSource(
        "instagram", "https://instagram.com", ("instagram.com",), label="Instagram", kind="social"
    ),
    ReferrerSource(
        "linkedin", "https://linkedin.com", ("linkedin.com", "lnkd.in"), label="LinkedIn", kind="social"
    ),
    ReferrerSource("reddit", "https://reddit.com", ("reddit.com",), label="Reddit", kind="social"),
)

DIRECT = "direct"

# scheme is optional - some clients send bare hosts
DOMAIN_PATTERN = r"^(?:[a-zA-Z][a-zA-Z0-9+.\-]*://)?([^/:?#]+)"
_DOMAIN_RE = re.compile(DOMAIN_PATTERN)


def _build_filter_aliases() -> dict[str, str]:
    aliases = {DIRECT: DIRECT}
    for source in KNOWN_SOURCES:
        aliases[source.name] = source.origin
        for domain in source.domains:
            aliases[domain] = source.origin
            aliases[f"www.{domain}"] = source.origin
    # a couple of well known redirectors
    aliases["l.instagram.com"] = "https://instagram.com"
    aliases["l.facebook.com"] = "https://facebook.com"
    aliases["m.facebook.com"] = "https://facebook.com"
    return aliases


# user input -> normalized referrer value, for equality and set filters
FILTER_ALIASES: dict[str, str] = _build_filter_aliases()

# user input -> search term, for contains/like filters
SEARCH_ALIASES: dict[str, str] = {DIRECT: DIRECT} | {
    source.name: source.domains[0] for source in KNOWN_SOURCES
}


def normalize_referrer_filter_value(value: str) -> str:
    """Turn what a user typed into the value the normalized column holds."""
    alias = FILTER_ALIASES.get(value.lower())
    if alias:
        return alias
    if value.startswith(("http://", "https://")):
        return value
    # looks like a bare domain
    if "." in value and " " not in value:
        return f"https://{value}"
    return value


def normalize_referrer_search_value(value: str) -> str:
    return SEARCH_ALIASES.get(value.lower(), value)


def extract_domain(url: str | None) -> str:
    """Lower-cased host of a referrer url, or '' if there isn't one."""
    if not url:
        return ""
    match = _DOMAIN_RE.match(url)
    return match.group(1).lower() if match else ""


def _matches(domain: str, base: str) -> bool:
    return domain == base or domain.endswith(f".{base}")


def source_for(url: str | None) -> ReferrerSource | None:
    """The known source a referrer belongs to, if any."""
    domain = extract_domain(url)
    for source in KNOWN_SOURCES:
        if any(_matches(domain, base) for base in source.domains):
            return source
    return None


def normalize_referrer(url: str | None) -> str:
    """Python twin of referrer_case_sql."""
    if not url:
        return DIRECT
    source = source_for(url)
    if source is not None:
        return source.origin
    return f"https://{extract_domain(url)}"


def domain_sql(column: str = "referrer") -> str:
    return f"lower(regexp_extract({column}, '{DOMAIN_PATTERN}', 1))"


def referrer_case_sql(column: str = "referrer") -> str:
    """CASE expression that maps a raw referrer column to its normalized origin."""
    domain = domain_sql(column)
    whens = []
    for source in KNOWN_SOURCES:
        tests = " OR ".join(
            f"{domain} = '{base}' OR {domain} LIKE '%.{base}'" for base in source.domains
        )
        whens.append(f"WHEN {tests} THEN '{source.origin}'")
    return (
        f"CASE WHEN {column} IS NULL OR {column} = '' THEN '{DIRECT}' "
        + " ".join(whens)
        + f" ELSE concat('https://', {domain}) END"
    )


def is_self_referral(url: str | None, website_domain: str | None) -> bool:
    """True if the referrer is the tenant's own site (internal navigation)."""
    if not url or not website_domain:
        return False
    domain = extract_domain(url)
    own = website_domain.lower().removeprefix("www.")
    return _matches(domain.removeprefix("www."), own)
