"""Generate sample web analytics data for PulseQuery testing.

writes a DuckDB file with a few thousand sessions worth of page views,
custom events, errors, web vitals and payments for one website, so the cli
and the api have something to chew on:

    python data/generate_sample_data.py data/pulsequery.duckdb
    pq query top_pages,country --website site_demo --start 2024-01-01 --end 2024-03-31 --db data/pulsequery.duckdb
"""

import json
import random
from datetime import datetime, timedelta
from pathlib import Path
from uuid import uuid4

from pulsequery.executor.duckdb_executor import DuckDBExecutor

WEBSITE_ID = "site_demo"
WEBSITE_DOMAIN = "demo.example.com"

START = datetime(2024, 1, 1)
DAYS = 90

PATHS = ["/", "/", "/", "/pricing", "/pricing/", "/blog", "/blog/duckdb-tips", "/docs", "/signup"]
REFERRERS = [
    "", "", "",
    "https://www.google.com/search?q=analytics",
    "https://google.co.uk/",
    "https://t.co/abc123",
    "https://news.ycombinator.com/item?id=1",
    "https://l.instagram.com/",
    f"https://{WEBSITE_DOMAIN}/blog",
]
RESOLUTIONS = ["1920x1080", "1920x1080", "1440x900", "844x390", "932x430", "1180x820", "3440x1440"]
BROWSERS = [("Chrome", "124"), ("Chrome", "123"), ("Safari", "17"), ("Firefox", "125"), ("Edge", "124")]
SYSTEMS = ["Windows", "macOS", "iOS", "Android", "Linux"]
GEO = [
    ("US", "California", "San Francisco"),
    ("US", "New York", "New York"),
    ("GB", "England", "London"),
    ("DE", "Berlin", "Berlin"),
    ("NP", "Bagmati", "Kathmandu"),
    ("", "", ""),
]
LANGUAGES = ["en-US", "en-GB", "de", "fr-FR", "ne"]
TIMEZONES = ["America/Los_Angeles", "America/New_York", "Europe/London", "Europe/Berlin", "Asia/Kathmandu"]
CAMPAIGNS = [(None, None, None), (None, None, None), ("newsletter", "email", "spring_launch"), ("google", "cpc", "brand")]
CUSTOM_EVENTS = ["signup_click", "video_play", "download"]


def generate_sample_data(database_path: str | Path, sessions: int = 3000) -> dict[str, int]:
    """Create the schema and fill it. returns row counts per table."""
    random.seed(42)  # reproducible data

    rows: dict[str, list[dict]] = {table: [] for table in ("events", "errors", "web_vitals", "payments", "refunds")}
    for _ in range(sessions):
        _generate_session(rows)

    executor = DuckDBExecutor(str(database_path))
    try:
        executor.bootstrap_schema()
        return {table: executor.insert_rows(table, table_rows) for table, table_rows in rows.items()}
    finally:
        executor.close()


def _generate_session(rows: dict[str, list[dict]]) -> None:
    session_id = uuid4().hex
    anonymous_id = uuid4().hex
    started = START + timedelta(days=random.randrange(DAYS), seconds=random.randrange(86400))
    browser, version = random.choice(BROWSERS)
    country, region, city = random.choice(GEO)
    utm_source, utm_medium, utm_campaign = random.choice(CAMPAIGNS)
    shared = {
        "client_id": WEBSITE_ID,
        "anonymous_id": anonymous_id,
        "session_id": session_id,
        "screen_resolution": random.choice(RESOLUTIONS),
        "browser_name": browser,
        "browser_version": version,
        "os_name": random.choice(SYSTEMS),
        "country": country,
        "region": region,
        "city": city,
        "language": random.choice(LANGUAGES),
        "timezone": random.choice(TIMEZONES),
    }

    moment = started
    for index in range(random.randint(1, 6)):
        path = random.choice(PATHS)
        rows["events"].append(
            {
                **shared,
                "id": uuid4().hex,
                "event_name": "screen_view",
                "time": moment,
                "path": path,
                "title": path.strip("/").title() or "Home",
                # later page views carry internal referrers, like real traffic
                "referrer": random.choice(REFERRERS) if index == 0 else f"https://{WEBSITE_DOMAIN}/",
                "utm_source": utm_source if index == 0 else None,
                "utm_medium": utm_medium if index == 0 else None,
                "utm_campaign": utm_campaign if index == 0 else None,
                "load_time": random.randint(200, 4000),
                "ttfb": random.randint(20, 800),
            }
        )
        rows["events"].append(
            {
                **shared,
                "id": uuid4().hex,
                "event_name": "page_exit",
                "time": moment + timedelta(seconds=random.randint(5, 300)),
                "path": path,
                "scroll_depth": round(random.uniform(5, 100), 1),
            }
        )
        if random.random() < 0.15:
            rows["events"].append(
                {
                    **shared,
                    "id": uuid4().hex,
                    "event_name": random.choice(CUSTOM_EVENTS),
                    "time": moment + timedelta(seconds=3),
                    "path": path,
                    "properties": json.dumps({"plan": random.choice(["free", "pro"])}),
                }
            )
        if random.random() < 0.03:
            rows["errors"].append(
                {
                    **{key: shared[key] for key in ("client_id", "anonymous_id", "session_id", "browser_name", "country")},
                    "id": uuid4().hex,
                    "time": moment + timedelta(seconds=1),
                    "path": path,
                    "message": random.choice(["x is undefined", "Failed to fetch", "Script error."]),
                    "error_type": random.choice(["TypeError", "NetworkError", "Error"]),
                }
            )
        if random.random() < 0.3:
            rows["web_vitals"].append(
                {
                    **{key: shared[key] for key in ("client_id", "anonymous_id", "session_id", "screen_resolution",
                                                    "browser_name", "browser_version", "os_name", "country", "region")},
                    "id": uuid4().hex,
                    "timestamp": moment + timedelta(seconds=2),
                    "path": path,
                    "fcp": random.uniform(300, 3000),
                    "lcp": random.uniform(800, 5000),
                    "cls": random.uniform(0, 0.4),
                    "fid": random.uniform(5, 200),
                    "inp": random.uniform(40, 600),
                }
            )
        moment += timedelta(seconds=random.randint(20, 400))

    if random.random() < 0.05:
        currency = random.choice(["usd", "usd", "eur", "jpy"])
        payment_id = uuid4().hex
        amount = random.randint(900, 9900) if currency != "jpy" else random.randint(1000, 9000)
        status = random.choice(["succeeded", "succeeded", "succeeded", "failed"])
        rows["payments"].append(
            {
                "id": payment_id,
                "client_id": WEBSITE_ID,
                "created": moment,
                "status": status,
                "currency": currency,
                "amount": amount,
                "customer_id": anonymous_id,
                "session_id": session_id,
            }
        )
        if status == "succeeded" and random.random() < 0.1:
            rows["refunds"].append(
                {
                    "id": uuid4().hex,
                    "client_id": WEBSITE_ID,
                    "created": moment + timedelta(days=2),
                    "status": "succeeded",
                    "reason": "requested_by_customer",
                    "currency": currency,
                    "amount": amount,
                    "payment_intent_id": payment_id,
                    "session_id": session_id,
                }
            )


if __name__ == "__main__":
    import sys

    output = Path(sys.argv[1]) if len(sys.argv) > 1 else Path(__file__).parent / "pulsequery.duckdb"
    counts = generate_sample_data(output)

    # Print summary
    for table, count in counts.items():
        print(f"Generated {count} {table} rows")
    print(f"Database written to {output}")
