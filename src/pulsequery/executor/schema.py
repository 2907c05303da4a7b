"""Table layout of the analytical store.

the tables are append-only and filled by the ingestion pipeline. we ship
the DDL so the engine (bootstrap_schema), the tests and the sample data
script all agree on column names and types.

money is stored in minor units (cents) with the currency next to it - the
revenue post-processor does the decimal correction.
"""

EVENTS_DDL = """
CREATE TABLE IF NOT EXISTS events (
    id VARCHAR,
    client_id VARCHAR NOT NULL,
    event_name VARCHAR NOT NULL,
    anonymous_id VARCHAR,
    session_id VARCHAR,
    time TIMESTAMP NOT NULL,
    path VARCHAR,
    title VARCHAR,
    referrer VARCHAR,
    screen_resolution VARCHAR,
    browser_name VARCHAR,
    browser_version VARCHAR,
    os_name VARCHAR,
    device_type VARCHAR,
    country VARCHAR,
    region VARCHAR,
    city VARCHAR,
    language VARCHAR,
    timezone VARCHAR,
    utm_source VARCHAR,
    utm_medium VARCHAR,
    utm_campaign VARCHAR,
    load_time INTEGER,
    ttfb INTEGER,
    scroll_depth DOUBLE,
    properties VARCHAR
)
"""

ERRORS_DDL = """
CREATE TABLE IF NOT EXISTS errors (
    id VARCHAR,
    client_id VARCHAR NOT NULL,
    anonymous_id VARCHAR,
    session_id VARCHAR,
    time TIMESTAMP NOT NULL,
    path VARCHAR,
    message VARCHAR,
    error_type VARCHAR,
    browser_name VARCHAR,
    country VARCHAR
)
"""

WEB_VITALS_DDL = """
CREATE TABLE IF NOT EXISTS web_vitals (
    id VARCHAR,
    client_id VARCHAR NOT NULL,
    anonymous_id VARCHAR,
    session_id VARCHAR,
    timestamp TIMESTAMP NOT NULL,
    path VARCHAR,
    screen_resolution VARCHAR,
    browser_name VARCHAR,
    browser_version VARCHAR,
    os_name VARCHAR,
    country VARCHAR,
    region VARCHAR,
    fcp DOUBLE,
    lcp DOUBLE,
    cls DOUBLE,
    fid DOUBLE,
    inp DOUBLE
)
"""

PAYMENTS_DDL = """
CREATE TABLE IF NOT EXISTS payments (
    id VARCHAR,
    client_id VARCHAR NOT NULL,
    created TIMESTAMP NOT NULL,
    status VARCHAR,
    currency VARCHAR,
    amount BIGINT,
    customer_id VARCHAR,
    session_id VARCHAR
)
"""

REFUNDS_DDL = """
CREATE TABLE IF NOT EXISTS refunds (
    id VARCHAR,
    client_id VARCHAR NOT NULL,
    created TIMESTAMP NOT NULL,
    status VARCHAR,
    reason VARCHAR,
    currency VARCHAR,
    amount BIGINT,
    payment_intent_id VARCHAR,
    session_id VARCHAR
)
"""

SCHEMA_DDL: dict[str, str] = {
    "events": EVENTS_DDL,
    "errors": ERRORS_DDL,
    "web_vitals": WEB_VITALS_DDL,
    "payments": PAYMENTS_DDL,
    "refunds": REFUNDS_DDL,
}

# column order of each table, handy for positional inserts
TABLE_COLUMNS: dict[str, tuple[str, ...]] = {
    "events": (
        "id", "client_id", "event_name", "anonymous_id", "session_id", "time",
        "path", "title", "referrer", "screen_resolution", "browser_name",
        "browser_version", "os_name", "device_type", "country", "region", "city",
        "language", "timezone", "utm_source", "utm_medium", "utm_campaign",
        "load_time", "ttfb", "scroll_depth", "properties",
    ),
    "errors": (
        "id", "client_id", "anonymous_id", "session_id", "time", "path",
        "message", "error_type", "browser_name", "country",
    ),
    "web_vitals": (
        "id", "client_id", "anonymous_id", "session_id", "timestamp", "path",
        "screen_resolution", "browser_name", "browser_version", "os_name",
        "country", "region", "fcp", "lcp", "cls", "fid", "inp",
    ),
    "payments": (
        "id", "client_id", "created", "status", "currency", "amount",
        "customer_id", "session_id",
    ),
    "refunds": (
        "id", "client_id", "created", "status", "reason", "currency", "amount",
        "payment_intent_id", "session_id",
    ),
}
