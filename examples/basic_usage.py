"""Basic usage example for PulseQuery.

run data/generate_sample_data.py first, then:

    python examples/basic_usage.py data/pulsequery.duckdb
"""

import asyncio
import sys

from pulsequery.config import Settings
from pulsequery.engine import AnalyticsEngine
from pulsequery.models import CompileRequest, FilterClause, QueryRequest


async def main(database_path: str) -> None:
    """Demonstrate PulseQuery capabilities."""
    settings = Settings(
        database_path=database_path,
        website_domains={"site_demo": "demo.example.com"},
    )

    with AnalyticsEngine(settings) as engine:
        print("=" * 60)
        print("PulseQuery Web Analytics Demo")
        print("=" * 60)

        # 1. what can we ask for?
        print(f"\n1. {len(engine.list_types())} query types available")

        # 2. a dashboard load: many breakdowns in one batch
        print("\n2. Dashboard batch:")
        request = QueryRequest(
            tenant_id="site_demo",
            parameters=["top_pages", "top_referrers", "country", "browser_name", "summary_metrics"],
            start_date="2024-01-01",
            end_date="2024-03-31",
            limit=5,
        )
        envelope = await engine.query(request)
        for result in envelope.data:
            print(f"   {result.parameter}: {len(result.data)} rows")
            for row in result.data[:3]:
                print(f"      {row}")

        # 3. filters
        print("\n3. Mobile-only custom events:")
        request = QueryRequest(
            tenant_id="site_demo",
            parameters=["custom_events"],
            start_date="2024-01-01",
            end_date="2024-03-31",
            filters=[FilterClause(field="device_type", operator="eq", value="mobile")],
        )
        envelope = await engine.query(request)
        for row in envelope.data[0].data:
            print(f"   {row['name']}: {row['total_events']} events")

        # 4. dry run
        print("\n4. Generated SQL for utm_sources (session attribution):")
        compiled = engine.compile(
            CompileRequest(
                tenant_id="site_demo",
                name="utm_sources",
                start_date="2024-01-01",
                end_date="2024-03-31",
            )
        )
        print(engine.compiler.format_sql(compiled.sql))
        print(compiled.params)


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "data/pulsequery.duckdb"))
