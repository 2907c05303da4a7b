"""Revenue post-processing.

payments are stored in minor units (cents) exactly as the payment provider
reports them. reports want major units, except for zero-decimal currencies
where the minor unit *is* the major unit (1 JPY is stored as 1).
"""

from decimal import Decimal
from typing import Any

# currencies without a minor unit, as the payment provider defines them
ZERO_DECIMAL_CURRENCIES = frozenset(
    {
        "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
        "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
    }
)

MONEY_FIELDS = ("total_revenue", "avg_order_value", "amount")

SUMMARY_FIELDS: dict[str, int | float] = {
    "total_revenue": 0.0,
    "total_transactions": 0,
    "successful_transactions": 0,
    "total_refunds": 0,
    "avg_order_value": 0.0,
    "success_rate": 0.0,
}


def to_major_units(amount: Any, currency: str | None = None) -> float | int:
    """Minor units -> major units, rounded to cents."""
    if amount is None:
        return 0.0
    if isinstance(amount, Decimal):
        amount = float(amount)
    if currency and currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return amount
    return round(amount / 100, 2)


def convert_revenue_rows(rows: list[dict[str, Any]], context: Any = None) -> list[dict[str, Any]]:
    processed = []
    for row in rows:
        currency = row.get("currency")
        converted = dict(row)
        for money_field in MONEY_FIELDS:
            if money_field in converted:
                converted[money_field] = to_major_units(converted[money_field], currency)
        if isinstance(converted.get("success_rate"), Decimal):
            converted["success_rate"] = float(converted["success_rate"])
        processed.append(converted)
    return processed


def summarize_revenue(rows: list[dict[str, Any]], context: Any = None) -> list[dict[str, Any]]:
    """Always exactly one summary row, zeroed when there's no data."""
    if not rows:
        return [dict(SUMMARY_FIELDS)]
    summary = dict(SUMMARY_FIELDS)
    summary.update({key: value for key, value in rows[0].items() if value is not None})
    return convert_revenue_rows([summary])
