"""Pure aggregation over a user's expenses."""

from hisabkitab.analytics.aggregator import (
    MONTH_LABELS,
    by_category,
    by_month,
    recent,
    summarize,
    total_of,
)

__all__ = [
    "MONTH_LABELS",
    "by_category",
    "by_month",
    "recent",
    "summarize",
    "total_of",
]
