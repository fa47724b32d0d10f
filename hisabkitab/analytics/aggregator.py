"""
Expense Analytics

DESIGN DECISION: Aggregation is DETERMINISTIC and PURE.
Every function takes an already loaded, already user-scoped list of
expenses and returns view models. Nothing here touches storage.

by_category omits empty buckets; by_month always returns twelve.
Callers rely on that asymmetry (pie chart vs. trend line).

Sums are accumulated as Decimal and quantized to 2 places.
"""

import calendar
from collections import OrderedDict
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from hisabkitab.models.finance import (
    CategoryTotal,
    DashboardSummary,
    Expense,
    MonthlyTotal,
    as_utc,
    to_money,
    utcnow,
)


MONTH_LABELS = [
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
]


def _in_range(
    expense: Expense,
    range_start: Optional[datetime],
    range_end: Optional[datetime],
) -> bool:
    if range_start is not None and expense.date < range_start:
        return False
    if range_end is not None and expense.date > range_end:
        return False
    return True


def by_category(
    expenses: Iterable[Expense],
    range_start: Optional[datetime] = None,
    range_end: Optional[datetime] = None,
) -> list[CategoryTotal]:
    """
    Spend per category name, optionally limited to [range_start, range_end].

    Only categories that occur in the range are returned, in order of
    first appearance.
    """
    range_start = as_utc(range_start) if range_start else None
    range_end = as_utc(range_end) if range_end else None

    buckets: "OrderedDict[str, list]" = OrderedDict()
    for expense in expenses:
        if not _in_range(expense, range_start, range_end):
            continue
        bucket = buckets.setdefault(expense.category, [Decimal("0"), 0])
        bucket[0] += expense.amount
        bucket[1] += 1

    return [
        CategoryTotal(category=name, amount=to_money(amount), count=count)
        for name, (amount, count) in buckets.items()
    ]


def by_month(expenses: Iterable[Expense], year: int) -> list[MonthlyTotal]:
    """Twelve entries, January to December, zero-filled."""
    amounts = [Decimal("0")] * 12
    counts = [0] * 12

    for expense in expenses:
        if expense.date.year != year:
            continue
        index = expense.date.month - 1
        amounts[index] += expense.amount
        counts[index] += 1

    return [
        MonthlyTotal(
            month=index + 1,
            label=MONTH_LABELS[index],
            amount=to_money(amounts[index]),
            count=counts[index],
        )
        for index in range(12)
    ]


def total_of(expenses: Iterable[Expense]) -> Decimal:
    """Sum of every amount, no date filter."""
    return to_money(sum((e.amount for e in expenses), Decimal("0")))


def recent(expenses: Iterable[Expense], n: int = 5) -> list[Expense]:
    """n most recent by date; equal dates keep their input order."""
    if n <= 0:
        return []
    return sorted(expenses, key=lambda e: e.date, reverse=True)[:n]


def _month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    last_day = calendar.monthrange(year, month)[1]
    start = datetime(year, month, 1)
    end = datetime(year, month, last_day, 23, 59, 59, 999999)
    return as_utc(start), as_utc(end)


def _previous_month(year: int, month: int) -> tuple[int, int]:
    if month == 1:
        return year - 1, 12
    return year, month - 1


def summarize(expenses: list[Expense], now: Optional[datetime] = None) -> DashboardSummary:
    """
    Headline dashboard numbers.

    Args:
        expenses: The user's full expense history
        now: Reference instant for "this month" (defaults to current UTC time)
    """
    now = as_utc(now) if now else utcnow()

    this_start, this_end = _month_bounds(now.year, now.month)
    prev_year, prev_month = _previous_month(now.year, now.month)
    prev_start, prev_end = _month_bounds(prev_year, prev_month)

    this_month = total_of(e for e in expenses if _in_range(e, this_start, this_end))
    last_month = total_of(e for e in expenses if _in_range(e, prev_start, prev_end))
    total = total_of(expenses)

    if last_month > 0:
        change = to_money((this_month - last_month) / last_month * 100)
    else:
        change = Decimal("0.00")

    count = len(expenses)
    average = to_money(total / count) if count else Decimal("0.00")

    categories = by_category(expenses)
    # max() keeps the first of equal totals, i.e. first seen
    top = max(categories, key=lambda c: c.amount) if categories else None

    return DashboardSummary(
        total_spent=total,
        this_month_spent=this_month,
        prev_month_spent=last_month,
        monthly_change_percent=change,
        expense_count=count,
        average_expense=average,
        top_category=top,
    )
