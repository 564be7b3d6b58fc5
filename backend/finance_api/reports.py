"""Aggregation over a user's income and expense entries: month series, period reports and exports."""

from __future__ import annotations

import csv
import io
from calendar import monthrange
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from .errors import ValidationFailed
from .persistence import Persistence
from .schemas import EntryFilter, EntryKind, ReportPeriod

ZERO = Decimal("0.00")
HUNDRED = Decimal("100")
RECENT_TRANSACTIONS = 5
MAX_EXPORT_DAYS = 730
CSV_HEADER = ("Type", "Date", "Amount", "Category", "Description")
MONTH_LABELS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _pct(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def shift_month(day: date, months: int) -> date:
    """First day of the month ``months`` away from ``day``'s month."""
    total_month = (day.month - 1) + months
    return date(day.year + total_month // 12, (total_month % 12) + 1, 1)


def month_bounds(year: int, month: int) -> tuple[date, date]:
    return date(year, month, 1), date(year, month, monthrange(year, month)[1])


def monthly_series(persistence: Persistence, user_id: str, months_back: int = 6, today: date | None = None) -> list[dict[str, Any]]:
    """Income and expense totals per calendar month, oldest month first.

    The window ends with the current month and always has ``months_back``
    entries; a month without records reports zero.
    """
    anchor = today or _today()
    series = []
    for offset in range(months_back - 1, -1, -1):
        first = shift_month(anchor, -offset)
        start, end = month_bounds(first.year, first.month)
        series.append(
            {
                "label": MONTH_LABELS[first.month - 1],
                "income": persistence.sum_entries(EntryKind.income, user_id, start, end),
                "expenses": persistence.sum_entries(EntryKind.expense, user_id, start, end),
            }
        )
    return series


def _change(current: Decimal, previous: Decimal) -> Decimal:
    if previous <= 0:
        return ZERO
    return _pct((current - previous) / previous * HUNDRED)


def dashboard_summary(persistence: Persistence, user_id: str, today: date | None = None) -> dict[str, Any]:
    anchor = today or _today()
    current = month_bounds(anchor.year, anchor.month)
    prev_first = shift_month(anchor, -1)
    previous = month_bounds(prev_first.year, prev_first.month)

    income = persistence.sum_entries(EntryKind.income, user_id, *current)
    expenses = persistence.sum_entries(EntryKind.expense, user_id, *current)
    previous_income = persistence.sum_entries(EntryKind.income, user_id, *previous)
    previous_expenses = persistence.sum_entries(EntryKind.expense, user_id, *previous)

    recent_filter = EntryFilter(limit=RECENT_TRANSACTIONS)
    recent = [
        {**row, "type": kind.value}
        for kind in (EntryKind.expense, EntryKind.income)
        for row in persistence.list_entries(kind, user_id, recent_filter)
    ]
    recent.sort(key=lambda row: (row["date"], row["created_at"]), reverse=True)

    return {
        "balance": income - expenses,
        "income": income,
        "expenses": expenses,
        "savingsRate": _pct((income - expenses) / income * HUNDRED) if income > 0 else ZERO,
        "incomeChange": _change(income, previous_income),
        "expensesChange": _change(expenses, previous_expenses),
        "recentTransactions": recent[:RECENT_TRANSACTIONS],
    }


def budget_spent(persistence: Persistence, user_id: str, budget: dict[str, Any]) -> dict[str, Any]:
    # Spending counts every expense in the category from the budget start onwards.
    categories = [
        {
            **category,
            "spent": persistence.sum_entries(
                EntryKind.expense, user_id, start=budget["start_date"], category=category["name"]
            ),
        }
        for category in budget["categories"]
    ]
    return {**budget, "categories": categories}


def goal_progress(goal: dict[str, Any]) -> Decimal:
    target = Decimal(goal["target_amount"])
    if target <= 0:
        return ZERO
    return _pct(min(Decimal(goal["current_amount"]) / target * HUNDRED, HUNDRED))


def period_bounds(period: ReportPeriod | str, today: date) -> tuple[date, date]:
    period = ReportPeriod(period)
    if period is ReportPeriod.year:
        return date(today.year, 1, 1), date(today.year, 12, 31)
    if period is ReportPeriod.quarter:
        first_month = (today.month - 1) // 3 * 3 + 1
        return date(today.year, first_month, 1), month_bounds(today.year, first_month + 2)[1]
    return month_bounds(today.year, today.month)


def previous_range(start: date, end: date) -> tuple[date, date]:
    """Range that ends the day before ``start`` and begins as far before ``start`` as ``end`` lies after it."""
    return start - (end - start), start - timedelta(days=1)


def _check_range(start: date, end: date) -> None:
    if start > end:
        raise ValidationFailed(details=[{"field": "startDate", "message": "startDate must be <= endDate"}])


def _total(rows: list[dict[str, Any]]) -> Decimal:
    return sum((Decimal(row["amount"]) for row in rows), ZERO).quantize(ZERO)


def _by_category(rows: list[dict[str, Any]]) -> dict[str, Decimal]:
    totals: dict[str, Decimal] = {}
    for row in rows:
        totals[row["category"]] = totals.get(row["category"], ZERO) + Decimal(row["amount"])
    return {category: amount.quantize(ZERO) for category, amount in totals.items()}


def _shares(rows: list[dict[str, Any]], total: Decimal) -> list[dict[str, Any]]:
    totals = sorted(_by_category(rows).items(), key=lambda item: (-item[1], item[0]))
    return [
        {
            "category": category,
            "amount": amount,
            "percentage": _pct(amount / total * HUNDRED) if total > 0 else ZERO,
        }
        for category, amount in totals
    ]


def period_report(
    persistence: Persistence,
    user_id: str,
    period: ReportPeriod | str = ReportPeriod.month,
    start: date | None = None,
    end: date | None = None,
    months_back: int = 6,
    today: date | None = None,
) -> dict[str, Any]:
    """Totals, category shares and change against the preceding range.

    An explicit ``start``/``end`` pair overrides the calendar ``period``.
    """
    anchor = today or _today()
    period = ReportPeriod(period)
    if start is not None and end is not None:
        _check_range(start, end)
    else:
        start, end = period_bounds(period, anchor)

    window = EntryFilter(start_date=start, end_date=end)
    income_rows = persistence.list_entries(EntryKind.income, user_id, window)
    expense_rows = persistence.list_entries(EntryKind.expense, user_id, window)
    income = _total(income_rows)
    expenses = _total(expense_rows)
    net = income - expenses

    prev_start, prev_end = previous_range(start, end)
    prev_income = persistence.sum_entries(EntryKind.income, user_id, prev_start, prev_end)
    prev_expenses = persistence.sum_entries(EntryKind.expense, user_id, prev_start, prev_end)

    monthly = [
        {**point, "savings": point["income"] - point["expenses"]}
        for point in monthly_series(persistence, user_id, months_back, anchor)
    ]
    return {
        "summary": {
            "totalIncome": income,
            "totalExpenses": expenses,
            "netSavings": net,
            "savingsRate": _pct(net / income * HUNDRED) if income > 0 else ZERO,
            "changes": {
                "income": _change(income, prev_income),
                "expenses": _change(expenses, prev_expenses),
                "savings": _change(net, prev_income - prev_expenses),
            },
        },
        "categoryBreakdown": {
            "income": _shares(income_rows, income),
            "expenses": _shares(expense_rows, expenses),
        },
        "monthlyData": monthly,
        "period": period.value,
        "dateRange": {"start": start, "end": end},
    }


def _export_rows(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {
            "id": row["id"],
            "date": row["date"],
            "amount": row["amount"],
            "category": row["category"],
            "description": row["description"] or "",
        }
        for row in rows
    ]


def export_report(persistence: Persistence, user_id: str, start: date, end: date) -> dict[str, Any]:
    _check_range(start, end)
    if (end - start).days > MAX_EXPORT_DAYS:
        raise ValidationFailed(details=[{"field": "endDate", "message": "date range cannot exceed 2 years"}])

    window = EntryFilter(start_date=start, end_date=end)
    income_rows = persistence.list_entries(EntryKind.income, user_id, window)
    expense_rows = persistence.list_entries(EntryKind.expense, user_id, window)
    income = _total(income_rows)
    expenses = _total(expense_rows)
    return {
        "summary": {
            "dateRange": {"start": start, "end": end},
            "totalIncome": income,
            "totalExpenses": expenses,
            "netSavings": income - expenses,
            "savingsRate": _pct((income - expenses) / income * HUNDRED) if income > 0 else ZERO,
            "recordCounts": {
                "income": len(income_rows),
                "expenses": len(expense_rows),
                "total": len(income_rows) + len(expense_rows),
            },
        },
        "transactions": {"income": _export_rows(income_rows), "expenses": _export_rows(expense_rows)},
        "categoryBreakdown": {"income": _by_category(income_rows), "expenses": _by_category(expense_rows)},
        "generatedAt": datetime.now(timezone.utc),
    }


def export_csv(report: dict[str, Any]) -> str:
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for label, key in (("Expense", "expenses"), ("Income", "income")):
        for row in report["transactions"][key]:
            writer.writerow([label, row["date"].isoformat(), row["amount"], row["category"], row["description"]])
    return output.getvalue()
