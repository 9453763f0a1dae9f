"""Aggregate reports over the record store."""

from money_manager.queries.reports import (
    MonthSummary,
    ReportService,
    amount_of,
    breakdown,
    is_active,
    month_bounds,
    total_amount,
)

__all__ = [
    "MonthSummary",
    "ReportService",
    "amount_of",
    "breakdown",
    "is_active",
    "month_bounds",
    "total_amount",
]
