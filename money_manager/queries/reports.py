"""
Aggregate Reports

DESIGN DECISION: Every aggregate skips soft-deleted records. The result
of any report equals the same computation over the store with all
tombstoned rows physically removed.

Reports read live data from the store; nothing is cached here.
"""

import datetime
from collections import defaultdict
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from money_manager.models.records import Collection, Record, Voucher
from money_manager.services.storage import RecordStoreInterface


def is_active(record: Record) -> bool:
    """A record counts in aggregates unless it is tombstoned."""
    return not record.is_deleted


def amount_of(record: Record) -> int:
    """Money value of a record; vouchers contribute their receipt total."""
    if isinstance(record, Voucher):
        return record.total or 0
    return record.amount


def total_amount(records: Iterable[Record]) -> int:
    return sum(amount_of(record) for record in records if is_active(record))


def breakdown(records: Iterable[Record], key: str) -> dict[str, int]:
    """
    Sum amounts grouped by a record attribute (e.g. 'category').

    Records missing the attribute are grouped under an empty string.
    """
    totals: dict[str, int] = defaultdict(int)
    for record in records:
        if not is_active(record):
            continue
        value = getattr(record, key, None)
        label = getattr(value, "value", value)
        totals["" if label is None else str(label)] += amount_of(record)
    return dict(totals)


def month_bounds(month: str) -> tuple[datetime.date, datetime.date]:
    """First and last day of a 'YYYY-MM' month."""
    try:
        year, number = (int(part) for part in month.split("-"))
        first = datetime.date(year, number, 1)
    except ValueError as e:
        raise ValueError(f"Month must be formatted YYYY-MM, got {month!r}") from e
    if number == 12:
        following = datetime.date(year + 1, 1, 1)
    else:
        following = datetime.date(year, number + 1, 1)
    return first, following - datetime.timedelta(days=1)


class MonthSummary(BaseModel):
    """Income, spending and saving totals for one month."""

    month: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    income: int = 0
    expense: int = 0
    saving: int = 0

    @property
    def balance(self) -> int:
        return self.income - self.expense - self.saving


class ReportService:
    """
    Computes totals and breakdowns from the record store.

    GUARANTEES:
    - Only counts records that are not soft-deleted
    - Collections missing at the store's schema version count as zero
    """

    def __init__(self, store: RecordStoreInterface):
        self._store = store

    async def _active_records(
        self,
        collection: Collection,
        date_from: Optional[datetime.date] = None,
        date_to: Optional[datetime.date] = None,
    ) -> list[Record]:
        if not self._store.has_collection(collection):
            return []
        return await self._store.list_records(
            collection,
            date_from=date_from,
            date_to=date_to,
            include_deleted=False,
        )

    async def collection_total(
        self,
        collection: Collection,
        date_from: Optional[datetime.date] = None,
        date_to: Optional[datetime.date] = None,
    ) -> int:
        """Sum of amounts (voucher totals) in a date range."""
        records = await self._active_records(collection, date_from, date_to)
        return total_amount(records)

    async def category_breakdown(
        self,
        date_from: Optional[datetime.date] = None,
        date_to: Optional[datetime.date] = None,
    ) -> dict[str, int]:
        """Expense totals per category."""
        records = await self._active_records(Collection.EXPENSES, date_from, date_to)
        return breakdown(records, "category")

    async def month_summary(self, month: str) -> MonthSummary:
        """Totals for a 'YYYY-MM' month, as shown on the dashboard."""
        first, last = month_bounds(month)
        return MonthSummary(
            month=month,
            income=await self.collection_total(Collection.INCOMES, first, last),
            expense=await self.collection_total(Collection.EXPENSES, first, last),
            saving=await self.collection_total(Collection.SAVINGS, first, last),
        )
