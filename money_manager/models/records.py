"""
Record Models for Money Manager

These models define the four record kinds held by the local store:
incomes, expenses, vouchers and savings.

DESIGN DECISION: Python attributes are snake_case while the persisted
payload and the backup document use camelCase aliases (updatedAt,
voucherId, fileName, ...). Models accept both spellings on input and
always dump by alias.

Amounts are integers in minor currency units. Dates are calendar dates,
serialized as ISO YYYY-MM-DD. `updated_at` is epoch milliseconds.
"""

import datetime
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# ENUMS
# =============================================================================

class Collection(str, Enum):
    """The four record collections of the store."""
    INCOMES = "incomes"
    EXPENSES = "expenses"
    VOUCHERS = "vouchers"
    SAVINGS = "savings"


class ExpenseType(str, Enum):
    """Expense kind. Shopping expenses usually carry a voucher."""
    OTHER = "other"
    SHOPPING = "shopping"


def new_record_id() -> str:
    """Generate an opaque, globally unique record id."""
    return str(uuid4())


def current_millis() -> int:
    """Wall-clock time as epoch milliseconds."""
    return int(datetime.datetime.now(datetime.timezone.utc).timestamp() * 1000)


# =============================================================================
# RECORD MODELS
# =============================================================================

class Record(BaseModel):
    """
    Fields shared by every record kind.

    `deleted` is a soft-delete tombstone: a deleted record stays in the
    store and in backups, but is excluded from every aggregate.
    """
    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
    )

    id: str = Field(
        default_factory=new_record_id,
        min_length=1,
        description="Opaque unique identifier, immutable once assigned"
    )
    date: datetime.date = Field(
        ...,
        description="Calendar date of the record"
    )
    updated_at: int = Field(
        default=0,
        ge=0,
        alias="updatedAt",
        description="Epoch millis of the last write (0 = not yet stamped)"
    )
    deleted: Optional[bool] = Field(
        default=None,
        description="Soft-delete tombstone"
    )

    @property
    def is_deleted(self) -> bool:
        return bool(self.deleted)

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON-safe dict used for storage and backups."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Income(Record):
    """Money received."""

    amount: int = Field(..., ge=0, description="Amount in minor units")
    source: str = Field(..., description="Where the money came from")
    note: Optional[str] = None


class Expense(Record):
    """
    Money spent.

    `voucher_id` is a weak reference: the expense does not own the
    voucher, and deleting the expense never touches it.
    """

    amount: int = Field(..., ge=0, description="Amount in minor units")
    category: str = Field(..., description="Free-text category")
    type: ExpenseType = Field(default=ExpenseType.OTHER)
    place: Optional[str] = None
    note: Optional[str] = None
    voucher_id: Optional[str] = Field(default=None, alias="voucherId")


class Voucher(Record):
    """
    A receipt, optionally with its scanned file.

    The attachment bytes belong to this row and live exactly as long.
    They are never part of the JSON payload: the store keeps them in a
    separate column and backups carry them base64-encoded.
    """

    shop: Optional[str] = None
    total: Optional[int] = Field(default=None, ge=0, description="Receipt total in minor units")
    file_blob: Optional[bytes] = Field(
        default=None,
        alias="fileBlob",
        exclude=True,
        repr=False,
    )
    file_name: Optional[str] = Field(default=None, alias="fileName")
    file_type: Optional[str] = Field(default=None, alias="fileType", description="MIME type")

    @property
    def has_attachment(self) -> bool:
        return self.file_blob is not None


class Saving(Record):
    """Money set aside."""

    amount: int = Field(..., ge=0, description="Amount in minor units")
    place: Optional[str] = None
    method: Optional[str] = None
    note: Optional[str] = None


RECORD_MODELS: dict[Collection, type[Record]] = {
    Collection.INCOMES: Income,
    Collection.EXPENSES: Expense,
    Collection.VOUCHERS: Voucher,
    Collection.SAVINGS: Saving,
}


def collection_of(record: Record) -> Collection:
    """Return the collection a record instance belongs to."""
    for collection, model in RECORD_MODELS.items():
        if type(record) is model:
            return collection
    raise TypeError(f"Not a store record: {type(record).__name__}")
