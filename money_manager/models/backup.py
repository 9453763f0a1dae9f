"""
Backup Models

Options, policies and results for exporting the store to a portable
JSON document and importing it back.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from money_manager.models.records import Collection


# Side field carrying a voucher attachment as base64 text.
ATTACHMENT_FIELD = "_fileBase64"

# updatedAt given to imported rows that carry none when the document has
# no usable export time either. Must be non-zero so the store keeps it.
FALLBACK_UPDATED_AT = 1

# Collections present in every revision of the backup document.
REQUIRED_COLLECTIONS = (Collection.EXPENSES, Collection.VOUCHERS)


class ImportPolicy(str, Enum):
    """
    How an imported document meets existing data.

    MERGE upserts every incoming row by id and leaves everything else alone.
    REPLACE empties all four collections first.
    """
    MERGE = "merge"
    REPLACE = "replace"


class ExportOptions(BaseModel):
    """Export configuration."""

    include_attachments: bool = Field(
        default=True,
        description="Embed voucher attachments as base64 (False = small backup)"
    )


class ImportSummary(BaseModel):
    """What an import wrote."""

    policy: ImportPolicy
    schema_version: Optional[int] = Field(
        default=None,
        description="Schema version declared by the document, if any"
    )
    legacy_format: bool = Field(
        default=False,
        description="Document used the old meta/expenses/vouchers shape"
    )
    counts: dict[Collection, int] = Field(default_factory=dict)
    attachments_restored: int = Field(default=0, ge=0)

    @property
    def total_records(self) -> int:
        return sum(self.counts.values())
