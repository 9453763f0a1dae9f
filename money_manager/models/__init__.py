"""
Data Models Package

This package contains all Pydantic models used in Money Manager.
All data flowing into the store or a backup must conform to these schemas.
"""

from money_manager.models.records import (
    RECORD_MODELS,
    Collection,
    Expense,
    ExpenseType,
    Income,
    Record,
    Saving,
    Voucher,
    collection_of,
    current_millis,
    new_record_id,
)
from money_manager.models.backup import (
    ATTACHMENT_FIELD,
    FALLBACK_UPDATED_AT,
    REQUIRED_COLLECTIONS,
    ExportOptions,
    ImportPolicy,
    ImportSummary,
)
from money_manager.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Record models
    "RECORD_MODELS",
    "Collection",
    "Expense",
    "ExpenseType",
    "Income",
    "Record",
    "Saving",
    "Voucher",
    "collection_of",
    "current_millis",
    "new_record_id",
    # Backup models
    "ATTACHMENT_FIELD",
    "FALLBACK_UPDATED_AT",
    "REQUIRED_COLLECTIONS",
    "ExportOptions",
    "ImportPolicy",
    "ImportSummary",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
