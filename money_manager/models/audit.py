"""
Audit Models for Money Manager

Every write to the store and every backup operation is logged as an
audit event. This provides:
1. Traceability of what changed and when
2. Debugging information when an import or migration fails

DESIGN DECISION: Audit events are emitted as structured log lines only.
They are never written back into the record store.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Record writes
    RECORD_CREATED = "record_created"
    RECORD_UPDATED = "record_updated"
    RECORD_SOFT_DELETED = "record_soft_deleted"
    RECORDS_PURGED = "records_purged"
    RECORDS_BULK_WRITTEN = "records_bulk_written"
    COLLECTION_CLEARED = "collection_cleared"

    # Schema
    SCHEMA_MIGRATED = "schema_migrated"

    # Backup
    BACKUP_EXPORTED = "backup_exported"
    BACKUP_IMPORTED = "backup_imported"
    BACKUP_IMPORT_FAILED = "backup_import_failed"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    One change to the store or one backup run.

    Events are logged, never persisted: the store itself is the record.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what is this about?
    collection: Optional[str] = Field(
        default=None,
        description="Record collection (e.g., 'expenses')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the record this event relates to"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Flatten to keyword arguments for a structlog call.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "collection": self.collection,
            "entity_id": self.entity_id,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Factory methods for the events the store and backup service emit.

    Usage:
        event = AuditEventBuilder.record_created("expenses", "e1")
        event = AuditEventBuilder.backup_imported("merge", counts)
    """

    @staticmethod
    def record_created(collection: str, record_id: str, upsert: bool = False) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_CREATED,
            collection=collection,
            entity_id=record_id,
            description=f"Record {'upserted' if upsert else 'created'} in {collection}",
            details={"upsert": upsert},
        )

    @staticmethod
    def record_updated(collection: str, record_id: str, fields: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_UPDATED,
            collection=collection,
            entity_id=record_id,
            description=f"Record updated in {collection}",
            details={"fields": fields},
        )

    @staticmethod
    def record_soft_deleted(collection: str, record_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_SOFT_DELETED,
            collection=collection,
            entity_id=record_id,
            description=f"Record marked deleted in {collection}",
        )

    @staticmethod
    def records_purged(collection: str, count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORDS_PURGED,
            severity=AuditSeverity.WARNING,
            collection=collection,
            description=f"Purged {count} deleted records from {collection}",
            details={"count": count},
        )

    @staticmethod
    def records_bulk_written(collection: str, count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORDS_BULK_WRITTEN,
            collection=collection,
            description=f"Bulk wrote {count} records to {collection}",
            details={"count": count},
        )

    @staticmethod
    def collection_cleared(collection: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COLLECTION_CLEARED,
            severity=AuditSeverity.WARNING,
            collection=collection,
            description=f"Collection {collection} cleared",
        )

    @staticmethod
    def schema_migrated(from_version: Optional[int], to_version: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SCHEMA_MIGRATED,
            description=f"Schema migrated from {from_version or 'empty'} to v{to_version}",
            details={
                "from_version": from_version,
                "to_version": to_version,
            },
        )

    @staticmethod
    def backup_exported(counts: dict[str, int], include_attachments: bool) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKUP_EXPORTED,
            description=f"Backup exported with {sum(counts.values())} records",
            details={
                "counts": counts,
                "include_attachments": include_attachments,
            },
        )

    @staticmethod
    def backup_imported(policy: str, counts: dict[str, int], legacy_format: bool) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKUP_IMPORTED,
            severity=AuditSeverity.WARNING if policy == "replace" else AuditSeverity.INFO,
            description=f"Backup imported ({policy}) with {sum(counts.values())} records",
            details={
                "policy": policy,
                "counts": counts,
                "legacy_format": legacy_format,
            },
        )

    @staticmethod
    def backup_import_failed(policy: str, error_type: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKUP_IMPORT_FAILED,
            severity=AuditSeverity.ERROR,
            description=f"Backup import ({policy}) failed: {error_type}",
            error_code=error_type,
            error_message=error_message,
            details={"policy": policy},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_code=error_type,
            error_message=error_message,
            details=details or {},
        )
