"""Services package."""

from money_manager.services.backup import (
    AttachmentDecodeError,
    BackupError,
    BackupService,
    InvalidDocumentError,
)
from money_manager.services.storage import (
    DuplicateKeyError,
    LiveQuery,
    NotFoundError,
    RecordStoreInterface,
    SchemaDowngradeError,
    SQLiteRecordStore,
    StorageError,
    StorageIOError,
    UnknownCollectionError,
)

__all__ = [
    # Backup services
    "AttachmentDecodeError",
    "BackupError",
    "BackupService",
    "InvalidDocumentError",
    # Storage services
    "DuplicateKeyError",
    "LiveQuery",
    "NotFoundError",
    "RecordStoreInterface",
    "SchemaDowngradeError",
    "SQLiteRecordStore",
    "StorageError",
    "StorageIOError",
    "UnknownCollectionError",
]
