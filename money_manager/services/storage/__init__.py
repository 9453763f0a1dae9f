"""
Storage Services Package

Provides the abstract record store interface and its SQLite implementation,
the versioned schema declaration, and change notification for live queries.
"""

from money_manager.services.storage.interface import (
    DuplicateKeyError,
    NotFoundError,
    RecordStoreInterface,
    SchemaDowngradeError,
    StorageError,
    StorageIOError,
    UnknownCollectionError,
)
from money_manager.services.storage.live import (
    ChangeNotifier,
    LiveQuery,
    Subscription,
)
from money_manager.services.storage.schema import (
    LATEST_SCHEMA_VERSION,
    SCHEMA_VERSIONS,
    SchemaVersion,
)
from money_manager.services.storage.sqlite_store import SQLiteRecordStore

__all__ = [
    # Interfaces
    "RecordStoreInterface",
    # Exceptions
    "DuplicateKeyError",
    "NotFoundError",
    "SchemaDowngradeError",
    "StorageError",
    "StorageIOError",
    "UnknownCollectionError",
    # Live queries
    "ChangeNotifier",
    "LiveQuery",
    "Subscription",
    # Schema
    "LATEST_SCHEMA_VERSION",
    "SCHEMA_VERSIONS",
    "SchemaVersion",
    # SQLite implementation
    "SQLiteRecordStore",
]
