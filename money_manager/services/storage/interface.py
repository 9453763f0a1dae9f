"""
Abstract Record Store Interface

DESIGN DECISION: Callers (UI collaborators, the backup service, reports)
depend on this interface, never on SQLite directly. The interface is
intentionally small: CRUD over four collections, an atomic bulk upsert,
and change notification. We're not building a full ORM.
"""

import datetime
from abc import ABC, abstractmethod
from typing import Any, AsyncContextManager, Callable, Iterable, Mapping, Optional, Union

from money_manager.models.records import Collection, Record
from money_manager.services.storage.live import ChangeListener, LiveQuery, Subscription


RecordPredicate = Callable[[Record], bool]


class RecordStoreInterface(ABC):
    """
    Abstract interface for the local record store.

    Every mutating operation is observable by subscribers once it commits.
    """

    # Schema version the store is open at
    schema_version: int

    @abstractmethod
    async def create_record(self, record: Record, *, upsert: bool = False) -> Record:
        """
        Insert a record into its collection.

        Args:
            record: The record to store; the collection follows from its type
            upsert: Overwrite an existing row with the same id instead of failing

        Returns:
            The stored record, with `updated_at` stamped

        Raises:
            DuplicateKeyError: If the id exists and upsert is False
        """
        pass

    @abstractmethod
    async def get_record(self, collection: Collection, record_id: str) -> Optional[Record]:
        """
        Retrieve a record by id, deleted or not.

        Returns:
            The record if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_records(
        self,
        collection: Collection,
        *,
        predicate: Optional[RecordPredicate] = None,
        equals: Optional[Mapping[str, Any]] = None,
        date_from: Optional[datetime.date] = None,
        date_to: Optional[datetime.date] = None,
        include_deleted: bool = True,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> list[Record]:
        """
        List records of a collection.

        Args:
            collection: Collection to read
            predicate: Arbitrary filter applied to each record
            equals: Exact matches on indexed fields (document names)
            date_from: Keep records on or after this date
            date_to: Keep records on or before this date
            include_deleted: Keep tombstoned records
            order_by: 'date' or 'updatedAt'; insertion order when None
            descending: Reverse the sort key

        Returns:
            Matching records
        """
        pass

    @abstractmethod
    async def update_record(
        self,
        collection: Collection,
        record_id: str,
        patch: Mapping[str, Any],
    ) -> Record:
        """
        Apply a partial update and stamp a fresh `updated_at`.

        Raises:
            NotFoundError: If the record doesn't exist
        """
        pass

    @abstractmethod
    async def soft_delete(self, collection: Collection, record_id: str) -> Record:
        """
        Mark a record deleted. The row stays in the store.

        Raises:
            NotFoundError: If the record doesn't exist
        """
        pass

    @abstractmethod
    async def bulk_put(
        self,
        collection: Collection,
        rows: Iterable[Union[Record, Mapping[str, Any]]],
    ) -> int:
        """
        Upsert every row by id as one atomic unit.

        Either all rows persist or none do.

        Returns:
            Number of rows written
        """
        pass

    @abstractmethod
    async def clear(self, collection: Collection) -> None:
        """Remove every row of a collection."""
        pass

    @abstractmethod
    async def count(self, collection: Collection, *, include_deleted: bool = True) -> int:
        """Count rows of a collection."""
        pass

    @abstractmethod
    def transaction(self) -> AsyncContextManager[None]:
        """
        Group several operations into one all-or-nothing unit.

        Usage:
            async with store.transaction():
                await store.clear(Collection.EXPENSES)
                await store.bulk_put(Collection.EXPENSES, rows)
        """
        pass

    @abstractmethod
    def snapshot(self) -> AsyncContextManager[None]:
        """Consistent read view across several collections."""
        pass

    @abstractmethod
    def subscribe(self, collection: Collection, listener: ChangeListener) -> Subscription:
        """Call `listener` after each committed write to `collection`."""
        pass

    @abstractmethod
    async def live_query(self, collection: Collection, **filters: Any) -> LiveQuery:
        """
        A query result that refreshes itself after every committed
        write to `collection`. Accepts the filters of list_records().

        The first evaluation waits for any open transaction to finish.
        """
        pass

    @abstractmethod
    def has_collection(self, collection: Collection) -> bool:
        """Does the collection exist at the open schema version?"""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Record not found in storage."""

    def __init__(self, collection: Collection, record_id: str):
        self.collection = collection
        self.record_id = record_id
        super().__init__(f"{collection.value} record not found: {record_id}")


class DuplicateKeyError(StorageError):
    """Attempted to insert a record whose id already exists."""

    def __init__(self, collection: Collection, record_id: str):
        self.collection = collection
        self.record_id = record_id
        super().__init__(f"{collection.value} record already exists: {record_id}")


class SchemaDowngradeError(StorageError):
    """Store was opened at an older schema version than the one on disk."""

    def __init__(self, stored_version: int, requested_version: int):
        self.stored_version = stored_version
        self.requested_version = requested_version
        super().__init__(
            f"Store is at schema v{stored_version}; "
            f"cannot open it at older v{requested_version}"
        )


class UnknownCollectionError(StorageError):
    """Collection does not exist at the store's schema version."""
    pass


class StorageIOError(StorageError):
    """The underlying database engine failed."""
    pass
