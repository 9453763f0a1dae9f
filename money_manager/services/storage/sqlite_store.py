"""
SQLite Record Store

DESIGN DECISION: SQLite is the local durable engine because:
1. It ships with Python and needs no server
2. Transactions give all-or-nothing bulk writes and imports
3. Indexes on json_extract() expressions let the schema grow additively

Layout: one table per collection with `id`, `data` (the record's camelCase
JSON payload) and `attachment` (voucher file bytes, never base64). SQLite
rowid keeps insertion order; upserts preserve it.

One connection, explicit BEGIN/COMMIT. An asyncio lock, reentrant for the
task that holds it, serializes operations so no other task can read while
a transaction is open.
"""

import asyncio
import json
import sqlite3
from contextlib import asynccontextmanager, contextmanager
from datetime import date
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Iterable, Iterator, Mapping, Optional, Union

import structlog
from pydantic import ValidationError
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from money_manager.audit import AuditLogger
from money_manager.config import StoreSettings, get_settings
from money_manager.models.audit import AuditEventBuilder
from money_manager.models.records import (
    RECORD_MODELS,
    Collection,
    Record,
    Voucher,
    collection_of,
    current_millis,
)
from money_manager.services.storage.interface import (
    DuplicateKeyError,
    NotFoundError,
    RecordPredicate,
    RecordStoreInterface,
    StorageError,
    StorageIOError,
    UnknownCollectionError,
)
from money_manager.services.storage.live import (
    ChangeListener,
    ChangeNotifier,
    LiveQuery,
    Subscription,
)
from money_manager.services.storage.schema import (
    LATEST_SCHEMA_VERSION,
    field_expression,
    get_schema,
    migrate,
)


SORTABLE_FIELDS = ("date", "updatedAt")

_NOT_DELETED = f"coalesce({field_expression('deleted')}, 0) = 0"


def _is_locked(error: BaseException) -> bool:
    return isinstance(error, sqlite3.OperationalError) and "locked" in str(error).lower()


def _sql_value(value: Any) -> Any:
    """Convert a Python filter value to what json_extract() returns."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, date):
        return value.isoformat()
    return value


class SQLiteRecordStore(RecordStoreInterface):
    """
    SQLite implementation of the record store.

    Usage:
        store = SQLiteRecordStore("data/money.db")
        await store.create_record(Expense(date=..., amount=2000, category="Food"))
        rows = await store.list_records(Collection.EXPENSES, order_by="date")
    """

    def __init__(
        self,
        path: Optional[str] = None,
        *,
        schema_version: Optional[int] = None,
        settings: Optional[StoreSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        """
        Open (and create or migrate) the store.

        Args:
            path: SQLite file path, or ':memory:'. Defaults to settings.
            schema_version: Version to open at. Defaults to settings, then latest.
            settings: Store settings override
            audit_logger: Audit sink for writes
            clock: Epoch-millis clock used to stamp updatedAt

        Raises:
            SchemaDowngradeError: If the file is at a newer schema version
            StorageIOError: If the database cannot be opened
        """
        self._settings = settings or get_settings().store
        self.path = path or self._settings.path
        self.schema_version = (
            schema_version or self._settings.schema_version or LATEST_SCHEMA_VERSION
        )
        self._schema = get_schema(self.schema_version)
        self._audit = audit_logger or AuditLogger()
        self._clock = clock or current_millis
        self._logger = structlog.get_logger(__name__)

        self._notifier = ChangeNotifier()
        self._lock = asyncio.Lock()
        self._lock_owner: Optional[asyncio.Task] = None
        self._depth = 0
        self._pending: set[Collection] = set()

        self._conn = self._connect()
        self._open_schema()

    # -------------------------------------------------------------------------
    # Connection, schema and transactions
    # -------------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        try:
            return sqlite3.connect(
                self.path,
                timeout=self._settings.busy_timeout_seconds,
                isolation_level=None,
            )
        except sqlite3.Error as e:
            raise StorageIOError(f"Failed to open store at {self.path}: {e}") from e

    def _open_schema(self) -> None:
        try:
            with self._atomic():
                previous = migrate(self._conn, self.schema_version)
        except StorageError:
            self._conn.close()
            raise

        if previous != self.schema_version:
            self._audit.emit(AuditEventBuilder.schema_migrated(previous, self.schema_version))
        self._logger.debug(
            "store_opened",
            path=self.path,
            schema_version=self.schema_version,
        )

    def _begin(self, mode: str) -> None:
        retrying = Retrying(
            stop=stop_after_attempt(self._settings.lock_retry_attempts),
            wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
            retry=retry_if_exception(_is_locked),
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    self._conn.execute(f"BEGIN {mode}")
        except sqlite3.Error as e:
            raise StorageIOError(f"Could not begin transaction: {e}") from e

    def _rollback(self) -> None:
        if self._conn.in_transaction:
            self._conn.execute("ROLLBACK")

    @contextmanager
    def _atomic(self, mode: str = "IMMEDIATE") -> Iterator[None]:
        """
        Run the block in one SQLite transaction.

        Nested use joins the outer transaction. Change notifications are
        published once per touched collection after the outermost commit
        and dropped on rollback.
        """
        if self._depth:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return

        self._begin(mode)
        self._depth = 1
        try:
            yield
            self._conn.execute("COMMIT")
        except BaseException as e:
            self._rollback()
            self._pending.clear()
            if isinstance(e, sqlite3.Error):
                raise StorageIOError(f"Store operation failed: {e}") from e
            raise
        finally:
            self._depth = 0

        touched, self._pending = self._pending, set()
        self._notifier.publish(touched)

    @asynccontextmanager
    async def _guard(self) -> AsyncIterator[None]:
        task = asyncio.current_task()
        if task is not None and self._lock_owner is task:
            yield
            return
        async with self._lock:
            self._lock_owner = task
            try:
                yield
            finally:
                self._lock_owner = None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        async with self._guard():
            with self._atomic():
                yield

    @asynccontextmanager
    async def snapshot(self) -> AsyncIterator[None]:
        """Consistent read view across several collections."""
        async with self._guard():
            with self._atomic("DEFERRED"):
                yield

    def close(self) -> None:
        self._conn.close()

    async def __aenter__(self) -> "SQLiteRecordStore":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Row helpers (synchronous, called under the guard)
    # -------------------------------------------------------------------------

    def _resolve(self, collection: Union[Collection, str]) -> Collection:
        collection = Collection(collection)
        if collection not in self._schema.stores:
            raise UnknownCollectionError(
                f"Collection {collection.value} does not exist at schema v{self.schema_version}"
            )
        return collection

    def has_collection(self, collection: Union[Collection, str]) -> bool:
        return Collection(collection) in self._schema.stores

    def _next_stamp(self, previous: int) -> int:
        return max(self._clock(), previous + 1)

    def _to_record(self, collection: Collection, data: str, attachment: Optional[bytes]) -> Record:
        try:
            payload = json.loads(data)
            if collection is Collection.VOUCHERS:
                payload["fileBlob"] = attachment
            return RECORD_MODELS[collection].model_validate(payload)
        except (json.JSONDecodeError, ValidationError) as e:
            raise StorageIOError(f"Corrupted {collection.value} row: {e}") from e

    def _fetch(self, collection: Collection, record_id: str) -> Optional[Record]:
        row = self._conn.execute(
            f"SELECT data, attachment FROM {collection.value} WHERE id = ?",
            (record_id,),
        ).fetchone()
        if row is None:
            return None
        return self._to_record(collection, row[0], row[1])

    def _write_row(self, collection: Collection, record: Record) -> None:
        attachment = record.file_blob if isinstance(record, Voucher) else None
        self._conn.execute(
            f"INSERT INTO {collection.value} (id, data, attachment) VALUES (?, ?, ?)"
            " ON CONFLICT(id) DO UPDATE SET"
            " data = excluded.data, attachment = excluded.attachment",
            (record.id, json.dumps(record.to_payload(), ensure_ascii=False), attachment),
        )
        self._pending.add(collection)

    def _coerce(self, collection: Collection, row: Union[Record, Mapping[str, Any]]) -> Record:
        model = RECORD_MODELS[collection]
        if isinstance(row, Record):
            if type(row) is not model:
                raise TypeError(
                    f"{type(row).__name__} cannot be stored in {collection.value}"
                )
            return row
        return model.model_validate(row)

    def _normalize_patch(self, collection: Collection, patch: Mapping[str, Any]) -> dict[str, Any]:
        model = RECORD_MODELS[collection]
        names = {}
        for name, info in model.model_fields.items():
            names[name] = name
            if info.alias:
                names[info.alias] = name

        changes = {}
        for key, value in patch.items():
            if key not in names:
                raise ValueError(f"Unknown {collection.value} field: {key}")
            changes[names[key]] = value
        return changes

    def _apply_patch(self, collection: Collection, record_id: str, patch: Mapping[str, Any]) -> Record:
        current = self._fetch(collection, record_id)
        if current is None:
            raise NotFoundError(collection, record_id)

        changes = self._normalize_patch(collection, patch)
        if changes.get("id", record_id) != record_id:
            raise ValueError(f"Record id is immutable: {record_id}")

        data = {name: getattr(current, name) for name in type(current).model_fields}
        data.update(changes)
        data["updated_at"] = self._next_stamp(current.updated_at)

        updated = type(current).model_validate(data)
        self._write_row(collection, updated)
        return updated

    def _select(
        self,
        collection: Collection,
        *,
        predicate: Optional[RecordPredicate] = None,
        equals: Optional[Mapping[str, Any]] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        include_deleted: bool = True,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> list[Record]:
        clauses: list[str] = []
        params: list[Any] = []

        indexed = self._schema.stores[collection]
        for field, value in (equals or {}).items():
            if field not in indexed:
                raise ValueError(
                    f"{field} is not an indexed field of {collection.value} "
                    f"(indexed: {', '.join(indexed)})"
                )
            clauses.append(f"{field_expression(field)} = ?")
            params.append(_sql_value(value))

        if date_from is not None:
            clauses.append(f"{field_expression('date')} >= ?")
            params.append(_sql_value(date_from))
        if date_to is not None:
            clauses.append(f"{field_expression('date')} <= ?")
            params.append(_sql_value(date_to))
        if not include_deleted:
            clauses.append(_NOT_DELETED)

        direction = "DESC" if descending else "ASC"
        if order_by is None:
            order = f"rowid {direction}"
        elif order_by in SORTABLE_FIELDS:
            order = f"{field_expression(order_by)} {direction}, rowid {direction}"
        else:
            raise ValueError(f"Cannot order by {order_by}; use one of {SORTABLE_FIELDS}")

        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        try:
            rows = self._conn.execute(
                f"SELECT data, attachment FROM {collection.value}{where} ORDER BY {order}",
                params,
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageIOError(f"Failed to list {collection.value}: {e}") from e

        records = [self._to_record(collection, data, attachment) for data, attachment in rows]
        if predicate is not None:
            records = [record for record in records if predicate(record)]
        return records

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    async def create_record(self, record: Record, *, upsert: bool = False) -> Record:
        collection = self._resolve(collection_of(record))
        async with self._guard():
            with self._atomic():
                existing = self._fetch(collection, record.id)
                if existing is not None and not upsert:
                    raise DuplicateKeyError(collection, record.id)
                if existing is not None:
                    stamp = self._next_stamp(existing.updated_at)
                else:
                    stamp = record.updated_at or self._clock()
                stored = record.model_copy(update={"updated_at": stamp})
                self._write_row(collection, stored)

        await self._audit.log_record_created(collection.value, stored.id, upsert)
        return stored

    async def get_record(
        self,
        collection: Union[Collection, str],
        record_id: str,
    ) -> Optional[Record]:
        collection = self._resolve(collection)
        async with self._guard():
            try:
                return self._fetch(collection, record_id)
            except sqlite3.Error as e:
                raise StorageIOError(f"Failed to get {collection.value} record: {e}") from e

    async def list_records(
        self,
        collection: Union[Collection, str],
        *,
        predicate: Optional[RecordPredicate] = None,
        equals: Optional[Mapping[str, Any]] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        include_deleted: bool = True,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> list[Record]:
        collection = self._resolve(collection)
        async with self._guard():
            return self._select(
                collection,
                predicate=predicate,
                equals=equals,
                date_from=date_from,
                date_to=date_to,
                include_deleted=include_deleted,
                order_by=order_by,
                descending=descending,
            )

    async def update_record(
        self,
        collection: Union[Collection, str],
        record_id: str,
        patch: Mapping[str, Any],
    ) -> Record:
        collection = self._resolve(collection)
        async with self._guard():
            with self._atomic():
                updated = self._apply_patch(collection, record_id, patch)

        await self._audit.log_record_updated(collection.value, record_id, sorted(patch))
        return updated

    async def soft_delete(self, collection: Union[Collection, str], record_id: str) -> Record:
        collection = self._resolve(collection)
        async with self._guard():
            with self._atomic():
                updated = self._apply_patch(collection, record_id, {"deleted": True})

        await self._audit.log_record_soft_deleted(collection.value, record_id)
        return updated

    async def bulk_put(
        self,
        collection: Union[Collection, str],
        rows: Iterable[Union[Record, Mapping[str, Any]]],
    ) -> int:
        """
        Upsert rows by id in one transaction.

        Incoming `updatedAt` values are kept as given so that restoring a
        backup reproduces the exported rows exactly; rows without one are
        stamped with the clock.
        """
        collection = self._resolve(collection)
        count = 0
        async with self._guard():
            with self._atomic():
                for row in rows:
                    record = self._coerce(collection, row)
                    if not record.updated_at:
                        record = record.model_copy(update={"updated_at": self._clock()})
                    self._write_row(collection, record)
                    count += 1

        await self._audit.log_bulk_written(collection.value, count)
        return count

    async def clear(self, collection: Union[Collection, str]) -> None:
        collection = self._resolve(collection)
        async with self._guard():
            with self._atomic():
                self._conn.execute(f"DELETE FROM {collection.value}")
                self._pending.add(collection)

        await self._audit.log_collection_cleared(collection.value)

    async def purge_deleted(self, collection: Union[Collection, str]) -> int:
        """
        Physically remove tombstoned rows.

        This is the only hard delete; normal flows only soft-delete.
        """
        collection = self._resolve(collection)
        async with self._guard():
            with self._atomic():
                cursor = self._conn.execute(
                    f"DELETE FROM {collection.value} WHERE NOT ({_NOT_DELETED})"
                )
                purged = cursor.rowcount
                if purged:
                    self._pending.add(collection)

        await self._audit.log_records_purged(collection.value, purged)
        return purged

    async def count(self, collection: Union[Collection, str], *, include_deleted: bool = True) -> int:
        collection = self._resolve(collection)
        where = "" if include_deleted else f" WHERE {_NOT_DELETED}"
        async with self._guard():
            try:
                (total,) = self._conn.execute(
                    f"SELECT COUNT(*) FROM {collection.value}{where}"
                ).fetchone()
            except sqlite3.Error as e:
                raise StorageIOError(f"Failed to count {collection.value}: {e}") from e
        return total

    def subscribe(self, collection: Union[Collection, str], listener: ChangeListener) -> Subscription:
        return self._notifier.subscribe(self._resolve(collection), listener)

    async def live_query(
        self,
        collection: Union[Collection, str],
        *,
        predicate: Optional[RecordPredicate] = None,
        equals: Optional[Mapping[str, Any]] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        include_deleted: bool = True,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> LiveQuery:
        """
        Build a query whose result refreshes after every committed write
        to its collection.

        The first run and the subscription happen under the guard, so the
        initial result never includes another task's uncommitted rows and
        no commit can slip in between the two.
        """
        collection = self._resolve(collection)
        run_query = partial(
            self._select,
            collection,
            predicate=predicate,
            equals=equals,
            date_from=date_from,
            date_to=date_to,
            include_deleted=include_deleted,
            order_by=order_by,
            descending=descending,
        )
        async with self._guard():
            return LiveQuery(collection, run_query, self._notifier)
