"""
Versioned Schema Declaration

DESIGN DECISION: Each schema version is a declaration of which
collections exist and which fields are indexed. Moving up a version
only ever adds tables and indexes; rows are never rewritten. Fields
introduced later are filled in on read by the record model defaults.

Records are stored as JSON documents, so indexes are built on
json_extract() expressions and need no column migrations.
"""

import sqlite3
from dataclasses import dataclass
from typing import Optional

from money_manager.models.records import Collection
from money_manager.services.storage.interface import SchemaDowngradeError


@dataclass(frozen=True)
class SchemaVersion:
    """Collections and their indexed fields at one version."""

    version: int
    stores: dict[Collection, tuple[str, ...]]


SCHEMA_VERSIONS: tuple[SchemaVersion, ...] = (
    SchemaVersion(
        version=1,
        stores={
            Collection.EXPENSES: ("date", "category", "type", "updatedAt"),
            Collection.VOUCHERS: ("date", "updatedAt"),
        },
    ),
    SchemaVersion(
        version=2,
        stores={
            Collection.INCOMES: ("date", "source", "updatedAt", "deleted"),
            Collection.EXPENSES: ("date", "category", "type", "updatedAt", "deleted"),
            Collection.VOUCHERS: ("date", "updatedAt", "deleted"),
            Collection.SAVINGS: ("date", "method", "updatedAt", "deleted"),
        },
    ),
)

LATEST_SCHEMA_VERSION = SCHEMA_VERSIONS[-1].version

META_TABLE = "schema_meta"


def get_schema(version: int) -> SchemaVersion:
    """Look up a declared schema version."""
    for schema in SCHEMA_VERSIONS:
        if schema.version == version:
            return schema
    declared = [schema.version for schema in SCHEMA_VERSIONS]
    raise ValueError(f"Unknown schema version {version}; declared versions: {declared}")


def field_expression(field: str) -> str:
    """SQL expression reading a top-level field of the JSON payload."""
    return f"json_extract(data, '$.{field}')"


def index_name(collection: Collection, field: str) -> str:
    return f"idx_{collection.value}_{field}"


def read_stored_version(conn: sqlite3.Connection) -> Optional[int]:
    """Version recorded in the database, or None for a fresh file."""
    conn.execute(
        f"CREATE TABLE IF NOT EXISTS {META_TABLE} ("
        " key TEXT PRIMARY KEY,"
        " value TEXT NOT NULL"
        ")"
    )
    row = conn.execute(
        f"SELECT value FROM {META_TABLE} WHERE key = 'schema_version'"
    ).fetchone()
    return int(row[0]) if row else None


def apply_schema(conn: sqlite3.Connection, schema: SchemaVersion) -> None:
    """Create the tables and indexes one version declares, if missing."""
    for collection, fields in schema.stores.items():
        conn.execute(
            f"CREATE TABLE IF NOT EXISTS {collection.value} ("
            " id TEXT PRIMARY KEY,"
            " data TEXT NOT NULL,"
            " attachment BLOB"
            ")"
        )
        for field in fields:
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS {index_name(collection, field)}"
                f" ON {collection.value} ({field_expression(field)})"
            )


def migrate(conn: sqlite3.Connection, target_version: int) -> Optional[int]:
    """
    Bring the database up to `target_version`.

    Runs every declared step between the stored and the target version.
    The caller owns the transaction.

    Returns:
        The version found before migrating (None for a fresh file)

    Raises:
        SchemaDowngradeError: If the stored version is newer than the target
        ValueError: If the target version is not declared
    """
    get_schema(target_version)
    stored = read_stored_version(conn)

    if stored is not None and stored > target_version:
        raise SchemaDowngradeError(stored, target_version)
    if stored == target_version:
        return stored

    for schema in SCHEMA_VERSIONS:
        if (stored or 0) < schema.version <= target_version:
            apply_schema(conn, schema)

    conn.execute(
        f"INSERT INTO {META_TABLE} (key, value) VALUES ('schema_version', ?)"
        " ON CONFLICT(key) DO UPDATE SET value = excluded.value",
        (str(target_version),),
    )
    return stored
