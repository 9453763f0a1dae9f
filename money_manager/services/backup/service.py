"""
Backup Service

Exports the whole store to one portable JSON document and restores such
a document back into the store.

Document shape:
    {
        "schemaVersion": 2,
        "exportedAt": 1714521600000,
        "incomes": [...], "expenses": [...], "vouchers": [...], "savings": [...]
    }

Voucher entries never carry raw bytes: in full mode an attachment is
embedded as base64 under "_fileBase64", in small mode it is left out.

IMPORT GUARANTEES:
- The whole document is parsed, validated and decoded before the store
  is touched
- Clearing (replace mode) and every upsert run in one store transaction:
  a failure leaves the store exactly as it was
- Older documents (no incomes/savings, or the legacy meta header) are
  accepted and upgraded; missing collections count as empty
"""

import datetime
import json
import os
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Union

import structlog
from pydantic import ValidationError

from money_manager.audit import AuditLogger
from money_manager.config import BackupSettings, get_settings
from money_manager.models.backup import (
    ATTACHMENT_FIELD,
    FALLBACK_UPDATED_AT,
    REQUIRED_COLLECTIONS,
    ExportOptions,
    ImportPolicy,
    ImportSummary,
)
from money_manager.models.records import (
    RECORD_MODELS,
    Collection,
    Record,
    Voucher,
    current_millis,
)
from money_manager.services.backup.codec import (
    AttachmentDecodeError,
    InvalidDocumentError,
    decode_attachment,
    encode_attachment,
)
from money_manager.services.storage import RecordStoreInterface, StorageIOError


BackupInput = Union[Mapping[str, Any], str, bytes]


class BackupService:
    """
    Export/import between the record store and a backup document.

    The service only reads the store during export and only writes to it
    through bulk_put/clear inside one transaction during import.
    """

    def __init__(
        self,
        store: RecordStoreInterface,
        settings: Optional[BackupSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self._store = store
        self._settings = settings or get_settings().backup
        self._audit = audit_logger or AuditLogger()
        self._clock = clock or current_millis
        self._logger = structlog.get_logger(__name__)

    # -------------------------------------------------------------------------
    # Export
    # -------------------------------------------------------------------------

    def _voucher_entry(self, voucher: Voucher, include_attachments: bool) -> dict[str, Any]:
        entry = voucher.to_payload()
        if include_attachments and voucher.file_blob is not None:
            entry[ATTACHMENT_FIELD] = encode_attachment(
                voucher.file_blob,
                self._settings.attachment_chunk_size,
            )
        return entry

    async def export_backup(self, options: Optional[ExportOptions] = None) -> dict[str, Any]:
        """
        Snapshot every collection into a backup document.

        Soft-deleted rows are included so a restore keeps the tombstones.

        Args:
            options: Export options; defaults come from settings

        Returns:
            The backup document as a JSON-ready dict
        """
        if options is None:
            options = ExportOptions(include_attachments=self._settings.include_attachments)

        document: dict[str, Any] = {
            "schemaVersion": self._store.schema_version,
            "exportedAt": self._clock(),
        }

        try:
            async with self._store.snapshot():
                for collection in Collection:
                    if not self._store.has_collection(collection):
                        document[collection.value] = []
                        continue
                    records = await self._store.list_records(collection)
                    if collection is Collection.VOUCHERS:
                        document[collection.value] = [
                            self._voucher_entry(voucher, options.include_attachments)
                            for voucher in records
                        ]
                    else:
                        document[collection.value] = [record.to_payload() for record in records]
        except Exception as e:
            await self._audit.log_error(
                type(e).__name__,
                str(e),
                {"operation": "export_backup"},
            )
            raise

        counts = {collection.value: len(document[collection.value]) for collection in Collection}
        await self._audit.log_backup_exported(counts, options.include_attachments)
        return document

    @staticmethod
    def dumps_backup(document: Mapping[str, Any]) -> str:
        """Serialize a backup document to JSON text."""
        return json.dumps(document, ensure_ascii=False, indent=2)

    async def export_to_file(
        self,
        path: Union[str, Path],
        options: Optional[ExportOptions] = None,
    ) -> dict[str, Any]:
        """
        Export a backup and write it to `path`.

        The file is written next to its destination and moved into place,
        so an interrupted export never leaves a truncated backup behind.
        """
        document = await self.export_backup(options)
        path = Path(path)
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with temp_path.open("w", encoding="utf-8") as handle:
                handle.write(self.dumps_backup(document))
                handle.flush()
                os.fsync(handle.fileno())
            temp_path.replace(path)
        except OSError as e:
            raise StorageIOError(f"Unable to write backup to {path}: {e}") from e

        self._logger.info("backup_written", path=str(path))
        return document

    # -------------------------------------------------------------------------
    # Import
    # -------------------------------------------------------------------------

    def _load_document(self, document: BackupInput) -> Mapping[str, Any]:
        if isinstance(document, (str, bytes, bytearray)):
            try:
                document = json.loads(document)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise InvalidDocumentError(f"Backup is not valid JSON: {e}") from e
        if not isinstance(document, Mapping):
            raise InvalidDocumentError(
                f"Backup must be a JSON object, got {type(document).__name__}"
            )
        return document

    def _declared_version(self, document: Mapping[str, Any]) -> tuple[Optional[int], bool]:
        """Return (schema version, legacy flag) from whichever header the document has."""
        meta = document.get("meta")
        legacy = isinstance(meta, Mapping) and "schemaVersion" not in document
        version = document.get("schemaVersion", document.get("version"))
        if isinstance(version, bool) or not isinstance(version, int):
            version = None
        return version, legacy

    def _document_stamp(self, document: Mapping[str, Any]) -> int:
        """
        updatedAt for rows that carry none.

        Derived from the document alone (its export time, from either
        header) so importing the same document twice writes the same rows.
        """
        meta = document.get("meta")
        exported_at = document.get("exportedAt")
        if exported_at is None and isinstance(meta, Mapping):
            exported_at = meta.get("exportedAt")

        if isinstance(exported_at, bool):
            return FALLBACK_UPDATED_AT
        if isinstance(exported_at, int) and exported_at > 0:
            return exported_at
        if isinstance(exported_at, str):
            try:
                moment = datetime.datetime.fromisoformat(exported_at.replace("Z", "+00:00"))
            except ValueError:
                return FALLBACK_UPDATED_AT
            if moment.tzinfo is None:
                moment = moment.replace(tzinfo=datetime.timezone.utc)
            millis = int(moment.timestamp() * 1000)
            if millis > 0:
                return millis
        return FALLBACK_UPDATED_AT

    def _parse_rows(
        self,
        collection: Collection,
        rows: Any,
        stamp: int,
    ) -> list[Record]:
        if not isinstance(rows, list):
            raise InvalidDocumentError(
                f"'{collection.value}' must be an array, got {type(rows).__name__}"
            )

        model = RECORD_MODELS[collection]
        records = []
        for index, row in enumerate(rows):
            if not isinstance(row, Mapping):
                raise InvalidDocumentError(
                    f"{collection.value}[{index}] must be an object, got {type(row).__name__}"
                )
            payload = dict(row)
            encoded = payload.pop(ATTACHMENT_FIELD, None)
            payload.pop("fileBlob", None)

            if collection is Collection.VOUCHERS and encoded is not None:
                try:
                    payload["fileBlob"] = decode_attachment(
                        encoded,
                        self._settings.attachment_chunk_size,
                    )
                except AttachmentDecodeError as e:
                    raise AttachmentDecodeError(
                        f"{collection.value}[{index}] ({payload.get('id', '?')}): {e}",
                        record_id=str(payload.get("id", "")),
                    ) from e
                if not payload.get("fileType"):
                    payload["fileType"] = self._settings.default_mime_type

            try:
                record = model.model_validate(payload)
            except ValidationError as e:
                raise InvalidDocumentError(
                    f"{collection.value}[{index}] is not a valid record: {e}"
                ) from e
            if not record.updated_at:
                record = record.model_copy(update={"updated_at": stamp})
            records.append(record)
        return records

    def _parse_document(
        self,
        document: BackupInput,
        policy: ImportPolicy,
    ) -> tuple[dict[Collection, list[Record]], ImportSummary]:
        """
        Validate a backup document and decode its rows.

        Raises:
            InvalidDocumentError: If the shape or any row is invalid
            AttachmentDecodeError: If an attachment fails to decode
        """
        document = self._load_document(document)

        for collection in REQUIRED_COLLECTIONS:
            if collection.value not in document:
                raise InvalidDocumentError(
                    f"Backup is missing the '{collection.value}' array"
                )

        version, legacy = self._declared_version(document)
        stamp = self._document_stamp(document)
        parsed = {
            collection: self._parse_rows(collection, document.get(collection.value, []), stamp)
            for collection in Collection
        }
        summary = ImportSummary(
            policy=policy,
            schema_version=version,
            legacy_format=legacy,
            counts={collection: len(rows) for collection, rows in parsed.items()},
            attachments_restored=sum(
                1 for voucher in parsed[Collection.VOUCHERS] if voucher.file_blob is not None
            ),
        )
        return parsed, summary

    async def import_backup(
        self,
        document: BackupInput,
        policy: Union[ImportPolicy, str] = ImportPolicy.MERGE,
    ) -> ImportSummary:
        """
        Restore a backup document into the store.

        Args:
            document: Backup as a dict, JSON text or JSON bytes
            policy: MERGE (upsert by id) or REPLACE (clear everything first)

        Returns:
            Summary of what was written

        Raises:
            InvalidDocumentError: If the document is malformed
            AttachmentDecodeError: If an attachment fails to decode
            StorageError: If the store write fails (store is left unchanged)
        """
        policy = ImportPolicy(policy)
        try:
            parsed, summary = self._parse_document(document, policy)

            async with self._store.transaction():
                if policy is ImportPolicy.REPLACE:
                    for collection in Collection:
                        if self._store.has_collection(collection):
                            await self._store.clear(collection)
                for collection, records in parsed.items():
                    if records:
                        await self._store.bulk_put(collection, records)
        except Exception as e:
            await self._audit.log_backup_import_failed(policy.value, e)
            raise

        await self._audit.log_backup_imported(
            policy.value,
            {collection.value: count for collection, count in summary.counts.items()},
            summary.legacy_format,
        )
        return summary

    async def import_from_file(
        self,
        path: Union[str, Path],
        policy: Union[ImportPolicy, str] = ImportPolicy.MERGE,
    ) -> ImportSummary:
        """Read a backup file and import it."""
        try:
            raw = Path(path).read_bytes()
        except OSError as e:
            raise StorageIOError(f"Unable to read backup from {path}: {e}") from e

        self._logger.info("backup_read", path=str(path), size_bytes=len(raw))
        return await self.import_backup(raw, policy)
