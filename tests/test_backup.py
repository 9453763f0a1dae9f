"""Tests for backup export and import."""

import datetime
import json

import pytest
import pytest_asyncio

from money_manager.models import (
    FALLBACK_UPDATED_AT,
    Collection,
    Expense,
    ExportOptions,
    ImportPolicy,
    Income,
)
from money_manager.services.backup import AttachmentDecodeError, InvalidDocumentError
from money_manager.services.storage import StorageIOError, UnknownCollectionError


@pytest_asyncio.fixture
async def populated(store, sample_income, sample_expense, sample_voucher, sample_saving):
    for record in (sample_income, sample_expense, sample_voucher, sample_saving):
        await store.create_record(record)
    return store


def without_timestamp(document):
    return {key: value for key, value in document.items() if key != "exportedAt"}


class TestExport:
    """Tests for BackupService.export_backup()."""

    @pytest.mark.asyncio
    async def test_document_shape(self, backup, populated, clock):
        document = await backup.export_backup()
        assert document["schemaVersion"] == 2
        assert document["exportedAt"] == clock.now
        for collection in Collection:
            assert len(document[collection.value]) == 1
        assert document["expenses"][0] == {
            "id": "e1",
            "date": "2024-05-01",
            "updatedAt": 1000,
            "amount": 2000,
            "category": "Food",
            "type": "other",
        }

    @pytest.mark.asyncio
    async def test_full_backup_embeds_base64(self, backup, populated):
        document = await backup.export_backup(ExportOptions(include_attachments=True))
        voucher = document["vouchers"][0]
        assert voucher["_fileBase64"] == "AP8Q"
        assert "fileBlob" not in voucher
        json.dumps(document)

    @pytest.mark.asyncio
    async def test_small_backup_drops_attachment_only(self, backup, populated):
        document = await backup.export_backup(ExportOptions(include_attachments=False))
        voucher = document["vouchers"][0]
        assert "_fileBase64" not in voucher
        assert "fileBlob" not in voucher
        assert voucher["fileName"] == "receipt.png"
        assert voucher["fileType"] == "image/png"

    @pytest.mark.asyncio
    async def test_tombstones_are_exported(self, backup, populated):
        await populated.soft_delete(Collection.INCOMES, "i1")
        document = await backup.export_backup()
        assert document["incomes"][0]["deleted"] is True

    @pytest.mark.asyncio
    async def test_export_does_not_modify_store(self, backup, populated):
        before = await populated.list_records(Collection.VOUCHERS)
        await backup.export_backup()
        after = await populated.list_records(Collection.VOUCHERS)
        assert after == before
        assert after[0].file_blob == bytes([0x00, 0xFF, 0x10])

    @pytest.mark.asyncio
    async def test_v1_store_exports_empty_new_collections(self, make_store, make_backup, sample_expense):
        old = make_store(schema_version=1)
        await old.create_record(sample_expense)
        document = await make_backup(old).export_backup()
        assert document["schemaVersion"] == 1
        assert document["incomes"] == []
        assert document["savings"] == []
        assert len(document["expenses"]) == 1


class TestImportMerge:
    """Tests for merge-mode import."""

    @pytest.mark.asyncio
    async def test_merge_into_empty_store(self, backup, store):
        document = {
            "schemaVersion": 2,
            "exportedAt": 0,
            "incomes": [],
            "expenses": [{
                "id": "e1",
                "date": "2024-05-01",
                "amount": 2000,
                "category": "Food",
                "type": "other",
                "updatedAt": 1000,
            }],
            "vouchers": [],
            "savings": [],
        }
        summary = await backup.import_backup(document, ImportPolicy.MERGE)

        expenses = await store.list_records(Collection.EXPENSES)
        assert len(expenses) == 1
        assert expenses[0].id == "e1"
        assert expenses[0].amount == 2000
        assert expenses[0].updated_at == 1000
        assert summary.counts[Collection.EXPENSES] == 1
        assert summary.total_records == 1

    @pytest.mark.asyncio
    async def test_full_round_trip_restores_attachment_bytes(self, backup, populated, make_store, make_backup):
        document = await backup.export_backup(ExportOptions(include_attachments=True))

        fresh = make_store()
        summary = await make_backup(fresh).import_backup(document, "merge")

        voucher = await fresh.get_record(Collection.VOUCHERS, "v1")
        assert voucher.file_blob == bytes([0x00, 0xFF, 0x10])
        assert voucher.file_name == "receipt.png"
        assert summary.attachments_restored == 1
        for collection in Collection:
            assert await fresh.list_records(collection) == await populated.list_records(collection)

    @pytest.mark.asyncio
    async def test_merge_only_touches_listed_rows(self, backup, populated, sample_expense):
        document = {
            "expenses": [],
            "vouchers": [],
            "incomes": [{
                "id": "i1",
                "date": "2024-05-01",
                "amount": 120000,
                "source": "Salary",
                "updatedAt": 2000,
            }],
        }
        await backup.import_backup(document, ImportPolicy.MERGE)

        income = await populated.get_record(Collection.INCOMES, "i1")
        assert income.amount == 120000
        assert income.updated_at == 2000
        assert await populated.get_record(Collection.EXPENSES, "e1") == sample_expense
        assert await populated.count(Collection.VOUCHERS) == 1

    @pytest.mark.asyncio
    async def test_merge_is_idempotent(self, backup, populated, make_store, make_backup):
        document = await backup.export_backup()

        target = make_store()
        target_backup = make_backup(target)
        await target_backup.import_backup(document, ImportPolicy.MERGE)
        once = await target_backup.export_backup()
        await target_backup.import_backup(document, ImportPolicy.MERGE)
        twice = await target_backup.export_backup()

        assert without_timestamp(once) == without_timestamp(twice)
        assert without_timestamp(once) == without_timestamp(document)

    @pytest.mark.asyncio
    async def test_accepts_json_text(self, backup, populated, make_store, make_backup):
        text = backup.dumps_backup(await backup.export_backup())
        target = make_store()
        summary = await make_backup(target).import_backup(text)
        assert summary.total_records == 4
        assert await target.count(Collection.SAVINGS) == 1

    @pytest.mark.asyncio
    async def test_missing_file_type_gets_default(self, backup, store, backup_settings):
        document = {
            "expenses": [],
            "vouchers": [{"id": "v9", "date": "2024-05-02", "_fileBase64": "AP8Q"}],
        }
        await backup.import_backup(document)
        voucher = await store.get_record(Collection.VOUCHERS, "v9")
        assert voucher.file_blob == bytes([0x00, 0xFF, 0x10])
        assert voucher.file_type == backup_settings.default_mime_type


class TestImportReplace:
    """Tests for replace-mode import."""

    @pytest.mark.asyncio
    async def test_replace_discards_unlisted_rows(self, backup, populated):
        document = {
            "schemaVersion": 2,
            "incomes": [],
            "expenses": [{"id": "e2", "date": "2024-06-01", "amount": 10, "category": "Misc",
                          "updatedAt": 5}],
            "vouchers": [],
            "savings": [],
        }
        summary = await backup.import_backup(document, ImportPolicy.REPLACE)

        assert summary.policy is ImportPolicy.REPLACE
        assert [record.id for record in await populated.list_records(Collection.EXPENSES)] == ["e2"]
        for collection in (Collection.INCOMES, Collection.VOUCHERS, Collection.SAVINGS):
            assert await populated.count(collection) == 0

    @pytest.mark.asyncio
    async def test_failure_mid_import_leaves_store_unchanged(self, backup, populated, monkeypatch):
        document = await backup.export_backup()
        document["incomes"] = []
        original_bulk_put = populated.bulk_put

        async def failing_bulk_put(collection, rows):
            if collection is Collection.VOUCHERS:
                raise RuntimeError("disk full")
            return await original_bulk_put(collection, rows)

        monkeypatch.setattr(populated, "bulk_put", failing_bulk_put)

        with pytest.raises(RuntimeError):
            await backup.import_backup(document, ImportPolicy.REPLACE)

        for collection in Collection:
            assert await populated.count(collection) == 1
        voucher = await populated.get_record(Collection.VOUCHERS, "v1")
        assert voucher.file_blob == bytes([0x00, 0xFF, 0x10])


class TestImportValidation:
    """Tests for documents that must be rejected or upgraded."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("document", [
        "not json",
        "[1, 2]",
        {"vouchers": []},
        {"expenses": []},
        {"expenses": {}, "vouchers": []},
        {"expenses": ["e1"], "vouchers": []},
        {"expenses": [{"id": "e1", "date": "2024-05-01", "amount": -5, "category": "x"}],
         "vouchers": []},
        {"expenses": [], "vouchers": [], "incomes": [{"id": "i1", "date": "yesterday",
                                                       "amount": 1, "source": "x"}]},
    ])
    async def test_rejected_documents(self, backup, populated, document):
        with pytest.raises(InvalidDocumentError):
            await backup.import_backup(document, ImportPolicy.REPLACE)
        for collection in Collection:
            assert await populated.count(collection) == 1

    @pytest.mark.asyncio
    async def test_bad_attachment_rejects_whole_import(self, backup, populated):
        document = {
            "expenses": [{"id": "e5", "date": "2024-05-01", "amount": 1, "category": "x"}],
            "vouchers": [{"id": "v5", "date": "2024-05-02", "_fileBase64": "not base64!"}],
        }
        with pytest.raises(AttachmentDecodeError) as exc_info:
            await backup.import_backup(document)
        assert exc_info.value.record_id == "v5"
        assert await populated.get_record(Collection.EXPENSES, "e5") is None

    @pytest.mark.asyncio
    async def test_older_document_without_incomes_or_savings(self, backup, store):
        document = {
            "schemaVersion": 1,
            "expenses": [{"id": "e1", "date": "2024-05-01", "amount": 3, "category": "x"}],
            "vouchers": [],
        }
        summary = await backup.import_backup(document)
        assert summary.schema_version == 1
        assert summary.counts[Collection.INCOMES] == 0
        assert summary.counts[Collection.SAVINGS] == 0
        assert await store.count(Collection.EXPENSES) == 1

    @pytest.mark.asyncio
    async def test_legacy_meta_shape(self, backup, store):
        document = {
            "meta": {"version": 1, "exportedAt": "2023-12-01T10:00:00Z"},
            "expenses": [{"id": "e1", "date": "2023-11-30", "amount": 7, "category": "Food"}],
            "vouchers": [{"id": "v1", "date": "2023-11-30", "shop": "Kiosk"}],
        }
        summary = await backup.import_backup(document)

        assert summary.legacy_format is True
        exported = datetime.datetime(2023, 12, 1, 10, tzinfo=datetime.timezone.utc)
        expense = await store.get_record(Collection.EXPENSES, "e1")
        assert expense.updated_at == int(exported.timestamp() * 1000)
        voucher = await store.get_record(Collection.VOUCHERS, "v1")
        assert voucher.shop == "Kiosk"
        assert voucher.file_blob is None

    @pytest.mark.asyncio
    async def test_unstamped_rows_take_export_time(self, backup, store):
        await backup.import_backup({
            "exportedAt": 1_700_000_000_000,
            "expenses": [{"id": "e1", "date": "2024-05-01", "amount": 1, "category": "x"}],
            "vouchers": [],
        })
        expense = await store.get_record(Collection.EXPENSES, "e1")
        assert expense.updated_at == 1_700_000_000_000

    @pytest.mark.asyncio
    async def test_unstamped_rows_without_export_time_get_fixed_stamp(self, backup, store):
        await backup.import_backup({
            "expenses": [Expense(id="e1", date="2024-05-01", amount=1, category="x").to_payload()],
            "vouchers": [],
        })
        expense = await store.get_record(Collection.EXPENSES, "e1")
        assert expense.updated_at == FALLBACK_UPDATED_AT

    @pytest.mark.asyncio
    @pytest.mark.parametrize("meta", [
        {"version": 1, "exportedAt": "2023-12-01T10:00:00Z"},
        {"version": 1},
        {"version": 1, "exportedAt": "last tuesday"},
    ])
    async def test_unstamped_merge_is_idempotent_with_moving_clock(self, backup, store, clock, meta):
        document = {
            "meta": meta,
            "expenses": [{"id": "e1", "date": "2023-11-30", "amount": 7, "category": "Food"}],
            "vouchers": [{"id": "v1", "date": "2023-11-30", "shop": "Kiosk"}],
        }
        await backup.import_backup(document, ImportPolicy.MERGE)
        once = without_timestamp(await backup.export_backup())

        clock.advance(5000)
        await backup.import_backup(document, ImportPolicy.MERGE)
        twice = without_timestamp(await backup.export_backup())

        assert once == twice

    @pytest.mark.asyncio
    async def test_whitespace_in_text_fields_survives_round_trip(self, backup, store, make_store, make_backup):
        document = {
            "expenses": [{
                "id": " e1",
                "date": "2024-05-01",
                "amount": 5,
                "category": "Food ",
                "note": "  two spaces  ",
                "updatedAt": 1000,
            }],
            "vouchers": [{
                "id": "v1",
                "date": "2024-05-01",
                "fileName": " receipt.png",
                "updatedAt": 1000,
            }],
        }
        await backup.import_backup(document)
        assert await store.get_record(Collection.EXPENSES, "e1") is None

        exported = await backup.export_backup()
        expense = exported["expenses"][0]
        assert expense["id"] == " e1"
        assert expense["category"] == "Food "
        assert expense["note"] == "  two spaces  "
        assert exported["vouchers"][0]["fileName"] == " receipt.png"

        target = make_store()
        await make_backup(target).import_backup(exported)
        restored = await target.get_record(Collection.EXPENSES, " e1")
        assert restored.note == "  two spaces  "


class TestBackupFiles:
    """Tests for export_to_file() and import_from_file()."""

    @pytest.mark.asyncio
    async def test_file_round_trip(self, backup, populated, make_store, make_backup, tmp_path):
        path = tmp_path / "backups" / "money.json"
        await backup.export_to_file(path)
        assert path.exists()
        assert not path.with_suffix(".json.tmp").exists()

        target = make_store()
        summary = await make_backup(target).import_from_file(path, ImportPolicy.REPLACE)
        assert summary.total_records == 4
        voucher = await target.get_record(Collection.VOUCHERS, "v1")
        assert voucher.file_blob == bytes([0x00, 0xFF, 0x10])

    @pytest.mark.asyncio
    async def test_missing_file(self, backup, tmp_path):
        with pytest.raises(StorageIOError):
            await backup.import_from_file(tmp_path / "absent.json")

    @pytest.mark.asyncio
    async def test_import_into_v1_store_rejects_new_collections(self, make_store, make_backup):
        old = make_store(schema_version=1)
        document = {
            "expenses": [],
            "vouchers": [],
            "incomes": [Income(id="i1", date="2024-05-01", amount=1, source="x").to_payload()],
        }
        with pytest.raises(UnknownCollectionError):
            await make_backup(old).import_backup(document)
        assert await old.count(Collection.EXPENSES) == 0
