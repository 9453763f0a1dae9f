"""
Shared fixtures.

Stores are in-memory SQLite databases with a controllable clock, so
updatedAt stamping is deterministic.
"""

import datetime

import pytest

from money_manager.config import BackupSettings, StoreSettings
from money_manager.models import Expense, Income, Saving, Voucher
from money_manager.services.backup import BackupService
from money_manager.services.storage import SQLiteRecordStore


class FakeClock:
    """Epoch-millis clock that only moves when told to."""

    def __init__(self, start: int = 1_714_521_600_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, millis: int = 1000) -> None:
        self.now += millis


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store_settings():
    return StoreSettings(path=":memory:", lock_retry_attempts=1)


@pytest.fixture
def backup_settings():
    # Tiny chunks so attachment encoding crosses chunk boundaries
    return BackupSettings(attachment_chunk_size=6)


@pytest.fixture
def make_store(clock, store_settings):
    """Factory for extra stores; all are closed after the test."""
    stores = []

    def factory(path: str = ":memory:", **kwargs) -> SQLiteRecordStore:
        kwargs.setdefault("settings", store_settings)
        kwargs.setdefault("clock", clock)
        store = SQLiteRecordStore(path, **kwargs)
        stores.append(store)
        return store

    yield factory

    for store in stores:
        store.close()


@pytest.fixture
def store(make_store):
    return make_store()


@pytest.fixture
def backup(store, backup_settings, clock):
    return BackupService(store, settings=backup_settings, clock=clock)


@pytest.fixture
def make_backup(backup_settings, clock):
    def factory(target_store: SQLiteRecordStore) -> BackupService:
        return BackupService(target_store, settings=backup_settings, clock=clock)

    return factory


@pytest.fixture
def sample_income():
    return Income(
        id="i1",
        date=datetime.date(2024, 5, 1),
        amount=100000,
        source="Salary",
        updated_at=1000,
    )


@pytest.fixture
def sample_expense():
    return Expense(
        id="e1",
        date=datetime.date(2024, 5, 1),
        amount=2000,
        category="Food",
        updated_at=1000,
    )


@pytest.fixture
def sample_voucher():
    return Voucher(
        id="v1",
        date=datetime.date(2024, 5, 2),
        shop="Corner Market",
        total=4500,
        file_blob=bytes([0x00, 0xFF, 0x10]),
        file_name="receipt.png",
        file_type="image/png",
        updated_at=1000,
    )


@pytest.fixture
def sample_saving():
    return Saving(
        id="s1",
        date=datetime.date(2024, 5, 3),
        amount=30000,
        place="Bank",
        method="transfer",
        updated_at=1000,
    )
