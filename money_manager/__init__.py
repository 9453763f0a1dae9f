"""
Money Manager - Source Package

A single-user, offline-first personal finance tracker. Incomes, expenses,
vouchers and savings live in a local SQLite store and can be exported to
and restored from one portable JSON backup.

DESIGN PRINCIPLES:
1. Records are never hard-deleted by normal flows; deletion is a tombstone
2. Every write stamps a strictly increasing updatedAt
3. Bulk writes and imports are all-or-nothing
4. The schema only ever grows
5. Storage layer is swappable behind RecordStoreInterface
"""

__version__ = "0.2.0"
__author__ = "Money Manager Team"
