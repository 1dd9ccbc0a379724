"""Local record store for customers, contacts, sites and integration settings.

Two implementations share the async RecordStore interface:
- InMemoryRecordStore: tests and dry runs
- SQLiteRecordStore: persistent store, one JSON document per record
"""

from .base import (
    CUSTOMER,
    INTEGRATION_SETTINGS,
    SITE,
    VALID_COLLECTIONS,
    BaseRecordStore,
    Criteria,
    Record,
    RecordNotFoundError,
    RecordStore,
    RecordStoreError,
)
from .memory import InMemoryRecordStore
from .sqlite import SQLiteRecordStore

__all__ = [
    "CUSTOMER",
    "SITE",
    "INTEGRATION_SETTINGS",
    "VALID_COLLECTIONS",
    "Record",
    "Criteria",
    "RecordStore",
    "BaseRecordStore",
    "RecordStoreError",
    "RecordNotFoundError",
    "InMemoryRecordStore",
    "SQLiteRecordStore",
]
