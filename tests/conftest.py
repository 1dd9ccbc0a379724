"""Test configuration and fixtures."""

import logging
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Any, Dict, List, Mapping

import pytest

from halosync.connectors import StaticDirectoryClient
from halosync.store import InMemoryRecordStore, SQLiteRecordStore


def _close_loggers():
    """Close all loggers to release file handles (Windows compatibility)."""
    for logger_name in list(logging.Logger.manager.loggerDict):
        if logger_name.startswith("halosync."):
            logger = logging.getLogger(logger_name)
            for handler in logger.handlers[:]:
                handler.close()
                logger.removeHandler(handler)


class RecordingStore(InMemoryRecordStore):
    """In-memory store that records every write and can fail on demand.

    Attributes:
        writes: (operation, collection, payload) for each write call
        fail_update_ids: Local ids whose update raises
        fail_bulk_create_collections: Collections whose bulk_create raises
    """

    def __init__(self, seed=None):
        super().__init__(seed)
        self.writes: List[tuple] = []
        self.fail_update_ids: set = set()
        self.fail_bulk_create_collections: set = set()
        self.fail_settings_update = False

    async def create(self, collection: str, fields: Mapping[str, Any]) -> Dict[str, Any]:
        self.writes.append(("create", collection, dict(fields)))
        return await super().create(collection, fields)

    async def bulk_create(self, collection, fields_list):
        self.writes.append(("bulk_create", collection, [dict(f) for f in fields_list]))
        if collection in self.fail_bulk_create_collections:
            raise RuntimeError(f"bulk insert into {collection} rejected")
        return await super().bulk_create(collection, fields_list)

    async def update(self, collection, record_id, fields):
        self.writes.append(("update", collection, record_id, dict(fields)))
        if record_id in self.fail_update_ids:
            raise RuntimeError(f"update of {record_id} rejected")
        if self.fail_settings_update and collection == "IntegrationSettings":
            raise RuntimeError("settings record locked")
        return await super().update(collection, record_id, fields)

    def write_count(self, collection: str = None) -> int:
        return sum(1 for w in self.writes if collection is None or w[1] == collection)


@pytest.fixture
def memory_store() -> RecordingStore:
    """Provide an empty recording in-memory store."""
    return RecordingStore()


@pytest.fixture
def sqlite_store():
    """Provide a SQLite store in a temporary directory."""
    with TemporaryDirectory(ignore_cleanup_errors=True) as tmpdir:
        store = SQLiteRecordStore(Path(tmpdir) / "halosync_test.sqlite")
        yield store
        store.close()
        _close_loggers()


@pytest.fixture
def directory() -> StaticDirectoryClient:
    """Provide a static directory with two organizations, contacts and sites."""
    return StaticDirectoryClient(
        organizations=[
            {"id": 1, "name": "Acme", "email": "ops@acme.test", "main_phone": "555-0001", "county": "Kent"},
            {"id": 2, "client_name": "Globex", "main_email": "info@globex.test", "phonenumber": "555-0002"},
        ],
        contacts=[
            {"id": 10, "name": "Ann Admin", "emailaddress": "ann@acme.test", "client_id": 1},
            {"id": 11, "username": "bob", "phone": "555-1011", "client_id": 2, "notes": "VIP"},
            {"id": 12, "name": "Orphan Olly", "client_id": 99},
        ],
        sites=[
            {
                "id": 100,
                "name": "HQ",
                "client_id": 1,
                "is_default": True,
                "delivery_address": {"line1": "1 Road", "city": "Canterbury", "postcode": "CT1"},
            },
            {"id": 101, "name": "", "client_id": 2},
        ],
        site_details={
            "101": {
                "id": 101,
                "name": "",
                "client_id": 2,
                "invoice_address": {"line1": "9 Lane", "city": "Springfield", "state": "IL", "postcode": "62701"},
            }
        },
    )


@pytest.fixture
def halo_env(monkeypatch):
    """Set HaloPSA environment variables."""
    monkeypatch.setenv("HALOPSA_CLIENT_ID", "env-client")
    monkeypatch.setenv("HALOPSA_CLIENT_SECRET", "env-secret")
    monkeypatch.setenv("HALOPSA_AUTH_URL", "https://acme.halopsa.test/auth/")
    monkeypatch.setenv("HALOPSA_API_URL", "https://acme.halopsa.test/api")
    monkeypatch.delenv("HALOPSA_TENANT", raising=False)


@pytest.fixture
def seeded_store():
    """Factory for recording stores with seed records."""

    def _make(seed) -> RecordingStore:
        return RecordingStore(seed=seed)

    return _make
