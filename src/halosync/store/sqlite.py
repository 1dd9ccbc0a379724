"""Record store backed by SQLite.

One ``records`` table holds every collection; each row keeps its fields as
a JSON document in ``data`` alongside the id and timestamps. Bulk creates
run in a single transaction, so a failed batch leaves nothing behind.

Supports context manager protocol for automatic cleanup:
    with SQLiteRecordStore(db_path) as store:
        ...
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
from pathlib import Path
from typing import Any, List, Mapping, Optional

from halosync.store.base import (
    BaseRecordStore,
    Record,
    RecordNotFoundError,
    RecordStoreError,
    new_record_id,
    strip_meta,
    utc_now_iso,
    validate_collection,
)


class SQLiteRecordStore(BaseRecordStore):
    """SQLite storage for local CRM records."""

    def __init__(self, db_path: Path):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database. Parent directories are created.

        Raises:
            TypeError: If db_path is None.
        """
        if db_path is None:
            raise TypeError("SQLiteRecordStore requires explicit db_path.")
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._closed = False
        self._init_tables()

    def __enter__(self) -> "SQLiteRecordStore":
        """Enter context manager."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit context manager."""
        self.close()

    def close(self) -> None:
        """Mark the store closed; connections are per-call."""
        self._closed = True

    def _connect(self) -> sqlite3.Connection:
        if self._closed:
            raise RecordStoreError(f"Store is closed: {self.db_path}")
        return sqlite3.connect(self.db_path)

    def _init_tables(self) -> None:
        """Initialize the records table."""
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS records (
                    id TEXT PRIMARY KEY,
                    collection TEXT NOT NULL,
                    data TEXT NOT NULL DEFAULT '{}',
                    created_date TEXT NOT NULL,
                    updated_date TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_records_collection
                ON records(collection)
                """
            )
            # Lookups by external_id are the re-run join key
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_records_external_id
                ON records(collection, json_extract(data, '$.external_id'))
                """
            )
            conn.commit()

    @staticmethod
    def _row_to_record(row: tuple) -> Record:
        record_id, data, created_date, updated_date = row
        return {
            "id": record_id,
            **json.loads(data),
            "created_date": created_date,
            "updated_date": updated_date,
        }

    def _list(self, collection: str) -> List[Record]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id, data, created_date, updated_date FROM records
                WHERE collection = ? ORDER BY created_date, rowid
                """,
                (collection,),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def _get(self, collection: str, record_id: str) -> Optional[Record]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT id, data, created_date, updated_date FROM records
                WHERE collection = ? AND id = ?
                """,
                (collection, record_id),
            ).fetchone()
        return self._row_to_record(row) if row else None

    def _insert_many(self, collection: str, fields_list: List[Mapping[str, Any]]) -> List[Record]:
        now = utc_now_iso()
        records = []
        for fields in fields_list:
            data = strip_meta(fields)
            records.append({"id": new_record_id(), **data, "created_date": now, "updated_date": now})

        try:
            with self._connect() as conn:
                conn.executemany(
                    """
                    INSERT INTO records (id, collection, data, created_date, updated_date)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    [
                        (r["id"], collection, json.dumps(strip_meta(r)), now, now)
                        for r in records
                    ],
                )
                conn.commit()
        except (sqlite3.Error, TypeError, ValueError) as e:
            raise RecordStoreError(f"Failed to insert into {collection}: {e}") from e
        return records

    def _update(self, collection: str, record_id: str, fields: Mapping[str, Any]) -> Record:
        existing = self._get(collection, record_id)
        if existing is None:
            raise RecordNotFoundError(collection, record_id)

        merged = {**strip_meta(existing), **strip_meta(fields)}
        now = utc_now_iso()
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    UPDATE records SET data = ?, updated_date = ?
                    WHERE collection = ? AND id = ?
                    """,
                    (json.dumps(merged), now, collection, record_id),
                )
                conn.commit()
        except (sqlite3.Error, TypeError, ValueError) as e:
            raise RecordStoreError(f"Failed to update {collection} {record_id}: {e}") from e

        return {"id": record_id, **merged, "created_date": existing["created_date"], "updated_date": now}

    # SQLite work runs off the event loop so a group of concurrent writes
    # does not serialize on it.

    async def list(self, collection: str) -> List[Record]:
        validate_collection(collection)
        return await asyncio.to_thread(self._list, collection)

    async def get(self, collection: str, record_id: str) -> Optional[Record]:
        validate_collection(collection)
        return await asyncio.to_thread(self._get, collection, record_id)

    async def bulk_create(self, collection: str, fields_list: List[Mapping[str, Any]]) -> List[Record]:
        validate_collection(collection)
        if not fields_list:
            return []
        return await asyncio.to_thread(self._insert_many, collection, list(fields_list))

    async def create(self, collection: str, fields: Mapping[str, Any]) -> Record:
        return (await self.bulk_create(collection, [fields]))[0]

    async def update(self, collection: str, record_id: str, fields: Mapping[str, Any]) -> Record:
        validate_collection(collection)
        return await asyncio.to_thread(self._update, collection, record_id, fields)
