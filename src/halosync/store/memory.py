"""In-memory record store.

Used by tests and by dry runs that must not touch the SQLite file.
Records are deep-copied in and out so callers never alias stored state.
"""

import copy
from typing import Any, Dict, List, Mapping, Optional

from halosync.store.base import (
    BaseRecordStore,
    Record,
    RecordNotFoundError,
    new_record_id,
    strip_meta,
    utc_now_iso,
)


class InMemoryRecordStore(BaseRecordStore):
    """Record store holding every collection in a dict of dicts."""

    def __init__(self, seed: Optional[Dict[str, List[Mapping[str, Any]]]] = None):
        """Initialize the store.

        Args:
            seed: Optional mapping of collection name to records. Records
                without an ``id`` get one generated.
        """
        self._collections: Dict[str, Dict[str, Record]] = {}
        for collection, records in (seed or {}).items():
            for record in records:
                stored = copy.deepcopy(dict(record))
                stored.setdefault("id", new_record_id())
                now = utc_now_iso()
                stored.setdefault("created_date", now)
                stored.setdefault("updated_date", now)
                self._collections.setdefault(collection, {})[stored["id"]] = stored

    def _bucket(self, collection: str) -> Dict[str, Record]:
        return self._collections.setdefault(collection, {})

    def _list(self, collection: str) -> List[Record]:
        return [copy.deepcopy(r) for r in self._bucket(collection).values()]

    def _get(self, collection: str, record_id: str) -> Optional[Record]:
        record = self._bucket(collection).get(record_id)
        return copy.deepcopy(record) if record is not None else None

    def _insert_many(self, collection: str, fields_list: List[Mapping[str, Any]]) -> List[Record]:
        bucket = self._bucket(collection)
        created = []
        for fields in fields_list:
            now = utc_now_iso()
            record = {"id": new_record_id(), **copy.deepcopy(strip_meta(fields))}
            record["created_date"] = now
            record["updated_date"] = now
            bucket[record["id"]] = record
            created.append(copy.deepcopy(record))
        return created

    def _update(self, collection: str, record_id: str, fields: Mapping[str, Any]) -> Record:
        bucket = self._bucket(collection)
        if record_id not in bucket:
            raise RecordNotFoundError(collection, record_id)
        record = bucket[record_id]
        record.update(copy.deepcopy(strip_meta(fields)))
        record["updated_date"] = utc_now_iso()
        return copy.deepcopy(record)
