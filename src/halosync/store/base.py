"""Local record store interface.

The CRM's persistence platform is treated as a generic record store:
named collections of JSON-like records, each with a generated string ``id``
plus ``created_date``/``updated_date`` stamps. The reconciliation engine only
needs list/filter/get/create/bulk-create/update.

All operations are async so the engine can issue a group of writes
concurrently and await them together.
"""

import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Union, runtime_checkable

# Collections the sync engine touches
CUSTOMER = "Customer"
SITE = "Site"
INTEGRATION_SETTINGS = "IntegrationSettings"

VALID_COLLECTIONS = frozenset({CUSTOMER, SITE, INTEGRATION_SETTINGS})

Record = Dict[str, Any]
Criteria = Union[Mapping[str, Any], Callable[[Record], bool]]

# Stamped by the store, never taken from caller-supplied fields
_META_FIELDS = ("id", "created_date", "updated_date")


class RecordStoreError(Exception):
    """Base exception for record store errors."""

    pass


class RecordNotFoundError(RecordStoreError):
    """Raised when updating or reading a record id that does not exist."""

    def __init__(self, collection: str, record_id: str):
        self.collection = collection
        self.record_id = record_id
        super().__init__(f"{collection} record not found: {record_id}")


def validate_collection(collection: str) -> None:
    """Reject collection names outside the known set."""
    if collection not in VALID_COLLECTIONS:
        raise RecordStoreError(f"Invalid collection: {collection}")


def matches(record: Record, criteria: Optional[Criteria]) -> bool:
    """Check a record against field-equality criteria or a predicate."""
    if criteria is None:
        return True
    if callable(criteria):
        return bool(criteria(record))
    return all(record.get(key) == value for key, value in criteria.items())


def new_record_id() -> str:
    """Generate a record id."""
    return str(uuid.uuid4())


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601."""
    return datetime.now(timezone.utc).isoformat()


def strip_meta(fields: Mapping[str, Any]) -> Record:
    """Drop store-managed keys from caller-supplied fields."""
    return {k: v for k, v in fields.items() if k not in _META_FIELDS}


@runtime_checkable
class RecordStore(Protocol):
    """Protocol defining the record store interface."""

    async def list(self, collection: str) -> List[Record]:
        """List every record in a collection."""
        ...

    async def filter(self, collection: str, criteria: Criteria) -> List[Record]:
        """List records matching field-equality criteria or a predicate."""
        ...

    async def get(self, collection: str, record_id: str) -> Optional[Record]:
        """Fetch a record by id, or None."""
        ...

    async def create(self, collection: str, fields: Mapping[str, Any]) -> Record:
        """Create one record and return it with its id."""
        ...

    async def bulk_create(self, collection: str, fields_list: List[Mapping[str, Any]]) -> List[Record]:
        """Create several records atomically, returned in input order."""
        ...

    async def update(self, collection: str, record_id: str, fields: Mapping[str, Any]) -> Record:
        """Merge fields into an existing record and return it."""
        ...


class BaseRecordStore(ABC):
    """Abstract base class for record stores.

    Concrete stores implement the sync primitives; the async surface and
    collection validation live here.
    """

    @abstractmethod
    def _list(self, collection: str) -> List[Record]:
        pass

    @abstractmethod
    def _get(self, collection: str, record_id: str) -> Optional[Record]:
        pass

    @abstractmethod
    def _insert_many(self, collection: str, fields_list: List[Mapping[str, Any]]) -> List[Record]:
        pass

    @abstractmethod
    def _update(self, collection: str, record_id: str, fields: Mapping[str, Any]) -> Record:
        pass

    async def list(self, collection: str) -> List[Record]:
        validate_collection(collection)
        return self._list(collection)

    async def filter(self, collection: str, criteria: Criteria) -> List[Record]:
        validate_collection(collection)
        return [r for r in self._list(collection) if matches(r, criteria)]

    async def get(self, collection: str, record_id: str) -> Optional[Record]:
        validate_collection(collection)
        return self._get(collection, record_id)

    async def create(self, collection: str, fields: Mapping[str, Any]) -> Record:
        validate_collection(collection)
        return self._insert_many(collection, [fields])[0]

    async def bulk_create(self, collection: str, fields_list: List[Mapping[str, Any]]) -> List[Record]:
        validate_collection(collection)
        if not fields_list:
            return []
        return self._insert_many(collection, fields_list)

    async def update(self, collection: str, record_id: str, fields: Mapping[str, Any]) -> Record:
        validate_collection(collection)
        return self._update(collection, record_id, fields)
