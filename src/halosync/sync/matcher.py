"""Identity matching between remote records and local records.

A remote record resolves to an existing local record by, in order:

1. exact ``external_id``: authoritative, immune to rename/re-email drift
2. case-insensitive trimmed email, when the remote email is non-empty
3. case-insensitive trimmed name, when the remote name is non-empty

Anything else is new. Matches via email or name are "fallback" matches:
the local record predates the first sync and is about to gain its
``external_id`` link. Only unlinked records are fallback candidates, and a
local record claimed once in a run is never claimed again.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Hashable, Iterable, Optional, Set

from halosync.store.base import Record


class MatchStrategy(str, Enum):
    """How a local record was found."""

    EXTERNAL_ID = "external_id"
    EMAIL = "email"
    NAME = "name"


@dataclass
class MatchResult:
    """An existing local record that represents the remote one."""

    local_id: str
    via: MatchStrategy
    record: Record = field(default_factory=dict, repr=False)

    @property
    def is_fallback(self) -> bool:
        return self.via != MatchStrategy.EXTERNAL_ID


def normalize_key(value: Any) -> str:
    """Lower-case and trim a value for email/name comparison."""
    if value is None:
        return ""
    return str(value).strip().lower()


class LocalIndex:
    """Lookup maps over local records by external id, email and name.

    Args:
        records: Local records to index
        predicate: Optional scope filter (e.g. only HaloPSA contacts)
        name_scope_field: When set, name keys are qualified by this field's
            value, so equal names under different parents never collide.
    """

    def __init__(
        self,
        records: Iterable[Record],
        predicate: Optional[Callable[[Record], bool]] = None,
        name_scope_field: Optional[str] = None,
    ):
        self.name_scope_field = name_scope_field
        self.by_external_id: Dict[str, Record] = {}
        self.by_email: Dict[str, Record] = {}
        self.by_name: Dict[Hashable, Record] = {}

        for record in records:
            if predicate is not None and not predicate(record):
                continue
            # Later records win, matching list order of the store
            external_id = record.get("external_id")
            if external_id:
                self.by_external_id[str(external_id)] = record
                continue
            email = normalize_key(record.get("email"))
            if email:
                self.by_email[email] = record
            name = normalize_key(record.get("name"))
            if name:
                scope = record.get(name_scope_field) if name_scope_field else None
                self.by_name[self.name_key(name, scope)] = record

    def name_key(self, name: str, scope: Any) -> Hashable:
        if self.name_scope_field is None:
            return name
        return (normalize_key(scope), name)


class IdentityMatcher:
    """Resolves remote records against a LocalIndex.

    One matcher serves one classification pass. Every matched local id is
    remembered in ``claimed`` so two remote records never share a target.
    """

    def __init__(self, index: LocalIndex):
        self.index = index
        self.claimed: Set[str] = set()

    def _claim(self, record: Record, via: MatchStrategy) -> MatchResult:
        local_id = str(record["id"])
        self.claimed.add(local_id)
        return MatchResult(local_id=local_id, via=via, record=record)

    def _unclaimed(self, record: Optional[Record]) -> Optional[Record]:
        if record is None or str(record["id"]) in self.claimed:
            return None
        return record

    def match(
        self,
        external_id: str,
        email: str = "",
        name: str = "",
        scope: Any = None,
    ) -> Optional[MatchResult]:
        """Find the local record for a remote one, or None.

        Args:
            external_id: Prefixed remote id
            email: Derived remote email (may be empty)
            name: Derived remote display name (may be empty)
            scope: Value of the index's name scope field for this record
        """
        record = self.index.by_external_id.get(external_id) if external_id else None
        if record is not None:
            return self._claim(record, MatchStrategy.EXTERNAL_ID)

        email_key = normalize_key(email)
        if email_key:
            record = self._unclaimed(self.index.by_email.get(email_key))
            if record is not None:
                return self._claim(record, MatchStrategy.EMAIL)

        name_key = normalize_key(name)
        if name_key:
            record = self._unclaimed(self.index.by_name.get(self.index.name_key(name_key, scope)))
            if record is not None:
                return self._claim(record, MatchStrategy.NAME)

        return None
