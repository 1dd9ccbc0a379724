"""Sync domain models.

Remote records are read-only views over the raw JSON returned by HaloPSA;
the raw payload is kept so field derivation can walk dotted paths into it.
Local records are the field sets written to the record store.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from halosync.config import (
    CONTACT_ID_PREFIX,
    DEFAULT_CREATE_BATCH_SIZE,
    DEFAULT_UPDATE_GROUP_SIZE,
    ORGANIZATION_ID_PREFIX,
    SITE_ID_PREFIX,
    SOURCE_TAG,
)


def _id_str(value: Any) -> str:
    return "" if value is None else str(value)


# =============================================================================
# Remote records
# =============================================================================


class RemoteOrganization(BaseModel):
    """A HaloPSA client (organization)."""

    id: str = Field(..., description="Remote identifier (string form)")
    raw: Dict[str, Any] = Field(default_factory=dict, description="Raw API payload")

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> "RemoteOrganization":
        return cls(id=_id_str(raw.get("id")), raw=raw)

    @property
    def external_id(self) -> str:
        return f"{ORGANIZATION_ID_PREFIX}{self.id}"


class RemoteContact(BaseModel):
    """A HaloPSA user (contact) belonging to an organization."""

    id: str = Field(..., description="Remote identifier (string form)")
    client_id: str = Field("", description="Owning organization's remote id")
    raw: Dict[str, Any] = Field(default_factory=dict, description="Raw API payload")

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> "RemoteContact":
        return cls(id=_id_str(raw.get("id")), client_id=_id_str(raw.get("client_id")), raw=raw)

    @property
    def external_id(self) -> str:
        return f"{CONTACT_ID_PREFIX}{self.id}"


class RemoteSite(BaseModel):
    """A HaloPSA site (physical location) belonging to an organization."""

    id: str = Field(..., description="Remote identifier (string form)")
    client_id: str = Field("", description="Owning organization's remote id")
    raw: Dict[str, Any] = Field(default_factory=dict, description="Raw API payload")

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> "RemoteSite":
        return cls(id=_id_str(raw.get("id")), client_id=_id_str(raw.get("client_id")), raw=raw)

    @property
    def external_id(self) -> str:
        return f"{SITE_ID_PREFIX}{self.id}"


# =============================================================================
# Local records
# =============================================================================


class LocalCustomer(BaseModel):
    """Field set written to the Customer collection.

    Organizations carry ``is_company=True``; contacts carry ``is_company=False``
    plus ``company_id``/``company`` pointing at their parent and ``notes``.
    Contact-only fields stay None for organizations and are omitted on write.
    """

    name: str = Field(..., description="Display name")
    email: str = Field("", description="Email address")
    phone: str = Field("", description="Phone number")
    address: Optional[str] = Field(None, description="Street address")
    city: Optional[str] = Field(None, description="City")
    state: Optional[str] = Field(None, description="State / county / region")
    zip: Optional[str] = Field(None, description="Postal code")
    external_id: str = Field(..., description="Prefixed remote id")
    is_company: bool = Field(..., description="True for organizations")
    source: str = Field(SOURCE_TAG, description="Source tag")
    company_id: Optional[str] = Field(None, description="Parent customer id (contacts)")
    company: Optional[str] = Field(None, description="Parent customer name (contacts)")
    notes: Optional[str] = Field(None, description="Notes (contacts)")

    def to_fields(self) -> Dict[str, Any]:
        """Fields to write, omitting unset optional ones."""
        return self.model_dump(exclude_none=True)


class LocalSite(BaseModel):
    """Field set written to the Site collection."""

    name: str = Field(..., description="Site name")
    address: str = Field("", description="Street address")
    city: str = Field("", description="City")
    state: str = Field("", description="State / county / region")
    zip: str = Field("", description="Postal code")
    customer_id: str = Field(..., description="Owning customer's local id")
    external_id: str = Field(..., description="Prefixed remote id")
    notes: str = Field("", description="Notes")
    is_default: bool = Field(False, description="Default site for the customer")

    def to_fields(self) -> Dict[str, Any]:
        return self.model_dump()


class ParentRef(BaseModel):
    """Local identity of an organization written in the current run."""

    local_id: str
    local_name: str


# =============================================================================
# Run options
# =============================================================================


class FieldMapping(BaseModel):
    """Dotted-path overrides for organization fields.

    Each value is a path into the raw remote record (e.g. ``"address.line1"``).
    A None or empty path means "use the fallback chain only".
    """

    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = "name"
    email: Optional[str] = "email"
    phone: Optional[str] = "main_phone"
    address: Optional[str] = "address"
    city: Optional[str] = "city"
    state: Optional[str] = "county"
    zip: Optional[str] = "postcode"


class SyncOptions(BaseModel):
    """Per-run options."""

    test_only: bool = Field(False, description="Validate connectivity only, no writes")
    field_mapping: FieldMapping = Field(default_factory=FieldMapping)
    update_group_size: int = Field(DEFAULT_UPDATE_GROUP_SIZE, ge=1)
    create_batch_size: int = Field(DEFAULT_CREATE_BATCH_SIZE, ge=1)
    fetch_site_details: bool = Field(
        True, description="Fetch site detail when the listed site has no address"
    )


# =============================================================================
# Results
# =============================================================================


class EntityTally(BaseModel):
    """Per-entity write counters."""

    created: int = 0
    updated: int = 0
    matched: int = 0
    skipped: int = 0
    failed: int = 0


class WriteFailure(BaseModel):
    """One update or create batch that failed to persist."""

    entity: str
    operation: str
    remote_ids: List[str] = Field(default_factory=list)
    error: str


class SyncSummary(BaseModel):
    """Outcome of a full run."""

    organizations: EntityTally = Field(default_factory=EntityTally)
    contacts: EntityTally = Field(default_factory=EntityTally)
    sites: EntityTally = Field(default_factory=EntityTally)
    total: int = Field(0, description="Remote organizations considered")
    last_synced_at: Optional[str] = None
    failures: List[WriteFailure] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class ConnectionCheckResult(BaseModel):
    """Outcome of a test-mode run."""

    total: int
    sample_fields: List[str] = Field(default_factory=list)
    sample_organization: Optional[Dict[str, Any]] = None
    sample_site: Optional[Dict[str, Any]] = None
