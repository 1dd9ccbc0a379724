"""HaloPSA -> local CRM reconciliation.

Key components:
- fields: Field derivation with mapping and fallback chains
- matcher: Identity matching (external id, then email, then name)
- engine: ReconciliationEngine running the phased sync
- report: RunReporter shaping results and errors into responses
- preview: Read-only mapping preview
"""

from .engine import ReconciliationEngine, SyncContext, WorkPlan, load_settings
from .fields import (
    derive_contact_fields,
    derive_organization_fields,
    derive_site_fields,
    first_non_empty,
    get_field,
)
from .matcher import IdentityMatcher, LocalIndex, MatchResult, MatchStrategy
from .models import (
    ConnectionCheckResult,
    EntityTally,
    FieldMapping,
    LocalCustomer,
    LocalSite,
    ParentRef,
    RemoteContact,
    RemoteOrganization,
    RemoteSite,
    SyncOptions,
    SyncSummary,
    WriteFailure,
)
from .preview import preview_mapping
from .report import RunReporter

__all__ = [
    # Engine
    "ReconciliationEngine",
    "SyncContext",
    "WorkPlan",
    "load_settings",
    # Fields
    "get_field",
    "first_non_empty",
    "derive_organization_fields",
    "derive_contact_fields",
    "derive_site_fields",
    # Matching
    "LocalIndex",
    "IdentityMatcher",
    "MatchResult",
    "MatchStrategy",
    # Models
    "RemoteOrganization",
    "RemoteContact",
    "RemoteSite",
    "LocalCustomer",
    "LocalSite",
    "ParentRef",
    "FieldMapping",
    "SyncOptions",
    "EntityTally",
    "WriteFailure",
    "SyncSummary",
    "ConnectionCheckResult",
    # Reporting
    "RunReporter",
    "preview_mapping",
]
