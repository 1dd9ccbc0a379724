"""Static directory client for offline runs and tests.

Implements the DirectoryClient protocol without any network calls.
StaticDirectoryClient can be configured to:
- Return canned organizations, contacts, sites and site details
- Raise specific errors per operation
- Track method calls for assertions
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .base import ConnectorError, OAuthTokenAuth


@dataclass
class StaticDirectoryClient:
    """Directory client backed by in-memory payloads.

    Payloads use the same raw shape the HaloPSA API returns, so field
    derivation sees exactly what it would in production.
    """

    organizations: List[Dict[str, Any]] = field(default_factory=list)
    contacts: List[Dict[str, Any]] = field(default_factory=list)
    sites: List[Dict[str, Any]] = field(default_factory=list)
    site_details: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    errors: Dict[str, ConnectorError] = field(default_factory=dict)
    access_token: str = "static-token"

    def __post_init__(self) -> None:
        self._call_log: List[Dict[str, Any]] = []

    @property
    def name(self) -> str:
        return "static"

    def set_error(self, operation: str, error: ConnectorError) -> None:
        """Make ``operation`` raise ``error`` on its next and later calls."""
        self.errors[operation] = error

    def clear_errors(self) -> None:
        """Clear all configured errors."""
        self.errors.clear()

    def _log_call(self, operation: str, args: Dict[str, Any]) -> None:
        """Log a method call, raising the configured error if any."""
        self._call_log.append({"operation": operation, "args": args})
        error = self.errors.get(operation)
        if error is not None:
            raise error

    def get_call_log(self) -> List[Dict[str, Any]]:
        """Get log of all method calls."""
        return self._call_log.copy()

    def was_called(self, operation: str) -> bool:
        """Check if an operation was called."""
        return any(call["operation"] == operation for call in self._call_log)

    def call_count(self, operation: str) -> int:
        """Count how many times an operation was called."""
        return sum(1 for call in self._call_log if call["operation"] == operation)

    async def authenticate(self) -> OAuthTokenAuth:
        self._log_call("authenticate", {})
        return OAuthTokenAuth(access_token=self.access_token)

    async def fetch_organizations(self, token: OAuthTokenAuth) -> List[Dict[str, Any]]:
        self._log_call("fetch_organizations", {})
        return [dict(org) for org in self.organizations]

    async def fetch_contacts(self, token: OAuthTokenAuth) -> List[Dict[str, Any]]:
        self._log_call("fetch_contacts", {})
        return [dict(contact) for contact in self.contacts]

    async def fetch_sites(self, token: OAuthTokenAuth, count: Optional[int] = None) -> List[Dict[str, Any]]:
        self._log_call("fetch_sites", {"count": count})
        sites = [dict(site) for site in self.sites]
        return sites[:count] if count is not None else sites

    async def fetch_site_detail(self, token: OAuthTokenAuth, site_id: Any) -> Optional[Dict[str, Any]]:
        try:
            self._log_call("fetch_site_detail", {"site_id": site_id})
        except ConnectorError:
            return None
        detail = self.site_details.get(str(site_id))
        return dict(detail) if detail is not None else None
