"""Core connector abstractions for the remote directory.

Defines the foundation shared by the HaloPSA client and its offline double:
- AuthStrategy: Authentication method abstraction (client credentials, bearer token)
- RequestPolicy: Timeouts, retries, user agent
- ConnectorError hierarchy: Typed exceptions, one per failure class of a sync run
- DirectoryClient Protocol: What the reconciliation engine needs from a remote

Error classes map onto how a run reacts to them:
- ConfigurationError: missing credentials/URLs (fatal, surfaced as HTTP 400)
- NetworkError: endpoint unreachable (fatal for auth/organizations, degrading otherwise)
- AuthenticationError: token exchange rejected (fatal, HTTP 401)
- RemoteApiError: non-2xx from a data endpoint (fatal for organizations, degrading otherwise)
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

# =============================================================================
# Authentication Strategies
# =============================================================================


class AuthType(str, Enum):
    """Type of authentication strategy."""

    NONE = "none"
    CLIENT_CREDENTIALS = "client_credentials"
    OAUTH_TOKEN = "oauth_token"


@dataclass
class AuthStrategy:
    """Base authentication strategy (data holder)."""

    auth_type: AuthType = AuthType.NONE

    def is_configured(self) -> bool:
        """Check if authentication is properly configured."""
        return True

    def get_headers(self) -> Dict[str, str]:
        """Get authentication headers for requests."""
        return {}


@dataclass
class NoAuth(AuthStrategy):
    """No authentication required (token endpoint calls)."""

    auth_type: AuthType = field(default=AuthType.NONE, init=False)


@dataclass
class ClientCredentials(AuthStrategy):
    """OAuth client-credentials grant parameters.

    The tenant discriminator is only required by some hosting modes
    and is sent only when set.
    """

    auth_type: AuthType = field(default=AuthType.CLIENT_CREDENTIALS, init=False)
    client_id: str = ""
    client_secret: str = ""
    tenant: Optional[str] = None
    scope: str = "all"

    def is_configured(self) -> bool:
        """Check if both client id and secret are set."""
        return bool(self.client_id and self.client_secret)

    def to_form(self) -> Dict[str, str]:
        """Form body for the token endpoint."""
        form = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "scope": self.scope,
        }
        if self.tenant:
            form["tenant"] = self.tenant
        return form


@dataclass
class OAuthTokenAuth(AuthStrategy):
    """Bearer token obtained from a token exchange."""

    auth_type: AuthType = field(default=AuthType.OAUTH_TOKEN, init=False)
    access_token: str = ""
    token_type: str = "Bearer"
    expires_at: Optional[datetime] = None

    def is_configured(self) -> bool:
        """Check if token is set."""
        return bool(self.access_token)

    def is_expired(self) -> bool:
        """Check if token is expired."""
        if self.expires_at is None:
            return False
        return datetime.now(timezone.utc) > self.expires_at

    def get_headers(self) -> Dict[str, str]:
        """Get authorization header."""
        if not self.access_token:
            return {}
        return {"Authorization": f"{self.token_type} {self.access_token}"}


# =============================================================================
# Request Policy
# =============================================================================


@dataclass
class RequestPolicy:
    """Policy for HTTP requests: timeouts, retries.

    The sync job issues each call once; max_retries stays 0 unless an
    operator opts in.
    """

    # Timeouts
    connect_timeout: float = 10.0  # seconds
    read_timeout: float = 60.0  # seconds
    total_timeout: float = 90.0  # seconds

    # Retries
    max_retries: int = 0
    retry_delay: float = 1.0  # base delay in seconds
    retry_backoff: float = 2.0  # exponential backoff multiplier
    retry_on_status: List[int] = field(default_factory=lambda: [429, 502, 503, 504])

    # Headers
    user_agent: str = "halosync/1.0"
    default_headers: Dict[str, str] = field(default_factory=dict)


DEFAULT_POLICY = RequestPolicy()


# =============================================================================
# Connector Error Hierarchy
# =============================================================================


class ConnectorError(Exception):
    """Base exception for connector errors."""

    def __init__(self, message: str, connector_name: str = "", details: Optional[Dict[str, Any]] = None):
        self.connector_name = connector_name
        self.details = details or {}
        super().__init__(message)


class ConfigurationError(ConnectorError):
    """Credentials or endpoint URLs are missing."""

    pass


class NetworkError(ConnectorError):
    """Failed to reach the service."""

    def __init__(self, message: str, connector_name: str = "", url: str = ""):
        super().__init__(message, connector_name, {"url": url})
        self.url = url


class TimeoutError(NetworkError):
    """Request timed out."""

    def __init__(
        self,
        message: str = "Request timed out",
        connector_name: str = "",
        url: str = "",
        timeout_seconds: Optional[float] = None,
    ):
        super().__init__(message, connector_name, url)
        self.details["timeout_seconds"] = timeout_seconds
        self.timeout_seconds = timeout_seconds


class AuthenticationError(ConnectorError):
    """Token exchange rejected, or it returned no usable token."""

    def __init__(
        self,
        message: str,
        connector_name: str = "",
        status_code: Optional[int] = None,
        body: str = "",
    ):
        super().__init__(message, connector_name, {"status_code": status_code, "body": body})
        self.status_code = status_code
        self.body = body


class RemoteApiError(ConnectorError):
    """A data endpoint answered with a non-2xx status."""

    def __init__(
        self,
        message: str,
        connector_name: str = "",
        status_code: Optional[int] = None,
        body: str = "",
        url: str = "",
    ):
        super().__init__(
            message, connector_name, {"status_code": status_code, "body": body, "url": url}
        )
        self.status_code = status_code
        self.body = body
        self.url = url


# =============================================================================
# Directory Client Protocol
# =============================================================================


@runtime_checkable
class DirectoryClient(Protocol):
    """Protocol for a remote directory the reconciliation engine reads from.

    Payloads are the raw JSON objects the remote returns; field derivation
    happens downstream.
    """

    @property
    def name(self) -> str:
        """Connector name (e.g., 'halopsa')."""
        ...

    async def authenticate(self) -> OAuthTokenAuth:
        """Exchange credentials for an access token."""
        ...

    async def fetch_organizations(self, token: OAuthTokenAuth) -> List[Dict[str, Any]]:
        """Fetch organizations (one bounded page)."""
        ...

    async def fetch_contacts(self, token: OAuthTokenAuth) -> List[Dict[str, Any]]:
        """Fetch contacts (one bounded page)."""
        ...

    async def fetch_sites(self, token: OAuthTokenAuth, count: Optional[int] = None) -> List[Dict[str, Any]]:
        """Fetch sites (one bounded page, or the first ``count``)."""
        ...

    async def fetch_site_detail(self, token: OAuthTokenAuth, site_id: Any) -> Optional[Dict[str, Any]]:
        """Fetch one site's detail record, or None when unavailable."""
        ...
