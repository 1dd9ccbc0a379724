"""Connector layer for the remote directory (HaloPSA).

Key components:
- AuthStrategy: Authentication abstraction (ClientCredentials, OAuthTokenAuth)
- RequestPolicy: Timeouts and retries
- ConnectorError hierarchy: ConfigurationError, NetworkError, AuthenticationError, RemoteApiError
- AsyncHTTPClient: httpx wrapper with policy enforcement
- HaloPSAClient: Token exchange plus organization/contact/site reads
- StaticDirectoryClient: Offline client with canned payloads
"""

from .base import (
    DEFAULT_POLICY,
    AuthStrategy,
    AuthType,
    AuthenticationError,
    ClientCredentials,
    ConfigurationError,
    ConnectorError,
    DirectoryClient,
    NetworkError,
    NoAuth,
    OAuthTokenAuth,
    RemoteApiError,
    RequestPolicy,
    TimeoutError,
)
from .dummy import StaticDirectoryClient
from .halopsa import (
    HaloEndpoints,
    HaloPSAClient,
    filter_excluded,
    normalize_base_url,
    parse_excluded_ids,
    resolve_endpoints,
)
from .http_client import AsyncHTTPClient, HTTPResponse

__all__ = [
    # Protocol
    "DirectoryClient",
    # Auth
    "AuthType",
    "AuthStrategy",
    "NoAuth",
    "ClientCredentials",
    "OAuthTokenAuth",
    # Policy
    "RequestPolicy",
    "DEFAULT_POLICY",
    # Errors
    "ConnectorError",
    "ConfigurationError",
    "NetworkError",
    "TimeoutError",
    "AuthenticationError",
    "RemoteApiError",
    # HTTP
    "AsyncHTTPClient",
    "HTTPResponse",
    # HaloPSA
    "HaloEndpoints",
    "HaloPSAClient",
    "resolve_endpoints",
    "normalize_base_url",
    "parse_excluded_ids",
    "filter_excluded",
    # Offline
    "StaticDirectoryClient",
]
