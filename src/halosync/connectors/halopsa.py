"""HaloPSA remote directory client.

Authenticates with the client-credentials grant and reads the three
collections the reconciliation engine consumes:

- Client  -> organizations  (``GET /api/Client?count=500``)
- Users   -> contacts       (``GET /api/Users?count=1000``)
- Site    -> sites          (``GET /api/Site?count=1000``)

Each fetch is a single bounded page. The endpoints used expose no cursor,
so tenants above the caps sync an incomplete set.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set

import httpx

from halosync.config import (
    CONTACT_PAGE_SIZE,
    ORGANIZATION_PAGE_SIZE,
    SITE_PAGE_SIZE,
    HaloPSAEnv,
)

from .base import (
    DEFAULT_POLICY,
    AuthenticationError,
    ClientCredentials,
    ConfigurationError,
    ConnectorError,
    NoAuth,
    OAuthTokenAuth,
    RemoteApiError,
    RequestPolicy,
)
from .http_client import AsyncHTTPClient

logger = logging.getLogger(__name__)

CONNECTOR_NAME = "halopsa"

_TRAILING_SLASHES = re.compile(r"/+$")
_AUTH_SUFFIX = re.compile(r"/auth/?$")
_API_SUFFIX = re.compile(r"/api/?$")


def normalize_base_url(url: str) -> str:
    """Strip trailing slashes and a literal ``/auth`` or ``/api`` suffix.

    Operators paste either the bare host or the full endpoint root, so
    ``https://acme.halopsa.com/auth/`` and ``https://acme.halopsa.com``
    normalize to the same base.
    """
    url = _TRAILING_SLASHES.sub("", url.strip())
    url = _AUTH_SUFFIX.sub("", url)
    url = _API_SUFFIX.sub("", url)
    return _TRAILING_SLASHES.sub("", url)


def parse_excluded_ids(raw: Optional[str]) -> Set[str]:
    """Parse a comma-separated exclusion list into trimmed id strings."""
    if not raw:
        return set()
    return {part.strip() for part in str(raw).split(",") if part.strip()}


def filter_excluded(
    organizations: Iterable[Dict[str, Any]],
    excluded_ids: Iterable[str],
) -> List[Dict[str, Any]]:
    """Drop organizations whose id (string-compared) is excluded."""
    excluded = {str(i) for i in excluded_ids}
    if not excluded:
        return list(organizations)
    return [org for org in organizations if str(org.get("id")) not in excluded]


@dataclass
class HaloEndpoints:
    """Resolved credentials and endpoint URLs for one tenant."""

    credentials: ClientCredentials
    auth_url: str
    api_url: str

    @property
    def token_url(self) -> str:
        return f"{self.auth_url}/auth/token"

    @property
    def api_base_url(self) -> str:
        return f"{self.api_url}/api"


def resolve_endpoints(
    settings: Optional[Mapping[str, Any]] = None,
    env: Optional[HaloPSAEnv] = None,
) -> HaloEndpoints:
    """Resolve credentials and URLs from the settings record and environment.

    Client id, tenant and URLs come from the settings record first and the
    environment second. The client secret is environment-only.

    Raises:
        ConfigurationError: If client id/secret or either URL is missing
    """
    settings = settings or {}
    env = env or HaloPSAEnv()

    tenant = settings.get("halopsa_tenant") or env.tenant
    credentials = ClientCredentials(
        client_id=str(settings.get("halopsa_client_id") or env.client_id or ""),
        client_secret=env.client_secret or "",
        tenant=str(tenant) if tenant else None,
    )

    if not credentials.is_configured():
        if not credentials.client_secret:
            details = "The HALOPSA_CLIENT_SECRET environment variable is not set."
        else:
            details = "Set halopsa_client_id in the integration settings or HALOPSA_CLIENT_ID."
        raise ConfigurationError(
            "HaloPSA credentials not configured.",
            connector_name=CONNECTOR_NAME,
            details={"details": details},
        )

    auth_url = settings.get("halopsa_auth_url") or env.auth_url
    api_url = settings.get("halopsa_api_url") or env.api_url

    if not auth_url or not api_url:
        raise ConfigurationError(
            "HaloPSA URLs not configured.",
            connector_name=CONNECTOR_NAME,
            details={
                "details": "Configure the HaloPSA Authorisation Server URL "
                "and Resource Server URL in the integration settings."
            },
        )

    return HaloEndpoints(
        credentials=credentials,
        auth_url=normalize_base_url(str(auth_url)),
        api_url=normalize_base_url(str(api_url)),
    )


def _extract_list(payload: Any, keys: Sequence[str]) -> List[Dict[str, Any]]:
    """Pull the record list out of a response body.

    Some endpoints return a bare array, others wrap it under a key whose
    casing varies across HaloPSA versions.
    """
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    if isinstance(payload, dict):
        for key in keys:
            value = payload.get(key)
            if isinstance(value, list):
                return [item for item in value if isinstance(item, dict)]
    return []


class HaloPSAClient:
    """Remote directory client for a HaloPSA tenant.

    Implements the DirectoryClient protocol.
    """

    _name = CONNECTOR_NAME

    def __init__(
        self,
        endpoints: HaloEndpoints,
        policy: Optional[RequestPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            endpoints: Resolved credentials and URLs
            policy: Request policy (timeouts, retries)
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.endpoints = endpoints
        self.policy = policy or DEFAULT_POLICY
        self._transport = transport

    @property
    def name(self) -> str:
        return self._name

    def _http(self, auth=None) -> AsyncHTTPClient:
        return AsyncHTTPClient(
            auth=auth or NoAuth(),
            policy=self.policy,
            base_url=self.endpoints.api_base_url,
            connector_name=self._name,
            transport=self._transport,
        )

    async def authenticate(self) -> OAuthTokenAuth:
        """Exchange client credentials for an access token.

        Raises:
            NetworkError: If the token endpoint is unreachable
            AuthenticationError: If the exchange is rejected or yields no token
        """
        token_url = self.endpoints.token_url
        response = await self._http().post(
            token_url,
            data=self.endpoints.credentials.to_form(),
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            raise_for_status=False,
        )

        if not response.ok:
            raise AuthenticationError(
                f"Failed to authenticate with HaloPSA ({response.status_code})",
                connector_name=self._name,
                status_code=response.status_code,
                body=response.text,
            )

        try:
            payload = response.json()
        except ValueError:
            payload = None

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not access_token:
            raise AuthenticationError(
                "HaloPSA token response contained no access_token",
                connector_name=self._name,
                status_code=response.status_code,
                body=response.text,
            )

        expires_at = None
        expires_in = payload.get("expires_in")
        if isinstance(expires_in, (int, float)) and not isinstance(expires_in, bool):
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in)

        logger.info(f"Authenticated with HaloPSA at {token_url}")
        return OAuthTokenAuth(
            access_token=str(access_token),
            token_type=payload.get("token_type") or "Bearer",
            expires_at=expires_at,
        )

    async def _get_list(
        self,
        token: OAuthTokenAuth,
        path: str,
        count: int,
        keys: Sequence[str],
    ) -> List[Dict[str, Any]]:
        response = await self._http(token).get(
            path,
            params={"count": count},
            headers={"Content-Type": "application/json"},
        )
        try:
            payload = response.json()
        except ValueError as e:
            raise RemoteApiError(
                f"Invalid JSON from {path}: {e}",
                connector_name=self._name,
                status_code=response.status_code,
                body=response.text[:500],
                url=response.url,
            ) from e
        records = _extract_list(payload, keys)
        logger.info(f"Fetched {len(records)} records from {path}")
        return records

    async def fetch_organizations(self, token: OAuthTokenAuth) -> List[Dict[str, Any]]:
        """Fetch up to ORGANIZATION_PAGE_SIZE organizations."""
        return await self._get_list(token, "Client", ORGANIZATION_PAGE_SIZE, ("clients",))

    async def fetch_contacts(self, token: OAuthTokenAuth) -> List[Dict[str, Any]]:
        """Fetch up to CONTACT_PAGE_SIZE contacts."""
        return await self._get_list(token, "Users", CONTACT_PAGE_SIZE, ("users",))

    async def fetch_sites(self, token: OAuthTokenAuth, count: Optional[int] = None) -> List[Dict[str, Any]]:
        """Fetch up to ``count`` sites."""
        return await self._get_list(token, "Site", count or SITE_PAGE_SIZE, ("sites", "Sites"))

    async def fetch_site_detail(self, token: OAuthTokenAuth, site_id: Any) -> Optional[Dict[str, Any]]:
        """Fetch one site's detail record.

        The list endpoint omits address blocks on some tenants; the detail
        endpoint carries them. Failure returns None so the caller can fall
        back to the listed record.
        """
        try:
            response = await self._http(token).get(
                f"Site/{site_id}",
                headers={"Content-Type": "application/json"},
            )
            payload = response.json()
        except (ConnectorError, ValueError) as e:
            logger.warning(f"Failed to fetch site {site_id} details: {e}")
            return None
        return payload if isinstance(payload, dict) else None
