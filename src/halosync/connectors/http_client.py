"""Async HTTP client used by the HaloPSA connector.

Wraps httpx with RequestPolicy enforcement:
- Connect/read/pool timeouts from the policy
- Opt-in retries with exponential backoff on retryable statuses and
  transport failures
- httpx failures mapped onto NetworkError, TimeoutError and RemoteApiError

Tests inject an ``httpx.MockTransport`` instead of patching httpx.
"""

import asyncio
import json as json_module
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .base import (
    AuthStrategy,
    ConnectorError,
    NetworkError,
    RemoteApiError,
    RequestPolicy,
    TimeoutError,
)

logger = logging.getLogger(__name__)


@dataclass
class HTTPResponse:
    """Status, raw body and final URL of one completed request."""

    status_code: int
    body: bytes
    url: str
    elapsed_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Parse the body as JSON.

        Raises:
            ValueError: If the body is not valid JSON
        """
        return json_module.loads(self.body)


class AsyncHTTPClient:
    """Policy-enforcing request helper bound to one base URL and auth.

    Each request opens a short-lived ``httpx.AsyncClient``. A sync run
    issues a handful of calls, so there is no pool to manage.
    """

    def __init__(
        self,
        auth: Optional[AuthStrategy] = None,
        policy: Optional[RequestPolicy] = None,
        base_url: str = "",
        connector_name: str = "http_client",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            auth: Authentication strategy supplying request headers
            policy: Timeouts and retries
            base_url: Prefix for relative paths
            connector_name: Name stamped on raised errors
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.auth = auth
        self.policy = policy or RequestPolicy()
        self.base_url = base_url.rstrip("/")
        self.connector_name = connector_name
        self._transport = transport

    def url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _headers(self, extra: Optional[Dict[str, str]]) -> Dict[str, str]:
        headers = {"User-Agent": self.policy.user_agent, **self.policy.default_headers}
        if self.auth is not None:
            headers.update(self.auth.get_headers())
        if extra:
            headers.update(extra)
        return headers

    async def _attempt(self, method: str, url: str, headers: Dict[str, str], **kwargs: Any) -> HTTPResponse:
        """Send one request, mapping httpx failures to connector errors."""
        timeout = httpx.Timeout(
            connect=self.policy.connect_timeout,
            read=self.policy.read_timeout,
            write=self.policy.read_timeout,
            pool=self.policy.total_timeout,
        )
        started = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise TimeoutError(
                f"Request to {url} timed out after {self.policy.read_timeout}s",
                connector_name=self.connector_name,
                url=url,
                timeout_seconds=self.policy.read_timeout,
            ) from e
        except httpx.TransportError as e:
            raise NetworkError(
                f"Failed to connect to {url}: {e}",
                connector_name=self.connector_name,
                url=url,
            ) from e

        return HTTPResponse(
            status_code=response.status_code,
            body=response.content,
            url=str(response.request.url),
            elapsed_seconds=time.monotonic() - started,
        )

    async def _backoff(self, attempt: int, reason: str) -> bool:
        """Sleep before the next attempt; False when retries are used up."""
        if attempt >= self.policy.max_retries:
            return False
        delay = self.policy.retry_delay * (self.policy.retry_backoff**attempt)
        logger.warning(f"{self.connector_name}: {reason}, retrying in {delay:.1f}s")
        await asyncio.sleep(delay)
        return True

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Any] = None,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        raise_for_status: bool = True,
    ) -> HTTPResponse:
        """Send a request under the client's policy.

        Args:
            method: HTTP method
            path: Path relative to base_url, or an absolute URL
            json: JSON body
            data: Form body
            params: Query parameters
            headers: Extra headers
            raise_for_status: Raise RemoteApiError on a non-2xx final status

        Raises:
            RemoteApiError: On a non-2xx status (when raise_for_status)
            TimeoutError: On timeout once retries are exhausted
            NetworkError: On transport failure once retries are exhausted
        """
        url = self.url_for(path)
        request_headers = self._headers(headers)

        attempt = 0
        while True:
            try:
                response = await self._attempt(
                    method, url, request_headers, json=json, data=data, params=params
                )
            except NetworkError as e:
                if await self._backoff(attempt, str(e)):
                    attempt += 1
                    continue
                raise

            if not response.ok and response.status_code in self.policy.retry_on_status:
                if await self._backoff(attempt, f"HTTP {response.status_code} from {url}"):
                    attempt += 1
                    continue

            if raise_for_status and not response.ok:
                raise self.map_error(response)
            return response

    def map_error(self, response: HTTPResponse) -> ConnectorError:
        """RemoteApiError for a non-2xx response."""
        return RemoteApiError(
            f"HTTP error {response.status_code} from {response.url}",
            connector_name=self.connector_name,
            status_code=response.status_code,
            body=response.text,
            url=response.url,
        )

    async def get(self, path: str, **kwargs: Any) -> HTTPResponse:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> HTTPResponse:
        return await self.request("POST", path, **kwargs)
