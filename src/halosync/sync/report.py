"""Run reporting: shapes engine results and errors into operator responses."""

import logging
from typing import Any, Dict, Tuple, Union

from halosync.connectors.base import AuthenticationError, ConfigurationError, ConnectorError
from halosync.sync.models import ConnectionCheckResult, SyncSummary

logger = logging.getLogger(__name__)


class RunReporter:
    """Converts a run outcome to the response body the trigger returns.

    Success bodies keep the camelCase keys operators' dashboards already
    read (``usersCreated``, ``sitesUpdated``, ...).
    """

    @staticmethod
    def message(summary: SyncSummary) -> str:
        if summary.total == 0:
            return "No clients found in HaloPSA"
        orgs, contacts, sites = summary.organizations, summary.contacts, summary.sites
        return (
            f"Synced {orgs.created} new customers, updated {orgs.updated} existing. "
            f"Synced {contacts.created} new users, updated {contacts.updated} existing. "
            f"Synced {sites.created} new sites, updated {sites.updated} existing."
        )

    def summary_body(self, summary: SyncSummary) -> Dict[str, Any]:
        """Success body for a full run."""
        body: Dict[str, Any] = {
            "success": True,
            "message": self.message(summary),
            "created": summary.organizations.created,
            "updated": summary.organizations.updated,
            "usersCreated": summary.contacts.created,
            "usersUpdated": summary.contacts.updated,
            "sitesCreated": summary.sites.created,
            "sitesUpdated": summary.sites.updated,
            "matched": summary.organizations.matched,
            "total": summary.total,
            "usersMatched": summary.contacts.matched,
            "sitesMatched": summary.sites.matched,
            "lastSyncedAt": summary.last_synced_at,
        }
        failed = summary.organizations.failed + summary.contacts.failed + summary.sites.failed
        if failed:
            body["failed"] = failed
        if summary.warnings:
            body["warnings"] = list(summary.warnings)
        return body

    def test_body(self, result: ConnectionCheckResult) -> Dict[str, Any]:
        """Success body for a test-mode run."""
        return {
            "success": True,
            "message": f"Connection successful! Found {result.total} clients.",
            "total": result.total,
            "sampleFields": result.sample_fields,
            "sampleClient": result.sample_organization,
            "sampleSite": result.sample_site,
        }

    def success(self, result: Union[SyncSummary, ConnectionCheckResult]) -> Dict[str, Any]:
        if isinstance(result, ConnectionCheckResult):
            return self.test_body(result)
        return self.summary_body(result)

    def failure(self, error: Exception) -> Tuple[int, Dict[str, Any]]:
        """Map an error to (HTTP status, ``{error, details}``).

        400 for configuration, 401 for authentication, 500 for everything
        else (transport, remote API, unexpected).
        """
        if isinstance(error, ConfigurationError):
            status = 400
        elif isinstance(error, AuthenticationError):
            status = 401
        else:
            status = 500

        details: Any = None
        if isinstance(error, ConnectorError):
            info = error.details or {}
            if info.get("details"):
                details = info["details"]
            elif info.get("body"):
                details = info["body"]
            elif info.get("url"):
                details = f"URL attempted: {info['url']}"

        message = str(error)
        logger.error(f"Sync failed ({status}): {message}")
        return status, {"error": message, "details": details}
