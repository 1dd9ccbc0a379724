"""Reconciliation engine: one full HaloPSA -> local CRM run.

Phases run strictly in order, each reading and extending a SyncContext:

    authenticate -> fetch organizations -> (test mode: sample and stop)
    -> organizations -> contacts -> sites -> stamp last sync

Organizations populate the context's identity map (remote org id -> local
customer). Contacts and sites attach to their parent only through that map;
children whose parent is not in it are skipped, never created as orphans.

Writes are best effort. Updates go out in concurrent groups, creates in bulk
batches; a failed update or batch is logged and tallied, and the run moves
on. Only authentication and the organizations fetch abort a run.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Union

from halosync.config import SETTINGS_KEY, SOURCE_TAG
from halosync.connectors.base import ConnectorError, DirectoryClient, OAuthTokenAuth
from halosync.connectors.halopsa import filter_excluded, parse_excluded_ids
from halosync.store.base import CUSTOMER, INTEGRATION_SETTINGS, SITE, Record, RecordStore
from halosync.sync.fields import (
    derive_contact_fields,
    derive_organization_fields,
    derive_site_fields,
    has_site_address,
)
from halosync.sync.matcher import IdentityMatcher, LocalIndex
from halosync.sync.models import (
    ConnectionCheckResult,
    EntityTally,
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

logger = logging.getLogger(__name__)

SAMPLE_FIELD_LIMIT = 20
SAMPLE_ORGANIZATION_KEYS = ("id", "name", "client_name", "email", "main_email")

UNKNOWN_ORGANIZATION = "Unknown"
UNKNOWN_CONTACT = "Unknown User"
DEFAULT_SITE_NAME = "Main Site"

IdentityMap = Dict[str, ParentRef]


def _chunks(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def is_halo_contact(record: Record) -> bool:
    """Scope predicate for contacts this engine owns."""
    return record.get("is_company") is False and record.get("source") == SOURCE_TAG


def is_organization_record(record: Record) -> bool:
    """Scope predicate for organization matching; contacts are never candidates."""
    return record.get("is_company") is not False


async def load_settings(store: RecordStore) -> Optional[Record]:
    """Load the integration settings record, or None."""
    records = await store.filter(INTEGRATION_SETTINGS, {"setting_key": SETTINGS_KEY})
    return records[0] if records else None


# =============================================================================
# Work lists and run context
# =============================================================================


@dataclass
class UpdateItem:
    """An existing local record to overwrite."""

    local_id: str
    fields: Dict[str, Any]
    remote_id: str


@dataclass
class CreateItem:
    """A new local record to insert."""

    fields: Dict[str, Any]
    remote_id: str


@dataclass
class WorkPlan:
    """Classified work for one entity type."""

    to_update: List[UpdateItem] = field(default_factory=list)
    to_create: List[CreateItem] = field(default_factory=list)


@dataclass
class SyncContext:
    """State carried forward through the phases of one run."""

    token: OAuthTokenAuth
    options: SyncOptions
    summary: SyncSummary = field(default_factory=SyncSummary)
    identity_map: IdentityMap = field(default_factory=dict)
    organizations: List[Dict[str, Any]] = field(default_factory=list)


# =============================================================================
# Engine
# =============================================================================


class ReconciliationEngine:
    """Runs one sync of organizations, contacts and sites."""

    def __init__(
        self,
        client: DirectoryClient,
        store: RecordStore,
        settings: Optional[Record] = None,
    ):
        """Initialize the engine.

        Args:
            client: Remote directory client
            store: Local record store
            settings: Integration settings record (exclusions, timestamp)
        """
        self.client = client
        self.store = store
        self.settings = settings

    async def run(
        self, options: Optional[SyncOptions] = None
    ) -> Union[SyncSummary, ConnectionCheckResult]:
        """Run the full pipeline, or the connection test in test mode.

        Raises:
            ConnectorError: If authentication or the organizations fetch fails
        """
        options = options or SyncOptions()

        token = await self.client.authenticate()
        organizations = await self.fetch_organizations(token)

        if options.test_only:
            return await self._test_connection(token, organizations)

        ctx = SyncContext(token=token, options=options, organizations=organizations)
        ctx.summary.total = len(organizations)

        await self._sync_organizations(ctx)
        await self._sync_contacts(ctx)
        await self._sync_sites(ctx)
        await self._stamp_last_sync(ctx)

        return ctx.summary

    async def fetch_organizations(self, token: OAuthTokenAuth) -> List[Dict[str, Any]]:
        """Fetch organizations and drop excluded ids."""
        organizations = await self.client.fetch_organizations(token)
        excluded = parse_excluded_ids((self.settings or {}).get("halopsa_excluded_ids"))
        if excluded:
            before = len(organizations)
            organizations = filter_excluded(organizations, excluded)
            logger.info(f"Excluded {before - len(organizations)} organizations by id")
        return organizations

    async def _test_connection(
        self, token: OAuthTokenAuth, organizations: List[Dict[str, Any]]
    ) -> ConnectionCheckResult:
        first = organizations[0] if organizations else None

        sample_site = None
        try:
            sites = await self.client.fetch_sites(token, count=1)
            sample_site = sites[0] if sites else None
        except ConnectorError as e:
            logger.warning(f"Failed to fetch sample site: {e}")

        return ConnectionCheckResult(
            total=len(organizations),
            sample_fields=list(first.keys())[:SAMPLE_FIELD_LIMIT] if first else [],
            sample_organization={k: first.get(k) for k in SAMPLE_ORGANIZATION_KEYS} if first else None,
            sample_site=sample_site,
        )

    # -------------------------------------------------------------------------
    # Organizations
    # -------------------------------------------------------------------------

    def classify_organizations(
        self,
        organizations: List[Dict[str, Any]],
        customers: List[Record],
        ctx: SyncContext,
    ) -> WorkPlan:
        """Split remote organizations into updates and creates."""
        matcher = IdentityMatcher(LocalIndex(customers, predicate=is_organization_record))
        tally = ctx.summary.organizations
        plan = WorkPlan()

        for raw in organizations:
            remote = RemoteOrganization.from_raw(raw)
            if not remote.id:
                logger.warning("Skipping organization without an id")
                tally.skipped += 1
                continue

            derived = derive_organization_fields(raw, ctx.options.field_mapping)
            match = matcher.match(remote.external_id, email=derived["email"], name=derived["name"])

            local = LocalCustomer(
                name=derived["name"] or UNKNOWN_ORGANIZATION,
                email=derived["email"],
                phone=derived["phone"],
                address=derived["address"],
                city=derived["city"],
                state=derived["state"],
                zip=derived["zip"],
                external_id=remote.external_id,
                is_company=True,
            )

            if match is None:
                plan.to_create.append(CreateItem(fields=local.to_fields(), remote_id=remote.id))
            else:
                if match.is_fallback:
                    tally.matched += 1
                    logger.debug(f"Organization {remote.id} matched by {match.via.value}")
                plan.to_update.append(
                    UpdateItem(local_id=match.local_id, fields=local.to_fields(), remote_id=remote.id)
                )
        return plan

    async def _sync_organizations(self, ctx: SyncContext) -> None:
        customers = await self.store.list(CUSTOMER)
        plan = self.classify_organizations(ctx.organizations, customers, ctx)
        logger.info(
            f"Organizations: {len(plan.to_update)} to update, {len(plan.to_create)} to create"
        )

        def remember(remote_id: str, record: Record) -> None:
            ctx.identity_map[remote_id] = ParentRef(
                local_id=str(record["id"]), local_name=str(record.get("name") or "")
            )

        await self.write_plan(CUSTOMER, "organizations", plan, ctx, on_written=remember)

    # -------------------------------------------------------------------------
    # Contacts
    # -------------------------------------------------------------------------

    def classify_contacts(
        self,
        contacts: List[Dict[str, Any]],
        existing: List[Record],
        ctx: SyncContext,
    ) -> WorkPlan:
        """Split remote contacts into updates and creates, skipping orphans."""
        matcher = IdentityMatcher(LocalIndex(existing, predicate=is_halo_contact))
        tally = ctx.summary.contacts
        plan = WorkPlan()

        for raw in contacts:
            remote = RemoteContact.from_raw(raw)
            parent = ctx.identity_map.get(remote.client_id) if remote.client_id else None
            if parent is None or not remote.id:
                tally.skipped += 1
                continue

            derived = derive_contact_fields(raw)
            match = matcher.match(remote.external_id, email=derived["email"], name=derived["name"])

            local = LocalCustomer(
                name=derived["name"] or UNKNOWN_CONTACT,
                email=derived["email"],
                phone=derived["phone"],
                external_id=remote.external_id,
                is_company=False,
                company_id=parent.local_id,
                company=parent.local_name,
                notes=derived["notes"],
            )

            if match is None:
                plan.to_create.append(CreateItem(fields=local.to_fields(), remote_id=remote.id))
            else:
                if match.is_fallback:
                    tally.matched += 1
                plan.to_update.append(
                    UpdateItem(local_id=match.local_id, fields=local.to_fields(), remote_id=remote.id)
                )
        return plan

    async def _sync_contacts(self, ctx: SyncContext) -> None:
        if not ctx.identity_map:
            logger.info("No organizations synced; skipping contacts")
            return

        try:
            contacts = await self.client.fetch_contacts(ctx.token)
        except ConnectorError as e:
            logger.error(f"Failed to fetch contacts: {e}")
            ctx.summary.warnings.append(f"Contacts not synced: {e}")
            return

        existing = await self.store.filter(CUSTOMER, {"is_company": False, "source": SOURCE_TAG})
        plan = self.classify_contacts(contacts, existing, ctx)
        logger.info(
            f"Contacts: {len(plan.to_update)} to update, {len(plan.to_create)} to create, "
            f"{ctx.summary.contacts.skipped} skipped"
        )
        await self.write_plan(CUSTOMER, "contacts", plan, ctx)

    # -------------------------------------------------------------------------
    # Sites
    # -------------------------------------------------------------------------

    async def classify_sites(
        self,
        sites: List[Dict[str, Any]],
        existing: List[Record],
        ctx: SyncContext,
    ) -> WorkPlan:
        """Split remote sites into updates and creates, skipping orphans.

        Name fallback is scoped to the parent customer; site names such as
        "Main Site" repeat across organizations.
        """
        matcher = IdentityMatcher(LocalIndex(existing, name_scope_field="customer_id"))
        tally = ctx.summary.sites
        plan = WorkPlan()

        for raw in sites:
            remote = RemoteSite.from_raw(raw)
            parent = ctx.identity_map.get(remote.client_id) if remote.client_id else None
            if parent is None or not remote.id:
                tally.skipped += 1
                continue

            detail = None
            if ctx.options.fetch_site_details and not has_site_address(raw):
                detail = await self.client.fetch_site_detail(ctx.token, remote.id)

            derived = derive_site_fields(raw, detail)
            match = matcher.match(remote.external_id, name=derived["name"], scope=parent.local_id)

            local = LocalSite(
                name=derived["name"] or DEFAULT_SITE_NAME,
                address=derived["address"],
                city=derived["city"],
                state=derived["state"],
                zip=derived["zip"],
                customer_id=parent.local_id,
                external_id=remote.external_id,
                notes=derived["notes"],
                is_default=derived["is_default"],
            )

            if match is None:
                plan.to_create.append(CreateItem(fields=local.to_fields(), remote_id=remote.id))
            else:
                if match.is_fallback:
                    tally.matched += 1
                plan.to_update.append(
                    UpdateItem(local_id=match.local_id, fields=local.to_fields(), remote_id=remote.id)
                )
        return plan

    async def _sync_sites(self, ctx: SyncContext) -> None:
        if not ctx.identity_map:
            logger.info("No organizations synced; skipping sites")
            return

        try:
            sites = await self.client.fetch_sites(ctx.token)
        except ConnectorError as e:
            logger.error(f"Failed to fetch sites: {e}")
            ctx.summary.warnings.append(f"Sites not synced: {e}")
            return

        existing = await self.store.list(SITE)
        plan = await self.classify_sites(sites, existing, ctx)
        logger.info(
            f"Sites: {len(plan.to_update)} to update, {len(plan.to_create)} to create, "
            f"{ctx.summary.sites.skipped} skipped"
        )
        await self.write_plan(SITE, "sites", plan, ctx)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def write_plan(
        self,
        collection: str,
        entity: str,
        plan: WorkPlan,
        ctx: SyncContext,
        on_written: Optional[Callable[[str, Record], None]] = None,
    ) -> EntityTally:
        """Apply a work plan: update groups first, then create batches.

        Each update group runs concurrently and is awaited as a unit; groups
        and batches run one after another. ``on_written`` receives the remote
        id and written record for every successful write.
        """
        tally: EntityTally = getattr(ctx.summary, entity)

        for group in _chunks(plan.to_update, ctx.options.update_group_size):
            results = await asyncio.gather(
                *(self.store.update(collection, item.local_id, item.fields) for item in group),
                return_exceptions=True,
            )
            for item, result in zip(group, results):
                if isinstance(result, Exception):
                    self._record_failure(ctx, entity, "update", [item.remote_id], result)
                    continue
                tally.updated += 1
                if on_written is not None:
                    on_written(item.remote_id, {**item.fields, **result, "id": item.local_id})

        for batch in _chunks(plan.to_create, ctx.options.create_batch_size):
            remote_ids = [item.remote_id for item in batch]
            try:
                created = await self.store.bulk_create(collection, [item.fields for item in batch])
            except Exception as e:
                self._record_failure(ctx, entity, "create", remote_ids, e)
                continue

            tally.created += len(created)
            if on_written is None:
                continue
            remote_by_external_id = {item.fields["external_id"]: item.remote_id for item in batch}
            for record in created:
                remote_id = remote_by_external_id.get(record.get("external_id"))
                if remote_id is not None:
                    on_written(remote_id, record)

        return tally

    def _record_failure(
        self,
        ctx: SyncContext,
        entity: str,
        operation: str,
        remote_ids: List[str],
        error: BaseException,
    ) -> None:
        getattr(ctx.summary, entity).failed += len(remote_ids)
        ctx.summary.failures.append(
            WriteFailure(entity=entity, operation=operation, remote_ids=remote_ids, error=str(error))
        )
        logger.error(f"Failed to {operation} {entity} {', '.join(remote_ids)}: {error}")

    # -------------------------------------------------------------------------
    # Completion
    # -------------------------------------------------------------------------

    async def _stamp_last_sync(self, ctx: SyncContext) -> None:
        now = _utc_now_iso()
        try:
            if self.settings and self.settings.get("id"):
                await self.store.update(
                    INTEGRATION_SETTINGS, self.settings["id"], {"halopsa_last_sync": now}
                )
            else:
                self.settings = await self.store.create(
                    INTEGRATION_SETTINGS, {"setting_key": SETTINGS_KEY, "halopsa_last_sync": now}
                )
        except Exception as e:
            logger.error(f"Failed to record last sync time: {e}")
            ctx.summary.warnings.append(f"Last sync time not recorded: {e}")
            return
        ctx.summary.last_synced_at = now
