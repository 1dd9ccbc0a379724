"""Read-only preview of how remote organizations map to local customers.

Shows, per HaloPSA organization, the local customer it is linked to (by
``external_id``) or would be auto-matched to (by name), without writing
anything.
"""

import logging
from typing import Any, Dict, List, Optional

from halosync.connectors.base import DirectoryClient
from halosync.store.base import CUSTOMER, Record, RecordStore
from halosync.sync.engine import ReconciliationEngine
from halosync.sync.fields import first_non_empty
from halosync.sync.matcher import normalize_key
from halosync.sync.models import RemoteOrganization

logger = logging.getLogger(__name__)


async def preview_mapping(
    client: DirectoryClient,
    store: RecordStore,
    settings: Optional[Record] = None,
) -> Dict[str, Any]:
    """Build the mapping preview.

    Args:
        client: Remote directory client
        store: Local record store
        settings: Integration settings record (for exclusions)

    Returns:
        Dict with ``halo_clients``, ``local_customers``, ``total_halo`` and
        ``total_mapped``.

    Raises:
        ConnectorError: If authentication or the organizations fetch fails
    """
    engine = ReconciliationEngine(client, store, settings=settings)
    token = await client.authenticate()
    organizations = await engine.fetch_organizations(token)

    customers = await store.list(CUSTOMER)
    by_external_id: Dict[str, Record] = {}
    by_name: Dict[str, Record] = {}
    for customer in customers:
        if customer.get("external_id"):
            by_external_id[str(customer["external_id"])] = customer
        name = normalize_key(customer.get("name"))
        if name:
            by_name[name] = customer

    rows: List[Dict[str, Any]] = []
    for raw in organizations:
        remote = RemoteOrganization.from_raw(raw)
        halo_name = first_non_empty(raw, ("name", "client_name"))
        linked = by_external_id.get(remote.external_id)
        name_matched = by_name.get(normalize_key(halo_name)) if not linked and halo_name else None
        mapped = linked or name_matched

        rows.append(
            {
                "halo_id": raw.get("id"),
                "halo_name": halo_name,
                "halo_email": first_non_empty(raw, ("email", "main_email")),
                "halo_phone": first_non_empty(raw, ("main_phone", "phonenumber")),
                "mapped_customer_id": mapped.get("id") if mapped else None,
                "mapped_customer_name": mapped.get("name") if mapped else None,
                "is_synced": linked is not None,
                "is_name_matched": name_matched is not None,
            }
        )

    options = sorted(
        (
            {"id": c.get("id"), "name": c.get("name"), "email": c.get("email")}
            for c in customers
            if c.get("is_company") is not False
        ),
        key=lambda c: (c["name"] or "").lower(),
    )

    total_mapped = sum(1 for row in rows if row["mapped_customer_id"])
    logger.info(f"Preview: {len(rows)} HaloPSA organizations, {total_mapped} mapped")

    return {
        "success": True,
        "halo_clients": rows,
        "local_customers": options,
        "total_halo": len(rows),
        "total_mapped": total_mapped,
    }
