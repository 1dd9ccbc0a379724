"""Sync CLI commands.

- sync: Run a HaloPSA sync (or a connection test with --test-only)
- preview: Show how HaloPSA organizations map to local customers
- status: Show last sync time and local record counts
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, Optional

import typer
from pydantic import ValidationError
from typer import Context

from halosync.cli.app import app, get_state
from halosync.config import SITE_ID_PREFIX, SOURCE_TAG
from halosync.service import build_options, run_preview, run_sync
from halosync.store.base import CUSTOMER, SITE
from halosync.sync.engine import load_settings


def _echo_json(body: Dict[str, Any]) -> None:
    typer.echo(json.dumps(body, indent=2, default=str))


def _echo_error(status_code: int, body: Dict[str, Any]) -> None:
    typer.echo(f"❌ Error ({status_code}): {body.get('error')}", err=True)
    if body.get("details"):
        typer.echo(f"   Details: {body['details']}", err=True)


@app.command()
def sync(
    ctx: Context,
    test_only: bool = typer.Option(
        False, "--test-only", help="Validate credentials and URLs without writing"
    ),
    mapping: Optional[str] = typer.Option(
        None,
        "--mapping",
        "-m",
        help='Field mapping JSON, e.g. \'{"address": "address.line1"}\'',
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the raw response body"),
):
    """Sync HaloPSA organizations, contacts and sites into the local CRM.

    Examples:
        halosync sync
        halosync sync --test-only
        halosync sync --mapping '{"phone": "phonenumber"}'
    """
    state = get_state(ctx)

    field_mapping = None
    if mapping:
        try:
            field_mapping = json.loads(mapping)
        except json.JSONDecodeError as e:
            typer.echo(f"❌ Invalid --mapping JSON: {e}", err=True)
            raise typer.Exit(1)
        if not isinstance(field_mapping, dict):
            typer.echo("❌ --mapping must be a JSON object", err=True)
            raise typer.Exit(1)

    try:
        options = build_options(test_only=test_only, field_mapping=field_mapping)
    except ValidationError as e:
        typer.echo(f"❌ Invalid --mapping: {e}", err=True)
        raise typer.Exit(1)

    typer.echo("🔌 Testing HaloPSA connection..." if test_only else "🔄 Syncing from HaloPSA...")
    status_code, body = asyncio.run(run_sync(state.store, state.client_factory, options))

    if as_json:
        _echo_json(body)
    if status_code != 200:
        if not as_json:
            _echo_error(status_code, body)
        raise typer.Exit(1)
    if as_json:
        return

    typer.echo(f"✅ {body['message']}")
    if test_only:
        fields = ", ".join(body.get("sampleFields") or [])
        typer.echo(f"   Sample fields: {fields or '(none)'}")
        if body.get("sampleClient"):
            typer.echo(f"   Example: {json.dumps(body['sampleClient'], default=str)}")
        return

    typer.echo(f"   🏢 Customers: {body['created']} created, {body['updated']} updated, {body['matched']} matched")
    typer.echo(f"   👤 Users: {body['usersCreated']} created, {body['usersUpdated']} updated")
    typer.echo(f"   📍 Sites: {body['sitesCreated']} created, {body['sitesUpdated']} updated")
    if body.get("failed"):
        typer.echo(f"   ⚠️ {body['failed']} records failed to write (see log)")
    for warning in body.get("warnings", []):
        typer.echo(f"   ⚠️ {warning}")


@app.command()
def preview(
    ctx: Context,
    as_json: bool = typer.Option(False, "--json", help="Print the raw response body"),
):
    """Show how HaloPSA organizations map to local customers (read-only)."""
    state = get_state(ctx)
    status_code, body = asyncio.run(run_preview(state.store, state.client_factory))

    if status_code != 200:
        _echo_error(status_code, body)
        raise typer.Exit(1)
    if as_json:
        _echo_json(body)
        return

    typer.echo(f"\n🏢 HaloPSA organizations ({body['total_halo']}, {body['total_mapped']} mapped):")
    for row in body["halo_clients"]:
        if row["is_synced"]:
            marker = "✅"
        elif row["is_name_matched"]:
            marker = "🔗"
        else:
            marker = "➕"
        target = row["mapped_customer_name"] or "(new)"
        typer.echo(f"  {marker} [{row['halo_id']}] {row['halo_name']} -> {target}")


@app.command()
def status(ctx: Context):
    """Show last sync time and local record counts."""
    state = get_state(ctx)

    async def _collect():
        settings = await load_settings(state.store)
        companies = await state.store.filter(CUSTOMER, {"is_company": True, "source": SOURCE_TAG})
        contacts = await state.store.filter(CUSTOMER, {"is_company": False, "source": SOURCE_TAG})
        sites = await state.store.filter(SITE, lambda r: str(r.get("external_id", "")).startswith(SITE_ID_PREFIX))
        return settings, len(companies), len(contacts), len(sites)

    settings, companies, contacts, sites = asyncio.run(_collect())
    last_sync = (settings or {}).get("halopsa_last_sync")

    typer.echo("📊 HaloPSA sync status")
    typer.echo(f"   Last sync: {last_sync or 'never'}")
    typer.echo(f"   🏢 Customers: {companies}")
    typer.echo(f"   👤 Users: {contacts}")
    typer.echo(f"   📍 Sites: {sites}")
