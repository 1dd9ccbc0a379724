"""Integration settings CLI commands.

- settings show: Print the stored HaloPSA settings
- settings set: Set one HaloPSA setting

The client secret is never stored; it comes from HALOPSA_CLIENT_SECRET.
"""

from __future__ import annotations

import asyncio

import typer
from typer import Context, Typer

from halosync.cli.app import app, get_state
from halosync.config import SETTINGS_KEY
from halosync.store.base import INTEGRATION_SETTINGS
from halosync.sync.engine import load_settings

SETTABLE_KEYS = (
    "halopsa_auth_url",
    "halopsa_api_url",
    "halopsa_client_id",
    "halopsa_tenant",
    "halopsa_excluded_ids",
)

settings_app = Typer(help="HaloPSA integration settings")
app.add_typer(settings_app, name="settings")


@settings_app.command(name="show")
def settings_show(ctx: Context):
    """Print the stored HaloPSA settings."""
    state = get_state(ctx)
    settings = asyncio.run(load_settings(state.store))

    if settings is None:
        typer.echo("ℹ️ No integration settings stored (environment variables apply)")
        return

    typer.echo("⚙️ HaloPSA settings:")
    for key in SETTABLE_KEYS + ("halopsa_last_sync",):
        typer.echo(f"   {key}: {settings.get(key) or '-'}")


@settings_app.command(name="set")
def settings_set(
    ctx: Context,
    key: str = typer.Argument(..., help=f"One of: {', '.join(SETTABLE_KEYS)}"),
    value: str = typer.Argument(..., help="New value (empty string clears it)"),
):
    """Set one HaloPSA setting.

    Examples:
        halosync settings set halopsa_api_url https://acme.halopsa.com
        halosync settings set halopsa_excluded_ids "12, 15"
    """
    if key not in SETTABLE_KEYS:
        typer.echo(f"❌ Unknown setting: {key}", err=True)
        typer.echo(f"   Settable keys: {', '.join(SETTABLE_KEYS)}")
        raise typer.Exit(1)

    state = get_state(ctx)

    async def _save():
        settings = await load_settings(state.store)
        if settings is None:
            return await state.store.create(
                INTEGRATION_SETTINGS, {"setting_key": SETTINGS_KEY, key: value}
            )
        return await state.store.update(INTEGRATION_SETTINGS, settings["id"], {key: value})

    asyncio.run(_save())
    typer.echo(f"✅ {key} updated")
