"""CLI app setup and common utilities.

This module creates the main Typer app and the shared state used by all
commands: the record store and the directory client factory.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from typer import Context, Typer

from halosync.config import config
from halosync.service import ClientFactory, default_client_factory
from halosync.store.base import RecordStore

# Initialize Typer app
app = Typer(
    name="halosync",
    help="HaloPSA directory sync: organizations, contacts and sites into the local CRM.",
)


# =============================================================================
# Global Context Object
# =============================================================================


class CLIState:
    """Shared state object for CLI commands.

    Tests pass a prepared instance via ``CliRunner.invoke(..., obj=state)``;
    the app callback only fills in what is still unset.
    """

    def __init__(
        self,
        store: Optional[RecordStore] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.store = store
        self.client_factory = client_factory or default_client_factory


def get_state(ctx: Context) -> CLIState:
    """Get CLI state from Typer context.

    Raises:
        RuntimeError: If called before the init_app callback.
    """
    if ctx.obj is not None and ctx.obj.store is not None:
        return ctx.obj
    raise RuntimeError("CLI state not initialized - this is a bug")


@app.callback()
def init_app(
    ctx: Context,
    db: Optional[Path] = typer.Option(
        None,
        "--db",
        help="SQLite record store path (default: HALOSYNC_DB_PATH)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Initialize logging and the record store."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    ctx.ensure_object(CLIState)
    if ctx.obj.store is None:
        from halosync.store.sqlite import SQLiteRecordStore

        if db is None:
            config.ensure_directories()
        ctx.obj.store = SQLiteRecordStore(db or config.db_path)
