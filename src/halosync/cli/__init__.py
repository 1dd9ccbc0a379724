"""CLI package for halosync.

The main Typer app is created in app.py and commands are registered from
each module.
"""

# Import command modules to register commands with the app
import halosync.cli.commands_settings  # noqa: F401, E402
import halosync.cli.commands_sync  # noqa: F401, E402
from halosync.cli.app import app

__all__ = ["app"]


def main() -> None:
    """Console script entry point."""
    app()
