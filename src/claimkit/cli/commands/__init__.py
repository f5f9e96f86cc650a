"""Command modules for the claimkit CLI."""

from __future__ import annotations

import typer

from . import assignments as assignments_module
from . import config_cmd as config_module
from . import lock as lock_module
from .claim import claim_command, release_command


def register_commands(app: typer.Typer) -> None:
    """Attach claimkit subcommands to the root Typer application."""
    app.command("claim")(claim_command)
    app.command("release")(release_command)
    app.add_typer(assignments_module.app, name="assignments")
    app.add_typer(lock_module.app, name="lock")
    app.add_typer(config_module.app, name="config")


__all__ = ["register_commands"]
