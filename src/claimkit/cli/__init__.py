"""claimkit command line interface."""

from __future__ import annotations

import logging

import typer
from typing_extensions import Annotated

from claimkit import __version__
from claimkit.cli._common import console
from claimkit.cli.commands import register_commands

app = typer.Typer(
    name="claimkit",
    help="Coordinate plan claims and workspace locks across parallel workspaces",
    add_completion=False,
    no_args_is_help=True,
)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"claimkit {__version__}")
        raise typer.Exit()


@app.callback()
def callback(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show debug logging")] = False,
    version: Annotated[
        bool,
        typer.Option("--version", callback=_version_callback, is_eager=True, help="Show the version and exit"),
    ] = False,
) -> None:
    """Coordinate plan claims and workspace locks across parallel workspaces."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")


register_commands(app)


def main():
    app()


if __name__ == "__main__":
    main()
