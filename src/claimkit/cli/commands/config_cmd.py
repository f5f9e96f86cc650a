"""``claimkit config`` commands for the user-level settings file."""

from __future__ import annotations

import typer
from rich.table import Table
from typing_extensions import Annotated

from claimkit.cli._common import console, fail
from claimkit.config import LEDGER_BACKENDS, ClaimSettings, SettingsError, load_settings, save_settings
from claimkit.paths import get_settings_path

app = typer.Typer(
    name="config",
    help="Show and change claimkit settings",
    no_args_is_help=True,
)


def _load_file_settings() -> ClaimSettings:
    try:
        return load_settings(apply_env=False)
    except SettingsError as exc:
        raise fail(str(exc)) from exc


@app.command("show")
def show_command() -> None:
    """Show effective settings, including environment overrides."""
    try:
        settings = load_settings()
    except SettingsError as exc:
        raise fail(str(exc)) from exc

    table = Table(title=f"Settings ({get_settings_path()})")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_row("assignments.stale_timeout", f"{settings.stale_timeout_days} days")
    table.add_row("assignments.auto_claim", "on" if settings.auto_claim else "off")
    table.add_row("assignments.backend", settings.ledger_backend)
    table.add_row("workspace_lock.stale_hours", f"{settings.workspace_lock_stale_hours:g}")
    console.print(table)


@app.command("auto-claim")
def auto_claim_command(
    state: Annotated[str, typer.Argument(help="'on' or 'off'")],
) -> None:
    """Turn automatic plan claiming on or off."""
    normalized = state.strip().lower()
    if normalized not in ("on", "off"):
        raise fail(f"Expected 'on' or 'off', got {state!r}")

    settings = _load_file_settings()
    settings.auto_claim = normalized == "on"
    save_settings(settings)
    console.print(f"[green]✓[/green] Auto-claim turned {normalized}")


@app.command("stale-timeout")
def stale_timeout_command(
    days: Annotated[int, typer.Argument(help="Days without activity before a claim is stale (0 disables)")],
) -> None:
    """Set how many days a claim may go untouched before it is stale."""
    settings = _load_file_settings()
    settings.stale_timeout_days = days
    save_settings(settings)
    if days <= 0:
        console.print("[green]✓[/green] Stale claim detection disabled")
    else:
        console.print(f"[green]✓[/green] Claims now go stale after {days} days")


@app.command("backend")
def backend_command(
    backend: Annotated[str, typer.Argument(help=f"One of: {', '.join(LEDGER_BACKENDS)}")],
) -> None:
    """Choose where the assignment ledger is stored."""
    normalized = backend.strip().lower()
    if normalized not in LEDGER_BACKENDS:
        raise fail(f"Unknown backend {backend!r}. Choose one of: {', '.join(LEDGER_BACKENDS)}")

    settings = _load_file_settings()
    settings.ledger_backend = normalized
    save_settings(settings)
    console.print(f"[green]✓[/green] Ledger backend set to {normalized}")
