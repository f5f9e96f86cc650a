"""Inspect and clean up the shared plan-claim ledger.

- ``claimkit assignments list`` -- every claim in this repository
- ``claimkit assignments show-conflicts`` -- plans claimed by more than one workspace
- ``claimkit assignments clean-stale`` -- remove claims nobody touched recently
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.table import Table
from typing_extensions import Annotated

from claimkit.claims.stale import get_configured_stale_timeout_days, get_stale_assignments, is_stale_assignment
from claimkit.cli._common import CommandEnv, console, load_env, plural, run_or_exit, warn
from claimkit.errors import ErrorKind, LedgerParseError, capture
from claimkit.ledger.models import AssignmentEntry, AssignmentLedger, empty_ledger, utc_now, unique_values

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="assignments",
    help="Inspect and clean up plan claims shared across workspaces",
    no_args_is_help=True,
)

WorkspaceOption = Annotated[
    Optional[Path],
    typer.Option("--workspace", "-w", help="Workspace to resolve the repository from (default: cwd)"),
]


@dataclass
class AssignmentDisplay:
    uuid: str
    plan_label: str
    status: str
    workspaces: list[str]
    users: list[str]
    updated_at: datetime
    is_stale: bool
    entry: AssignmentEntry

    @property
    def conflict_count(self) -> int:
        return len(self.entry.workspace_paths)


def _read_ledger(env: CommandEnv) -> AssignmentLedger:
    """Read the ledger, degrading to an empty one if the file is corrupt."""
    try:
        return env.store.read(env.identity.repository_id, env.identity.remote_url)
    except LedgerParseError as exc:
        warn(f"{exc} (showing no assignments)")
        return empty_ledger(env.identity.repository_id, env.identity.remote_url)


def _collect_users(entry: AssignmentEntry) -> list[str]:
    owners = list(entry.workspace_owners.values()) if entry.workspace_owners else []
    return unique_values([*entry.users, *owners])


def _workspace_summary(entry: AssignmentEntry, workspace_path: str, current_workspace: Path) -> str:
    label = "[green]this workspace[/green]" if Path(workspace_path) == current_workspace else workspace_path
    owner = entry.owner_of(workspace_path)
    return f"{label} ({owner})" if owner else label


def build_displays(
    ledger: AssignmentLedger,
    current_workspace: Path,
    stale_timeout_days: int,
    now: datetime | None = None,
) -> list[AssignmentDisplay]:
    reference = now or utc_now()
    displays = []
    for uuid, entry in ledger.assignments.items():
        displays.append(
            AssignmentDisplay(
                uuid=uuid,
                plan_label=f"#{entry.plan_id}" if entry.plan_id is not None else "Unknown plan",
                status=entry.status or "pending",
                workspaces=[_workspace_summary(entry, path, current_workspace) for path in entry.workspace_paths],
                users=_collect_users(entry),
                updated_at=entry.updated_at,
                is_stale=is_stale_assignment(entry, stale_timeout_days, reference),
                entry=entry,
            )
        )
    displays.sort(key=lambda display: display.updated_at, reverse=True)
    return displays


def _render_table(displays: list[AssignmentDisplay], stale_timeout_days: int, title: str) -> None:
    table = Table(title=title, show_lines=True)
    table.add_column("Plan", style="bold")
    table.add_column("UUID", style="dim")
    table.add_column("Status")
    table.add_column("Workspaces")
    table.add_column("Users")
    table.add_column("Updated")
    table.add_column(f"Stale ({stale_timeout_days}d)")

    for display in displays:
        table.add_row(
            display.plan_label,
            display.uuid,
            display.status,
            "\n".join(display.workspaces) or "[dim]none[/dim]",
            "\n".join(display.users) or "[dim]none[/dim]",
            display.updated_at.isoformat(timespec="seconds"),
            "[yellow]yes[/yellow]" if display.is_stale else "[dim]no[/dim]",
        )
    console.print(table)


@app.command("list")
def list_command(workspace: WorkspaceOption = None) -> None:
    """List every plan claim recorded for this repository."""
    env = load_env(workspace)
    stale_days = get_configured_stale_timeout_days(env.settings)
    displays = build_displays(_read_ledger(env), env.identity.git_root, stale_days)

    if not displays:
        console.print("No assignments recorded for this repository.")
        return

    _render_table(displays, stale_days, "Plan assignments")
    console.print(f"Total assignments: {len(displays)}")


@app.command("show-conflicts")
def show_conflicts_command(workspace: WorkspaceOption = None) -> None:
    """Show plans that are claimed from more than one workspace."""
    env = load_env(workspace)
    stale_days = get_configured_stale_timeout_days(env.settings)
    displays = [
        display
        for display in build_displays(_read_ledger(env), env.identity.git_root, stale_days)
        if display.conflict_count > 1
    ]

    if not displays:
        console.print("No conflicting assignments found.")
        return

    _render_table(displays, stale_days, "Conflicting assignments")
    console.print(f"Conflicting assignments: {len(displays)}")


@app.command("clean-stale")
def clean_stale_command(
    workspace: WorkspaceOption = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Remove without asking for confirmation")] = False,
) -> None:
    """Remove claims that have not been updated within the stale timeout."""
    env = load_env(workspace)
    stale_days = get_configured_stale_timeout_days(env.settings)
    ledger = _read_ledger(env)
    now = utc_now()

    stale = get_stale_assignments(ledger.assignments, stale_days, now)
    if not stale:
        console.print(f"No stale assignments found (threshold {plural(stale_days, 'day')}).")
        return

    console.print(f"[yellow]Found {plural(len(stale), 'stale assignment')} older than {plural(stale_days, 'day')}.[/yellow]")
    displays = [d for d in build_displays(ledger, env.identity.git_root, stale_days, now) if d.uuid in stale]
    _render_table(displays, stale_days, "Stale assignments")

    if not yes and not typer.confirm("Remove the stale assignments listed above?", default=False):
        warn("Aborted stale assignment cleanup.")
        return

    remaining = {uuid: entry for uuid, entry in ledger.assignments.items() if uuid not in stale}
    next_ledger = ledger.next_version(assignments=remaining)
    outcome = capture(env.store.write, next_ledger, expected_version=ledger.version)

    if outcome.kind is ErrorKind.VERSION_CONFLICT:
        warn("Assignments changed while cleaning. Re-run the command to retry the cleanup.")
        return
    run_or_exit(outcome.unwrap)

    for display in displays:
        console.print(f"[green]✓[/green] Removed assignment for {display.plan_label} ({display.uuid})")
    console.print(f"Removed {plural(len(stale), 'stale assignment')}. New version: {next_ledger.version}.")
