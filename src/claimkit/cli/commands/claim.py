"""Claim and release plans from the current workspace."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from claimkit.claims.claim import ClaimResult, ReleaseResult, claim_plan, release_plan
from claimkit.cli._common import console, fail, load_env, run_or_exit, warn
from claimkit.errors import ErrorKind, capture

WorkspaceOption = Annotated[
    Optional[Path],
    typer.Option("--workspace", "-w", help="Workspace making the claim (default: cwd)"),
]


def report_claim(result: ClaimResult, plan_label: str, workspace_path: str, user: str | None) -> None:
    """Print what a claim changed, followed by any overlap warnings."""
    who = f" as {user}" if user else ""
    if not result.persisted:
        console.print(f"Plan {plan_label} is already claimed by this workspace{who}.")
    elif result.created:
        console.print(f"[green]✓[/green] Claimed plan {plan_label} in {workspace_path}{who}")
    else:
        details = []
        if result.added_workspace:
            details.append("added workspace")
        if result.added_user:
            details.append("added user")
        suffix = f" ({', '.join(details)})" if details else ""
        console.print(f"[green]✓[/green] Updated claim for plan {plan_label}{suffix}")

    for message in result.warnings:
        warn(message)


def claim_command(
    uuid: Annotated[str, typer.Argument(help="Plan UUID to claim")],
    plan_id: Annotated[Optional[int], typer.Option("--plan-id", help="Numeric plan id (informational)")] = None,
    status: Annotated[Optional[str], typer.Option("--status", help="Plan status to record")] = None,
    workspace: WorkspaceOption = None,
) -> None:
    """Claim a plan for this workspace and user."""
    env = load_env(workspace)
    workspace_path = str(env.identity.git_root)
    plan_label = str(plan_id) if plan_id is not None else uuid

    outcome = capture(
        claim_plan,
        env.store,
        plan_id,
        uuid=uuid,
        repository_id=env.identity.repository_id,
        repository_remote_url=env.identity.remote_url,
        workspace_path=workspace_path,
        user=env.user,
        status=status,
    )
    if outcome.kind is ErrorKind.VERSION_CONFLICT:
        raise fail(f"Assignments changed while claiming plan {plan_label}. Re-run the command.")
    if outcome.kind is ErrorKind.LOCK_TIMEOUT:
        raise fail(f"Another process is writing the assignments file. Try again shortly. ({outcome.error})")

    result = run_or_exit(outcome.unwrap)
    report_claim(result, plan_label, workspace_path, env.user)


def release_command(
    uuid: Annotated[str, typer.Argument(help="Plan UUID to release")],
    remove_all: Annotated[
        bool, typer.Option("--all", help="Remove the whole claim, including other workspaces and users")
    ] = False,
    workspace: WorkspaceOption = None,
) -> None:
    """Release this workspace's claim on a plan."""
    env = load_env(workspace)

    def _run() -> ReleaseResult:
        return release_plan(
            env.store,
            uuid=uuid,
            repository_id=env.identity.repository_id,
            repository_remote_url=env.identity.remote_url,
            workspace_path=None if remove_all else str(env.identity.git_root),
            user=None if remove_all else env.user,
        )

    result = run_or_exit(_run)
    if not result.existed:
        console.print(f"Plan {uuid} has no recorded claim.")
    elif not result.persisted:
        console.print(f"Plan {uuid} is not claimed by this workspace or user.")
    elif result.removed:
        console.print(f"[green]✓[/green] Removed claim for plan {uuid}")
    else:
        console.print(f"[green]✓[/green] Released plan {uuid} for this workspace")
