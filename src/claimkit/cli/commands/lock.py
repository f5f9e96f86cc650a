"""Workspace lock commands.

- ``claimkit lock acquire`` -- reserve a workspace with a persistent lock
- ``claimkit lock status`` -- show who holds the workspace
- ``claimkit lock release`` -- remove the workspace lock
- ``claimkit lock clear-stale`` -- remove the lock only if its owner is gone
- ``claimkit lock run -- CMD`` -- run CMD while holding the workspace lock
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from claimkit.claims.auto_claim import ClaimContext, PlanRef, auto_claim_plan
from claimkit.cli._common import console, fail, load_env, run_or_exit, warn
from claimkit.cli.commands.claim import report_claim
from claimkit.errors import LockFileParseError, WorkspaceLocked
from claimkit.workspace.lock import LockInfo, WorkspaceLock

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="lock",
    help="Workspace lock commands",
    no_args_is_help=True,
)

WorkspaceOption = Annotated[
    Optional[Path],
    typer.Option("--workspace", "-w", help="Workspace directory (default: repository root of cwd)"),
]


def _describe(info: LockInfo) -> str:
    holder = f"pid {info.pid}" if info.pid is not None else "unknown pid"
    owner = f", owner {info.owner}" if info.owner else ""
    return (
        f"{info.type} lock held by {holder} on {info.hostname or 'unknown host'}{owner}\n"
        f"  command: {info.command}\n"
        f"  since:   {info.acquired_at.isoformat(timespec='seconds')}"
    )


def _locked_message(exc: WorkspaceLocked) -> str:
    return f"Workspace is locked.\n{_describe(exc.lock_info)}\nUse 'claimkit lock release --force' if the owner is gone."


@app.command("acquire")
def acquire_command(
    workspace: WorkspaceOption = None,
    command: Annotated[str, typer.Option("--command", "-c", help="Description recorded in the lock")] = "claimkit lock acquire",
    owner: Annotated[Optional[str], typer.Option("--owner", help="Who is reserving the workspace")] = None,
) -> None:
    """Reserve the workspace until it is explicitly released."""
    env = load_env(workspace)
    try:
        info = WorkspaceLock.acquire_lock(
            env.identity.git_root,
            command,
            type="persistent",
            owner=owner or env.user,
        )
    except WorkspaceLocked as exc:
        raise fail(_locked_message(exc)) from exc
    except LockFileParseError as exc:
        raise fail(f"{exc}\nUse 'claimkit lock release --force' to remove it.") from exc

    console.print(f"[green]✓[/green] Locked {env.identity.git_root}")
    console.print(_describe(info))


@app.command("status")
def status_command(workspace: WorkspaceOption = None) -> None:
    """Show the current lock on the workspace, including stale locks."""
    env = load_env(workspace)
    info = run_or_exit(lambda: WorkspaceLock.get_lock_info_including_stale(env.identity.git_root))
    if info is None:
        console.print(f"{env.identity.git_root} is not locked.")
        return

    console.print(_describe(info))
    if WorkspaceLock.is_lock_stale(info):
        warn("This lock is stale; its owner is gone or it is too old. Run 'claimkit lock clear-stale'.")


@app.command("release")
def release_command(
    workspace: WorkspaceOption = None,
    force: Annotated[bool, typer.Option("--force", "-f", help="Remove the lock even if a live process holds it")] = False,
) -> None:
    """Release the workspace lock."""
    env = load_env(workspace)
    root = env.identity.git_root

    try:
        info = WorkspaceLock.get_lock_info(root)
    except LockFileParseError as exc:
        if not force:
            raise fail(f"{exc}\nRe-run with --force to remove it.") from exc
        WorkspaceLock.release_lock(root, force=True)
        console.print(f"[green]✓[/green] Removed corrupt lock file on {root}")
        return

    if info is not None and info.type == "pid" and not force:
        raise fail(f"Workspace is held by a running command.\n{_describe(info)}\nRe-run with --force to remove it anyway.")

    if info is None:
        console.print(f"{root} is not locked.")
        return

    if not WorkspaceLock.release_if_unchanged(root, info):
        raise fail("The workspace lock changed while releasing it; nothing was removed. Check 'claimkit lock status'.")
    console.print(f"[green]✓[/green] Released lock on {root}")


@app.command("clear-stale")
def clear_stale_command(workspace: WorkspaceOption = None) -> None:
    """Remove the workspace lock only if it is stale."""
    env = load_env(workspace)
    if run_or_exit(lambda: WorkspaceLock.clear_stale_lock(env.identity.git_root)):
        console.print(f"[green]✓[/green] Cleared stale lock on {env.identity.git_root}")
    else:
        console.print("No stale lock to clear.")


@app.command(
    "run",
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)
def run_command(
    ctx: typer.Context,
    workspace: WorkspaceOption = None,
    plan_uuid: Annotated[Optional[str], typer.Option("--plan", help="Plan UUID being worked on")] = None,
    plan_id: Annotated[Optional[int], typer.Option("--plan-id", help="Numeric plan id")] = None,
    claim: Annotated[
        Optional[bool],
        typer.Option("--claim/--no-claim", help="Claim --plan before running (default: settings)"),
    ] = None,
) -> None:
    """Run a command while holding the workspace lock.

    Example: claimkit lock run --plan 1f0c... -- make test
    """
    args = list(ctx.args)
    if not args:
        raise fail("No command given. Usage: claimkit lock run [OPTIONS] -- CMD [ARGS...]")

    env = load_env(workspace)
    root = env.identity.git_root

    if plan_uuid:
        context = ClaimContext.from_settings(env.store, env.settings, user=env.user)
        if claim is True:
            context.enable_auto_claim()
        elif claim is False:
            context.disable_auto_claim()
        outcome = run_or_exit(lambda: auto_claim_plan(context, PlanRef(uuid=plan_uuid, id=plan_id), cwd=root))
        if outcome is not None:
            report_claim(outcome.result, str(plan_id) if plan_id is not None else plan_uuid, str(root), outcome.user)

    try:
        with WorkspaceLock.hold_lock(root, " ".join(args), owner=env.user):
            returncode = subprocess.call(args, cwd=root)
    except WorkspaceLocked as exc:
        raise fail(_locked_message(exc)) from exc
    except LockFileParseError as exc:
        raise fail(str(exc)) from exc
    except FileNotFoundError as exc:
        raise fail(f"Command not found: {args[0]}") from exc

    raise typer.Exit(returncode)
