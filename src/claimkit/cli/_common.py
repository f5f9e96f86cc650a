"""Shared helpers for claimkit CLI commands."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, TypeVar

import typer
from rich.console import Console

from claimkit.config import ClaimSettings, SettingsError, load_settings
from claimkit.errors import ClaimKitError
from claimkit.identity import GitIdentityProvider, RepositoryIdentity, get_user_identity
from claimkit.ledger.store import LedgerStore, open_store
from claimkit.workspace.lock import WorkspaceLock

logger = logging.getLogger(__name__)

console = Console()
err_console = Console(stderr=True)

T = TypeVar("T")


@dataclass
class CommandEnv:
    """Everything a claim or lock command needs, resolved once."""

    settings: ClaimSettings
    store: LedgerStore
    identity: RepositoryIdentity
    user: str | None


def fail(message: str) -> typer.Exit:
    typer.secho(message, fg=typer.colors.RED, err=True)
    return typer.Exit(1)


def warn(message: str) -> None:
    err_console.print(f"[yellow]⚠[/yellow] {message}")


def load_env(workspace: Path | None = None) -> CommandEnv:
    """Load settings, open the ledger store and resolve identities."""
    try:
        settings = load_settings()
    except SettingsError as exc:
        raise fail(str(exc)) from exc

    WorkspaceLock.configure(stale_hours=settings.workspace_lock_stale_hours)
    identity = GitIdentityProvider().get_repository_identity(workspace)
    return CommandEnv(
        settings=settings,
        store=open_store(settings),
        identity=identity,
        user=get_user_identity(),
    )


def run_or_exit(fn: Callable[[], T]) -> T:
    """Run ``fn``, turning claimkit and value errors into a red message and exit 1."""
    try:
        return fn()
    except (ClaimKitError, ValueError) as exc:
        raise fail(str(exc)) from exc


def plural(count: int | float, noun: str) -> str:
    return f"{count} {noun}{'' if count == 1 else 's'}"
