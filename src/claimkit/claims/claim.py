"""Claiming and releasing plans in the shared ledger.

Claims merge: a new workspace or user is added next to the existing
claimants, never in place of them. Overlap is reported as warnings so
the caller can tell the human; exclusivity only exists at the workspace
lock level.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from claimkit.ledger.models import AssignmentEntry, utc_now
from claimkit.ledger.store import LedgerStore

logger = logging.getLogger(__name__)


@dataclass
class ClaimResult:
    """Outcome of :func:`claim_plan`."""

    entry: AssignmentEntry
    created: bool
    added_workspace: bool
    added_user: bool
    warnings: list[str] = field(default_factory=list)
    persisted: bool = False


@dataclass
class ReleaseResult:
    """Outcome of :func:`release_plan`."""

    existed: bool
    removed: bool = False
    cleared_workspace: bool = False
    cleared_user: bool = False
    entry: AssignmentEntry | None = None
    persisted: bool = False


def _plan_label(plan_id: int | None, uuid: str) -> str:
    return str(plan_id) if plan_id is not None else uuid


def build_claim_warnings(
    plan_label: str,
    other_workspaces: list[str],
    other_users: list[str],
) -> list[str]:
    warnings: list[str] = []
    if other_workspaces:
        warnings.append(f"Plan {plan_label} is also claimed in other workspaces: {', '.join(other_workspaces)}")
    if other_users:
        warnings.append(f"Plan {plan_label} is also claimed by other users: {', '.join(other_users)}")
    return warnings


def claim_plan(
    store: LedgerStore,
    plan_id: int | None,
    *,
    uuid: str,
    repository_id: str,
    workspace_path: str,
    user: str | None,
    repository_remote_url: str | None = None,
    status: str | None = None,
    now: datetime | None = None,
) -> ClaimResult:
    """Record that ``workspace_path`` (and ``user``) work on plan ``uuid``.

    Re-claiming with identical arguments is a no-op that returns
    ``persisted=False`` without writing.

    Raises:
        VersionConflict: Another process wrote the ledger between our read
            and our write. Nothing was written; re-run the claim.
        LockTimeout: The ledger write lock could not be acquired.
        LedgerParseError: The persisted ledger is corrupt.
    """
    workspace = workspace_path.strip()
    if not workspace:
        raise ValueError("workspace_path must not be empty")
    claimant = user.strip() if user and user.strip() else None
    timestamp = now or utc_now()
    label = _plan_label(plan_id, uuid)

    ledger = store.read(repository_id, repository_remote_url)
    existing = ledger.assignments.get(uuid)

    warnings: list[str] = []
    if existing is not None:
        other_workspaces = [path for path in existing.workspace_paths if path != workspace]
        other_users = [name for name in existing.users if name != claimant]
        warnings = build_claim_warnings(label, other_workspaces, other_users)

    created = existing is None
    if existing is None:
        entry = AssignmentEntry(
            plan_id=plan_id,
            workspace_paths=[],
            users=[],
            status=status,
            assigned_at=timestamp,
            updated_at=timestamp,
        )
    else:
        entry = existing.model_copy(deep=True)
    changed = created

    added_workspace = workspace not in entry.workspace_paths
    if added_workspace:
        entry.workspace_paths = [*entry.workspace_paths, workspace]
        changed = True

    added_user = claimant is not None and claimant not in entry.users
    if added_user:
        entry.users = [*entry.users, claimant]
        changed = True

    owners = dict(entry.workspace_owners or {})
    if claimant is not None:
        if owners.get(workspace) != claimant:
            owners[workspace] = claimant
            changed = True
    elif workspace in owners:
        del owners[workspace]
        changed = True
    entry.workspace_owners = owners or None

    if plan_id is not None and entry.plan_id != plan_id:
        entry.plan_id = plan_id
        changed = True

    if status is not None and entry.status != status:
        entry.status = status
        changed = True

    if not changed:
        logger.debug("Plan %s already claimed by %s in %s; nothing to write", label, claimant, workspace)
        return ClaimResult(
            entry=existing,
            created=False,
            added_workspace=False,
            added_user=False,
            warnings=warnings,
            persisted=False,
        )

    entry.updated_at = timestamp
    assignments = dict(ledger.assignments)
    assignments[uuid] = entry
    next_ledger = ledger.next_version(assignments=assignments)
    if repository_remote_url and not next_ledger.repository_remote_url:
        next_ledger.repository_remote_url = repository_remote_url

    store.write(next_ledger, expected_version=ledger.version)
    logger.debug("Claimed plan %s for %s in %s (version %d)", label, claimant, workspace, next_ledger.version)

    return ClaimResult(
        entry=entry,
        created=created,
        added_workspace=added_workspace,
        added_user=added_user,
        warnings=warnings,
        persisted=True,
    )


def release_plan(
    store: LedgerStore,
    *,
    uuid: str,
    repository_id: str,
    workspace_path: str | None = None,
    user: str | None = None,
    repository_remote_url: str | None = None,
    now: datetime | None = None,
) -> ReleaseResult:
    """Withdraw a claim.

    With neither ``workspace_path`` nor ``user`` the whole entry is removed.
    Otherwise the workspace (and its owner mapping) is dropped, and the user
    is dropped unless they still own another claimed workspace. An entry
    left with no workspaces and no users is removed.

    Raises:
        VersionConflict: The ledger changed between read and write.
    """
    ledger = store.read(repository_id, repository_remote_url)
    existing = ledger.assignments.get(uuid)
    if existing is None:
        return ReleaseResult(existed=False)

    assignments = dict(ledger.assignments)

    if workspace_path is None and user is None:
        del assignments[uuid]
        store.write(ledger.next_version(assignments=assignments), expected_version=ledger.version)
        return ReleaseResult(
            existed=True,
            removed=True,
            cleared_workspace=bool(existing.workspace_paths),
            cleared_user=bool(existing.users),
            persisted=True,
        )

    entry = existing.model_copy(deep=True)
    owners = dict(entry.workspace_owners or {})

    cleared_workspace = False
    if workspace_path is not None and workspace_path in entry.workspace_paths:
        entry.workspace_paths = [path for path in entry.workspace_paths if path != workspace_path]
        owners.pop(workspace_path, None)
        cleared_workspace = True

    cleared_user = False
    if user is not None and user in entry.users and user not in owners.values():
        entry.users = [name for name in entry.users if name != user]
        cleared_user = True

    if not cleared_workspace and not cleared_user:
        return ReleaseResult(existed=True, entry=existing)

    entry.workspace_owners = owners or None
    removed = not entry.workspace_paths and not entry.users
    if removed:
        del assignments[uuid]
    else:
        entry.updated_at = now or utc_now()
        assignments[uuid] = entry

    store.write(ledger.next_version(assignments=assignments), expected_version=ledger.version)
    return ReleaseResult(
        existed=True,
        removed=removed,
        cleared_workspace=cleared_workspace,
        cleared_user=cleared_user,
        entry=None if removed else entry,
        persisted=True,
    )
