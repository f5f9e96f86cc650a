"""Staleness policy for ledger entries.

An assignment is stale once neither its ``assigned_at`` nor its
``updated_at`` falls inside the last ``timeout_days`` days. These are
pure functions; removing stale entries is up to the caller.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Mapping

from claimkit.config import DEFAULT_STALE_TIMEOUT_DAYS, ClaimSettings
from claimkit.ledger.models import AssignmentEntry


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def is_stale_assignment(entry: AssignmentEntry, timeout_days: float, now: datetime) -> bool:
    """Return True if ``entry`` was last touched at or before ``now - timeout_days``.

    A non-positive ``timeout_days`` disables staleness.
    """
    if timeout_days <= 0:
        return False
    cutoff = _as_utc(now) - timedelta(days=timeout_days)
    return entry.last_touched <= cutoff


def get_stale_assignments(
    entries: Mapping[str, AssignmentEntry],
    timeout_days: float,
    now: datetime,
) -> dict[str, AssignmentEntry]:
    """Select the stale entries from a ledger's ``assignments`` mapping."""
    if timeout_days <= 0:
        return {}
    return {uuid: entry for uuid, entry in entries.items() if is_stale_assignment(entry, timeout_days, now)}


def get_configured_stale_timeout_days(settings: ClaimSettings | None) -> int:
    if settings is None:
        return DEFAULT_STALE_TIMEOUT_DAYS
    return settings.stale_timeout_days
