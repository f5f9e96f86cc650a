"""Read-modify-write helpers built on a :class:`LedgerStore`."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable

from claimkit.errors import VersionConflict
from claimkit.ledger.models import AssignmentLedger
from claimkit.ledger.store import LedgerStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5

Mutation = Callable[[AssignmentLedger], "AssignmentLedger | None"]


@dataclass(frozen=True)
class PlanIdRange:
    """Inclusive range of numeric plan ids reserved in one call."""

    start_id: int
    end_id: int


def update_ledger(
    store: LedgerStore,
    repository_id: str,
    mutate: Mutation,
    *,
    repository_remote_url: str | None = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> AssignmentLedger | None:
    """Apply ``mutate`` to the current ledger, retrying on version conflicts.

    ``mutate`` receives a private copy of the persisted ledger and returns
    either the next ledger (version bumped, e.g. via
    :meth:`AssignmentLedger.next_version`) or ``None`` when there is nothing
    to write. It may run more than once and must not have side effects.

    Returns:
        The ledger that was written, or ``None`` if ``mutate`` declined.

    Raises:
        VersionConflict: If every attempt lost the race to another writer.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(1, max_attempts + 1):
        current = store.read(repository_id, repository_remote_url)
        updated = mutate(current.model_copy(deep=True))
        if updated is None:
            return None
        try:
            store.write(updated, expected_version=current.version)
        except VersionConflict:
            if attempt == max_attempts:
                raise
            logger.debug(
                "Ledger for %s changed during update (attempt %d/%d); retrying",
                repository_id,
                attempt,
                max_attempts,
            )
            continue
        return updated

    raise AssertionError("unreachable")


def remove_assignments(store: LedgerStore, repository_id: str, uuids: Iterable[str]) -> list[str]:
    """Delete the given plan claims. Returns the uuids that were present."""
    targets = list(dict.fromkeys(uuids))
    removed: list[str] = []

    def mutate(ledger: AssignmentLedger) -> AssignmentLedger | None:
        present = [uuid for uuid in targets if uuid in ledger.assignments]
        removed[:] = present
        if not present:
            return None
        remaining = {uuid: entry for uuid, entry in ledger.assignments.items() if uuid not in present}
        return ledger.next_version(assignments=remaining)

    update_ledger(store, repository_id, mutate)
    return removed


def remove_assignment(store: LedgerStore, repository_id: str, uuid: str) -> bool:
    """Delete one plan claim. Returns False if it did not exist."""
    return bool(remove_assignments(store, repository_id, [uuid]))


def reserve_next_plan_id(
    store: LedgerStore,
    repository_id: str,
    local_max_id: int,
    count: int = 1,
    *,
    repository_remote_url: str | None = None,
) -> PlanIdRange:
    """Reserve ``count`` consecutive numeric plan ids shared across workspaces.

    The range starts after the larger of ``local_max_id`` and the ledger's
    ``highest_plan_id``. Concurrent reservations never overlap because each
    one is a versioned write.
    """
    if count < 1:
        raise ValueError("count must be at least 1")

    reserved: list[PlanIdRange] = []

    def mutate(ledger: AssignmentLedger) -> AssignmentLedger:
        start = max(local_max_id, ledger.highest_plan_id or 0) + 1
        end = start + count - 1
        reserved[:] = [PlanIdRange(start_id=start, end_id=end)]
        return ledger.next_version(highest_plan_id=end)

    update_ledger(
        store,
        repository_id,
        mutate,
        repository_remote_url=repository_remote_url,
        max_attempts=DEFAULT_MAX_ATTEMPTS * 4,
    )
    return reserved[0]
