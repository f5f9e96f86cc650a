"""Shared, versioned claim ledger."""

from claimkit.ledger.models import AssignmentEntry, AssignmentLedger, empty_ledger
from claimkit.ledger.operations import (
    PlanIdRange,
    remove_assignment,
    remove_assignments,
    reserve_next_plan_id,
    update_ledger,
)
from claimkit.ledger.store import (
    FileLedgerStore,
    LedgerStore,
    MemoryLedgerStore,
    SqliteLedgerStore,
    open_store,
)

__all__ = [
    "AssignmentEntry",
    "AssignmentLedger",
    "FileLedgerStore",
    "LedgerStore",
    "MemoryLedgerStore",
    "PlanIdRange",
    "SqliteLedgerStore",
    "empty_ledger",
    "open_store",
    "remove_assignment",
    "remove_assignments",
    "reserve_next_plan_id",
    "update_ledger",
]
