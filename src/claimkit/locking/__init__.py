"""Lock-file primitive shared by the workspace lock and the ledger."""

from claimkit.locking.file_lock import (
    LOCK_ACQUIRE_TIMEOUT,
    LOCK_RETRY_DELAY,
    LOCK_STALE_THRESHOLD,
    acquire_file_lock,
    file_lock,
)

__all__ = [
    "LOCK_ACQUIRE_TIMEOUT",
    "LOCK_RETRY_DELAY",
    "LOCK_STALE_THRESHOLD",
    "acquire_file_lock",
    "file_lock",
]
