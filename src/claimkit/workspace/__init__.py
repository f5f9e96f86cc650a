"""Workspace ownership: one active command per working directory."""

from claimkit.workspace.lock import (
    LOCK_FILENAME,
    LockInfo,
    LockType,
    WorkspaceLock,
    get_lock_path,
    is_process_alive,
)

__all__ = [
    "LOCK_FILENAME",
    "LockInfo",
    "LockType",
    "WorkspaceLock",
    "get_lock_path",
    "is_process_alive",
]
