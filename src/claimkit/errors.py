"""Error taxonomy for workspace locks and the claim ledger.

Every failure the core can report is a subclass of :class:`ClaimKitError`
and carries an :class:`ErrorKind`. Callers that prefer branching over
``try``/``except`` can wrap a call with :func:`capture` and inspect
``outcome.kind`` instead of matching on exception names or messages.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Generic, TypeVar

if TYPE_CHECKING:
    from claimkit.workspace.lock import LockInfo

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Machine-readable classification of a core operation's result."""

    OK = "ok"
    LOCK_TIMEOUT = "lock_timeout"
    WORKSPACE_LOCKED = "workspace_locked"
    VERSION_CONFLICT = "version_conflict"
    PARSE_ERROR = "parse_error"


class ClaimKitError(Exception):
    """Base exception for lock and ledger errors."""

    kind: ErrorKind = ErrorKind.PARSE_ERROR


class LockTimeout(ClaimKitError):
    """The ledger write lock could not be acquired before the deadline."""

    kind = ErrorKind.LOCK_TIMEOUT

    def __init__(self, lock_path: Path, timeout: float):
        self.lock_path = lock_path
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout:.2f}s acquiring lock at {lock_path}")


class WorkspaceLocked(ClaimKitError):
    """A live workspace lock is held by another process."""

    kind = ErrorKind.WORKSPACE_LOCKED

    def __init__(self, workspace_path: Path, lock_info: "LockInfo"):
        self.workspace_path = workspace_path
        self.lock_info = lock_info
        holder = f"pid {lock_info.pid}" if lock_info.pid is not None else "a persistent lock"
        super().__init__(
            f"Workspace {workspace_path} is locked by {holder} "
            f"on {lock_info.hostname} (command: {lock_info.command}, "
            f"since {lock_info.acquired_at.isoformat()})"
        )


class VersionConflict(ClaimKitError):
    """A ledger write was based on a version that is no longer current."""

    kind = ErrorKind.VERSION_CONFLICT

    def __init__(
        self,
        repository_id: str,
        expected_version: int,
        actual_version: int,
        message: str | None = None,
    ):
        self.repository_id = repository_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            message
            or (
                f"Assignments version conflict for {repository_id}: "
                f"expected {expected_version}, found {actual_version}"
            )
        )


class LedgerParseError(ClaimKitError):
    """The persisted ledger is not valid JSON or fails schema validation."""

    kind = ErrorKind.PARSE_ERROR

    def __init__(self, message: str, path: Path | None = None):
        self.path = path
        super().__init__(message)


class LockFileParseError(ClaimKitError):
    """A workspace lock file exists but cannot be decoded."""

    kind = ErrorKind.PARSE_ERROR

    def __init__(self, path: Path, reason: str):
        self.path = path
        super().__init__(f"Failed to parse lock file at {path}: {reason}")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Tagged result of a core operation."""

    kind: ErrorKind
    value: T | None = None
    error: ClaimKitError | None = None

    @property
    def ok(self) -> bool:
        return self.kind is ErrorKind.OK

    def unwrap(self) -> T | None:
        """Return the value, re-raising the captured error if there is one."""
        if self.error is not None:
            raise self.error
        return self.value


def capture(fn: Callable[..., T], *args: Any, **kwargs: Any) -> Outcome[T]:
    """Run ``fn`` and fold any :class:`ClaimKitError` into an :class:`Outcome`.

    Exceptions outside the taxonomy (``OSError``, programming errors)
    propagate unchanged.
    """
    try:
        value = fn(*args, **kwargs)
    except ClaimKitError as exc:
        return Outcome(kind=exc.kind, error=exc)
    return Outcome(kind=ErrorKind.OK, value=value)
