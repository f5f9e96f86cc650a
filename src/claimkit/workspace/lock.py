"""Per-workspace exclusive lock.

Each workspace directory carries at most one live lock file
(``.claimkit.lock``). The lock is advisory: it tells other claimkit
processes that a command currently owns the directory, it does not stop
anyone from touching files.

Two lock types exist:

- ``pid`` locks belong to a running process. They are released when the
  command finishes (explicitly, via :meth:`WorkspaceLock.hold_lock`, or by
  the exit/signal handlers) and become reclaimable once the owning process
  is gone or the lock outlives ``WorkspaceLock.stale_after``.
- ``persistent`` locks reserve a workspace across commands. They never go
  stale and are only removed with ``force=True``.
"""

from __future__ import annotations

import atexit
import logging
import os
import secrets
import signal
import socket
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, ClassVar, Iterator, Literal

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from claimkit.errors import LockFileParseError, WorkspaceLocked
from claimkit.locking import file_lock

logger = logging.getLogger(__name__)

LOCK_FILENAME = ".claimkit.lock"
RECLAIM_LOCK_SUFFIX = ".reclaim"
LOCK_VERSION = 2

LockType = Literal["pid", "persistent"]

_CLEANUP_SIGNALS = tuple(
    getattr(signal, name) for name in ("SIGINT", "SIGTERM", "SIGHUP") if hasattr(signal, name)
)


class LockInfo(BaseModel):
    """Contents of a workspace lock file."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: LockType = "pid"
    pid: int | None = None
    command: str
    acquired_at: datetime
    hostname: str | None = None
    owner: str | None = None
    version: int = LOCK_VERSION

    @field_validator("acquired_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


def is_process_alive(pid: int) -> bool:
    """Check whether a process with ``pid`` exists on this host.

    On Windows signal 0 cannot check liveness, so every pid is reported alive and
    staleness falls back to the age rule.
    """
    if pid <= 0:
        return False
    if os.name == "nt":
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user
        return True
    return True


def get_lock_path(workspace_path: Path | str) -> Path:
    return Path(workspace_path) / LOCK_FILENAME


class WorkspaceLock:
    """Acquire, inspect and release workspace locks."""

    stale_after: ClassVar[timedelta] = timedelta(hours=24)

    # Set by tests to impersonate other processes
    _test_pid: ClassVar[int | None] = None

    _cleanup_by_workspace: ClassVar[dict[str, Callable[[], None]]] = {}
    _previous_signal_handlers: ClassVar[dict[int, Any]] = {}
    _exit_hooks_installed: ClassVar[bool] = False

    @classmethod
    def set_test_pid(cls, pid: int | None) -> None:
        """Pretend to be process ``pid`` (``None`` restores the real pid)."""
        cls._test_pid = pid

    @classmethod
    def current_pid(cls) -> int:
        """Pid recorded in and matched against lock files.

        Resolved on every call so a forked child never claims its parent's pid.
        """
        return cls._test_pid if cls._test_pid is not None else os.getpid()

    @classmethod
    def configure(cls, *, stale_hours: float) -> None:
        cls.stale_after = timedelta(hours=stale_hours)

    # ------------------------------------------------------------------
    # Lock file I/O
    # ------------------------------------------------------------------

    @staticmethod
    def _read_lock_file(path: Path) -> LockInfo | None:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except UnicodeDecodeError as exc:
            raise LockFileParseError(path, f"not valid UTF-8: {exc}") from exc
        try:
            return LockInfo.model_validate_json(raw)
        except ValidationError as exc:
            raise LockFileParseError(path, str(exc)) from exc

    @staticmethod
    def _create_lock_file(path: Path, info: LockInfo) -> None:
        """Publish ``info`` at ``path`` only if no lock file exists yet.

        The document is written to a private temp file and hard-linked into
        place, so the lock file never becomes visible half-written.

        Raises:
            FileExistsError: If another lock file is already present.
        """
        tmp_path = path.with_name(f"{path.name}.tmp-{os.getpid()}-{secrets.token_hex(4)}")
        tmp_path.write_text(info.model_dump_json(by_alias=True, exclude_none=True) + "\n", encoding="utf-8")
        try:
            os.link(tmp_path, path)
        finally:
            try:
                tmp_path.unlink()
            except FileNotFoundError:
                pass

    @classmethod
    def _remove_if_unchanged(cls, path: Path, expected: LockInfo) -> bool:
        """Delete the lock file only if it still holds ``expected``.

        Reclaimers serialize on a sibling lock file so that two processes
        reclaiming the same stale lock cannot delete each other's fresh one.
        """
        with file_lock(path.with_name(path.name + RECLAIM_LOCK_SUFFIX)):
            try:
                current = cls._read_lock_file(path)
            except LockFileParseError:
                return False
            if current is None or current != expected:
                return False
            path.unlink()
            return True

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @classmethod
    def acquire_lock(
        cls,
        workspace_path: Path | str,
        command: str,
        *,
        type: LockType = "pid",
        owner: str | None = None,
    ) -> LockInfo:
        """Take the workspace lock or fail immediately.

        A stale ``pid`` lock left behind by a dead process is reclaimed
        transparently.

        Raises:
            WorkspaceLocked: If a live lock is held by someone else.
            LockFileParseError: If the existing lock file is corrupt.
        """
        workspace = Path(workspace_path)
        path = get_lock_path(workspace)
        lock_command = f"{command} (owner: {owner})" if owner else command
        pid = cls.current_pid()
        info = LockInfo(
            type=type,
            pid=pid,
            command=lock_command,
            acquired_at=datetime.now(timezone.utc),
            hostname=socket.gethostname(),
            owner=owner,
        )

        existing: LockInfo | None = None
        for _ in range(3):
            try:
                cls._create_lock_file(path, info)
            except FileExistsError:
                pass
            else:
                logger.debug("Acquired %s workspace lock on %s (pid %s)", type, workspace, pid)
                return info

            existing = cls._read_lock_file(path)
            if existing is None:
                continue
            if not cls.is_lock_stale(existing):
                raise WorkspaceLocked(workspace, existing)
            if cls._remove_if_unchanged(path, existing):
                logger.warning(
                    "Reclaimed stale workspace lock on %s (pid %s, command %r)",
                    workspace,
                    existing.pid,
                    existing.command,
                )

        existing = cls._read_lock_file(path) or existing
        if existing is None:
            raise RuntimeError(f"Failed to acquire workspace lock on {workspace}")
        raise WorkspaceLocked(workspace, existing)

    @classmethod
    def release_lock(cls, workspace_path: Path | str, *, force: bool = False) -> bool:
        """Remove the workspace lock.

        Without ``force`` only a ``pid`` lock held by this process on this
        host is removed. With ``force`` any lock, including a corrupt lock
        file, is removed.

        Returns:
            True if a lock file was removed.
        """
        workspace = Path(workspace_path)
        path = get_lock_path(workspace)

        if force:
            try:
                path.unlink()
            except FileNotFoundError:
                return False
            cls._unregister_cleanup_handlers(workspace)
            logger.debug("Force-released workspace lock on %s", workspace)
            return True

        existing = cls._read_lock_file(path)
        if existing is None:
            return False
        if existing.type != "pid" or existing.pid != cls.current_pid() or existing.hostname != socket.gethostname():
            return False

        try:
            path.unlink()
        except FileNotFoundError:
            return False
        cls._unregister_cleanup_handlers(workspace)
        logger.debug("Released workspace lock on %s", workspace)
        return True

    @classmethod
    def release_if_unchanged(cls, workspace_path: Path | str, expected: LockInfo) -> bool:
        """Remove the lock only if it is still the one described by ``expected``.

        Used after showing a lock to the user, so a lock taken by another
        process in the meantime survives.
        """
        workspace = Path(workspace_path)
        removed = cls._remove_if_unchanged(get_lock_path(workspace), expected)
        if removed:
            cls._unregister_cleanup_handlers(workspace)
            logger.debug("Released inspected workspace lock on %s", workspace)
        return removed

    @classmethod
    def is_lock_stale(cls, lock_info: LockInfo, now: datetime | None = None) -> bool:
        """Decide whether ``lock_info`` belongs to an abandoned owner.

        Persistent locks are never stale. A pid lock is stale when it is
        older than ``stale_after`` or, for locks taken on this host, when
        the owning process no longer exists. Liveness of processes on other
        hosts cannot be checked, so only the age rule applies to them. A
        lock without a hostname counts as foreign.
        """
        if lock_info.type == "persistent":
            return False

        current = now or datetime.now(timezone.utc)
        if current - lock_info.acquired_at > cls.stale_after:
            return True

        if lock_info.hostname != socket.gethostname():
            return False

        if lock_info.pid is None or not is_process_alive(lock_info.pid):
            return True

        return False

    @classmethod
    def get_lock_info(cls, workspace_path: Path | str) -> LockInfo | None:
        """Return the live lock, clearing it first if it is stale."""
        path = get_lock_path(workspace_path)
        existing = cls._read_lock_file(path)
        if existing is None:
            return None
        if cls.is_lock_stale(existing) and cls._remove_if_unchanged(path, existing):
            cls._unregister_cleanup_handlers(Path(workspace_path))
            return None
        return cls._read_lock_file(path)

    @classmethod
    def get_lock_info_including_stale(cls, workspace_path: Path | str) -> LockInfo | None:
        return cls._read_lock_file(get_lock_path(workspace_path))

    @classmethod
    def is_locked(cls, workspace_path: Path | str) -> bool:
        return cls.get_lock_info(workspace_path) is not None

    @classmethod
    def clear_stale_lock(cls, workspace_path: Path | str) -> bool:
        """Remove the lock only if it is stale. Returns True if removed."""
        path = get_lock_path(workspace_path)
        existing = cls._read_lock_file(path)
        if existing is None or not cls.is_lock_stale(existing):
            return False
        removed = cls._remove_if_unchanged(path, existing)
        if removed:
            cls._unregister_cleanup_handlers(Path(workspace_path))
        return removed

    # ------------------------------------------------------------------
    # Cleanup on exit
    # ------------------------------------------------------------------

    @classmethod
    def setup_cleanup_handlers(cls, workspace_path: Path | str) -> None:
        """Release this process's pid lock on normal exit, SIGINT, SIGTERM or SIGHUP.

        Handlers are installed once per process and chain to whatever
        handler was active before. A hard kill bypasses them; the staleness
        rules in :meth:`is_lock_stale` cover that case.
        """
        workspace = Path(workspace_path)
        key = str(workspace)
        if key in cls._cleanup_by_workspace:
            return

        def cleanup() -> None:
            try:
                cls.release_lock(workspace)
            except Exception as exc:
                logger.debug("Ignoring error releasing lock on %s during exit: %s", workspace, exc)
            finally:
                cls._cleanup_by_workspace.pop(key, None)

        cls._cleanup_by_workspace[key] = cleanup
        cls._install_exit_hooks()

    @classmethod
    def _install_exit_hooks(cls) -> None:
        if cls._exit_hooks_installed:
            return
        atexit.register(cls._run_cleanups)
        for signum in _CLEANUP_SIGNALS:
            try:
                cls._previous_signal_handlers[signum] = signal.signal(signum, cls._handle_signal)
            except ValueError:
                # Not the main thread; atexit still covers normal exit
                logger.debug("Cannot install handler for signal %s outside the main thread", signum)
        cls._exit_hooks_installed = True

    @classmethod
    def _run_cleanups(cls) -> None:
        for cleanup in list(cls._cleanup_by_workspace.values()):
            cleanup()

    @classmethod
    def _handle_signal(cls, signum: int, frame: Any) -> None:
        cls._run_cleanups()
        previous = cls._previous_signal_handlers.get(signum, signal.SIG_DFL)
        if callable(previous):
            previous(signum, frame)
        elif previous == signal.SIG_DFL:
            signal.signal(signum, signal.SIG_DFL)
            os.kill(os.getpid(), signum)

    @classmethod
    def _unregister_cleanup_handlers(cls, workspace_path: Path) -> None:
        cls._cleanup_by_workspace.pop(str(workspace_path), None)

    @classmethod
    @contextmanager
    def hold_lock(
        cls,
        workspace_path: Path | str,
        command: str,
        *,
        owner: str | None = None,
    ) -> Iterator[LockInfo]:
        """Hold a pid lock on the workspace for the duration of the block."""
        info = cls.acquire_lock(workspace_path, command, type="pid", owner=owner)
        cls.setup_cleanup_handlers(workspace_path)
        try:
            yield info
        finally:
            cls.release_lock(workspace_path)
