"""Exclusive-create lock files with mtime-based staleness.

A lock is held by whoever manages to create ``lock_path`` with
``O_CREAT | O_EXCL``. Contenders poll until a deadline; a lock file older
than the staleness threshold is assumed to belong to a crashed holder and
is removed. This is a time heuristic, not a liveness check, so the
threshold must be far larger than any legitimate hold time.
"""

from __future__ import annotations

import json
import logging
import os
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator

from claimkit.errors import LockTimeout

logger = logging.getLogger(__name__)

LOCK_RETRY_DELAY = 0.025
LOCK_ACQUIRE_TIMEOUT = 2.0
LOCK_STALE_THRESHOLD = 5 * 60.0

ReleaseFn = Callable[[], None]


def _write_descriptor(fd: int) -> None:
    payload = json.dumps(
        {"pid": os.getpid(), "createdAt": datetime.now(timezone.utc).isoformat()}
    )
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(payload)


def _make_release(lock_path: Path) -> ReleaseFn:
    released = False

    def release() -> None:
        nonlocal released
        if released:
            return
        released = True
        try:
            lock_path.unlink()
        except FileNotFoundError:
            pass
        logger.debug("Released lock %s", lock_path)

    return release


def acquire_file_lock(
    lock_path: Path,
    timeout: float = LOCK_ACQUIRE_TIMEOUT,
    stale_after: float = LOCK_STALE_THRESHOLD,
    retry_delay: float = LOCK_RETRY_DELAY,
) -> ReleaseFn:
    """Acquire ``lock_path`` or raise :class:`LockTimeout`.

    Args:
        lock_path: File used purely as a mutual-exclusion token.
        timeout: Seconds to keep retrying before giving up.
        stale_after: Age in seconds after which an existing lock file is
            considered orphaned and removed.
        retry_delay: Seconds to sleep between attempts.

    Returns:
        A release function that deletes the lock file. Calling it more
        than once, or after the file was removed by someone else, is safe.

    Raises:
        LockTimeout: If the lock is still held when ``timeout`` elapses.
        OSError: For filesystem errors other than the lock already existing.
    """
    lock_path = Path(lock_path)
    deadline = time.monotonic() + timeout

    while True:
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            pass
        else:
            try:
                _write_descriptor(fd)
            except BaseException:
                try:
                    lock_path.unlink()
                except FileNotFoundError:
                    pass
                raise
            logger.debug("Acquired lock %s", lock_path)
            return _make_release(lock_path)

        if time.monotonic() >= deadline:
            raise LockTimeout(lock_path, timeout)

        try:
            age = time.time() - lock_path.stat().st_mtime
        except FileNotFoundError:
            # Holder released between our attempt and the stat
            continue

        if age > stale_after:
            logger.warning("Removing stale lock %s (age %.1fs)", lock_path, age)
            try:
                lock_path.unlink()
            except FileNotFoundError:
                pass
            continue

        time.sleep(retry_delay)


@contextmanager
def file_lock(
    lock_path: Path,
    timeout: float = LOCK_ACQUIRE_TIMEOUT,
    stale_after: float = LOCK_STALE_THRESHOLD,
    retry_delay: float = LOCK_RETRY_DELAY,
) -> Iterator[None]:
    """Hold ``lock_path`` for the duration of the ``with`` block."""
    release = acquire_file_lock(lock_path, timeout=timeout, stale_after=stale_after, retry_delay=retry_delay)
    try:
        yield
    finally:
        release()
