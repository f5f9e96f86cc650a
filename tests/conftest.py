from __future__ import annotations

import atexit
import signal
from datetime import timedelta
from pathlib import Path
from typing import Iterator

import pytest

from claimkit.ledger.store import FileLedgerStore, MemoryLedgerStore
from claimkit.workspace.lock import WorkspaceLock


@pytest.fixture(autouse=True)
def isolated_config_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the per-user config root at a temp dir and drop env overrides."""
    home = tmp_path / "config-home"
    monkeypatch.setenv("CLAIMKIT_CONFIG_HOME", str(home))
    for name in ("CLAIMKIT_AUTO_CLAIM", "CLAIMKIT_STALE_TIMEOUT_DAYS", "CLAIMKIT_USER"):
        monkeypatch.delenv(name, raising=False)
    return home


@pytest.fixture(autouse=True)
def reset_workspace_lock() -> Iterator[None]:
    yield
    WorkspaceLock.set_test_pid(None)
    WorkspaceLock.stale_after = timedelta(hours=24)
    WorkspaceLock._cleanup_by_workspace.clear()
    # Put back the handlers setup_cleanup_handlers replaced in this process
    for signum, previous in WorkspaceLock._previous_signal_handlers.items():
        if previous is not None:
            signal.signal(signum, previous)
    WorkspaceLock._previous_signal_handlers.clear()
    if WorkspaceLock._exit_hooks_installed:
        atexit.unregister(WorkspaceLock._run_cleanups)
        WorkspaceLock._exit_hooks_installed = False


@pytest.fixture()
def memory_store() -> MemoryLedgerStore:
    return MemoryLedgerStore()


@pytest.fixture()
def file_store(isolated_config_home: Path) -> FileLedgerStore:
    return FileLedgerStore(isolated_config_home)


@pytest.fixture()
def workspace(tmp_path: Path) -> Path:
    path = tmp_path / "workspace"
    path.mkdir()
    return path

