"""Shared helpers for claimkit tests."""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path

from claimkit.identity import RepositoryIdentity

REPOSITORY_ID = "github.com__acme__widgets"
REMOTE_URL = "git@github.com:acme/widgets.git"


class FakeIdentityProvider:
    """Identity provider that never shells out to git."""

    def __init__(self, git_root: Path, repository_id: str = REPOSITORY_ID, remote_url: str | None = REMOTE_URL):
        self.identity = RepositoryIdentity(repository_id=repository_id, remote_url=remote_url, git_root=git_root)
        self.calls = 0

    def get_repository_identity(self, cwd: Path | None = None) -> RepositoryIdentity:
        self.calls += 1
        return self.identity


def dead_pid() -> int:
    """Return the pid of a process that has already exited."""
    proc = subprocess.Popen([sys.executable, "-c", "pass"])
    proc.wait()
    return proc.pid
