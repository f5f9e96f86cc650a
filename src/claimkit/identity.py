"""Repository and user identity for claims.

Every clone or worktree of the same repository must map to the same
``repository_id`` so their claims land in one ledger. The id is derived
from the ``origin`` remote when there is one and from the checkout
directory otherwise.
"""

from __future__ import annotations

import hashlib
import os
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

USER_ENV_VARS = ("CLAIMKIT_USER", "USER", "USERNAME", "LOGNAME")


@dataclass(frozen=True)
class RepositoryIdentity:
    """Stable repository id, origin URL and the workspace's git root."""

    repository_id: str
    remote_url: str | None
    git_root: Path


class IdentityProvider(Protocol):
    def get_repository_identity(self, cwd: Path | None = None) -> RepositoryIdentity:
        ...


def _git(args: list[str], cwd: Path) -> str | None:
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
            timeout=10,
        )
    except (subprocess.CalledProcessError, FileNotFoundError, subprocess.TimeoutExpired):
        return None
    output = result.stdout.strip()
    return output or None


def _safe_segment(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "-", value).strip("-.") or "repo"


def repository_id_from_remote(remote_url: str) -> str:
    """Turn a remote URL into a filesystem-safe id.

    SSH and HTTPS forms of the same remote map to the same id::

        git@github.com:acme/widgets.git     -> github.com__acme__widgets
        https://github.com/acme/widgets.git -> github.com__acme__widgets
    """
    url = remote_url.strip()
    if url.endswith(".git"):
        url = url[:-4]
    url = url.rstrip("/")

    if "://" in url:
        url = url.split("://", 1)[1]
        # Drop credentials and port
        host, _, path = url.partition("/")
        host = host.rsplit("@", 1)[-1].split(":", 1)[0]
    elif "@" in url and ":" in url:
        host, _, path = url.split("@", 1)[1].partition(":")
    else:
        host, path = "local", url

    segments = [host.lower()] + [part for part in path.split("/") if part]
    return "__".join(_safe_segment(part) for part in segments)


def repository_id_from_path(git_root: Path) -> str:
    digest = hashlib.sha256(str(git_root.resolve()).encode("utf-8")).hexdigest()[:8]
    return f"local__{_safe_segment(git_root.name)}-{digest}"


class GitIdentityProvider:
    """Resolve identity with the ``git`` CLI."""

    def get_repository_identity(self, cwd: Path | None = None) -> RepositoryIdentity:
        start = (cwd or Path.cwd()).resolve()
        root_output = _git(["rev-parse", "--show-toplevel"], start)
        git_root = Path(root_output).resolve() if root_output else start

        remote_url = _git(["remote", "get-url", "origin"], git_root)
        if remote_url:
            repository_id = repository_id_from_remote(remote_url)
        else:
            repository_id = repository_id_from_path(git_root)

        return RepositoryIdentity(repository_id=repository_id, remote_url=remote_url, git_root=git_root)


def get_user_identity() -> str | None:
    """Return the current user's name from the environment, if any."""
    for name in USER_ENV_VARS:
        value = os.environ.get(name, "").strip()
        if value:
            return value
    return None
