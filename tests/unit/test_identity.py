"""Tests for claimkit.identity."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from claimkit.identity import (
    GitIdentityProvider,
    get_user_identity,
    repository_id_from_path,
    repository_id_from_remote,
)


@pytest.mark.parametrize(
    "url",
    [
        "git@github.com:acme/widgets.git",
        "https://github.com/acme/widgets.git",
        "https://token@github.com/acme/widgets",
        "ssh://git@github.com:22/acme/widgets.git",
        "https://github.com/acme/widgets/",
    ],
)
def test_remote_forms_share_one_id(url: str) -> None:
    assert repository_id_from_remote(url) == "github.com__acme__widgets"


def test_remote_id_is_filesystem_safe() -> None:
    repository_id = repository_id_from_remote("https://gitlab.example.com/group/sub group/proj.git")
    assert "/" not in repository_id
    assert repository_id == "gitlab.example.com__group__sub-group__proj"


def test_path_id_is_stable(tmp_path: Path) -> None:
    root = tmp_path / "my repo"
    root.mkdir()
    first = repository_id_from_path(root)
    assert first == repository_id_from_path(root)
    assert first.startswith("local__my-repo-")


class TestGetUserIdentity:
    def test_prefers_claimkit_user(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CLAIMKIT_USER", "agent-7")
        monkeypatch.setenv("USER", "alice")
        assert get_user_identity() == "agent-7"

    def test_falls_back_through_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in ("USER", "USERNAME"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("LOGNAME", "bob")
        assert get_user_identity() == "bob"

    def test_none_when_unset(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in ("USER", "USERNAME", "LOGNAME"):
            monkeypatch.delenv(name, raising=False)
        assert get_user_identity() is None


@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
class TestGitIdentityProvider:
    def test_uses_origin_remote(self, tmp_path: Path) -> None:
        repo = tmp_path / "repo"
        (repo / "src").mkdir(parents=True)
        subprocess.run(["git", "init", "-q"], cwd=repo, check=True)
        subprocess.run(["git", "remote", "add", "origin", "git@github.com:acme/widgets.git"], cwd=repo, check=True)

        identity = GitIdentityProvider().get_repository_identity(repo / "src")

        assert identity.repository_id == "github.com__acme__widgets"
        assert identity.remote_url == "git@github.com:acme/widgets.git"
        assert identity.git_root == repo.resolve()

    def test_without_remote_uses_path(self, tmp_path: Path) -> None:
        repo = tmp_path / "repo"
        repo.mkdir()
        subprocess.run(["git", "init", "-q"], cwd=repo, check=True)

        identity = GitIdentityProvider().get_repository_identity(repo)

        assert identity.remote_url is None
        assert identity.repository_id == repository_id_from_path(repo.resolve())

    def test_outside_repository_uses_cwd(self, tmp_path: Path) -> None:
        plain = tmp_path / "plain"
        plain.mkdir()
        identity = GitIdentityProvider().get_repository_identity(plain)
        assert identity.git_root == plain.resolve()
