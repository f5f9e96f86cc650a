"""CLI tests for the claimkit command line."""

from __future__ import annotations

import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from typer.testing import CliRunner

from claimkit import __version__
from claimkit.cli import app
from claimkit.identity import GitIdentityProvider, RepositoryIdentity
from claimkit.ledger.models import AssignmentEntry
from claimkit.ledger.store import FileLedgerStore
from claimkit.workspace.lock import LOCK_FILENAME, WorkspaceLock
from tests.utils import REMOTE_URL, REPOSITORY_ID

runner = CliRunner()

UUID = "9a8b7c6d-3333-4000-8000-000000000007"


def _use_workspace(monkeypatch: pytest.MonkeyPatch, path: Path) -> RepositoryIdentity:
    identity = RepositoryIdentity(repository_id=REPOSITORY_ID, remote_url=REMOTE_URL, git_root=path)
    monkeypatch.setattr(GitIdentityProvider, "get_repository_identity", lambda self, cwd=None: identity)
    return identity


@pytest.fixture(autouse=True)
def cli_env(monkeypatch: pytest.MonkeyPatch, workspace: Path) -> RepositoryIdentity:
    monkeypatch.setenv("CLAIMKIT_USER", "alice")
    monkeypatch.setenv("COLUMNS", "200")
    return _use_workspace(monkeypatch, workspace)


@pytest.fixture()
def store(isolated_config_home: Path) -> FileLedgerStore:
    return FileLedgerStore(isolated_config_home)


def test_version() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


class TestClaimCommands:
    def test_claim_records_workspace_and_user(self, store: FileLedgerStore, workspace: Path) -> None:
        result = runner.invoke(app, ["claim", UUID, "--plan-id", "3"])

        assert result.exit_code == 0, result.output
        assert "Claimed plan 3" in result.output
        data = json.loads(store.path_for(REPOSITORY_ID).read_text(encoding="utf-8"))
        entry = data["assignments"][UUID]
        assert entry["workspacePaths"] == [str(workspace)]
        assert entry["users"] == ["alice"]
        assert data["version"] == 1

    def test_repeat_claim_is_noop(self, store: FileLedgerStore) -> None:
        runner.invoke(app, ["claim", UUID, "--plan-id", "3"])
        result = runner.invoke(app, ["claim", UUID, "--plan-id", "3"])

        assert result.exit_code == 0
        assert "already claimed" in result.output
        assert store.read(REPOSITORY_ID).version == 1

    def test_claim_from_second_workspace_warns(
        self, store: FileLedgerStore, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        runner.invoke(app, ["claim", UUID, "--plan-id", "3"])
        other = tmp_path / "other"
        other.mkdir()
        _use_workspace(monkeypatch, other)
        monkeypatch.setenv("CLAIMKIT_USER", "bob")

        result = runner.invoke(app, ["claim", UUID, "--plan-id", "3"])

        assert result.exit_code == 0, result.output
        assert "also claimed" in result.output
        assert len(store.read(REPOSITORY_ID).assignments[UUID].workspace_paths) == 2

    def test_claim_reports_corrupt_ledger(self, store: FileLedgerStore) -> None:
        path = store.path_for(REPOSITORY_ID)
        path.parent.mkdir(parents=True)
        path.write_text("{", encoding="utf-8")

        result = runner.invoke(app, ["claim", UUID])

        assert result.exit_code == 1
        assert "Failed to parse assignments file" in result.output

    def test_release(self, store: FileLedgerStore) -> None:
        runner.invoke(app, ["claim", UUID, "--plan-id", "3"])
        result = runner.invoke(app, ["release", UUID])

        assert result.exit_code == 0, result.output
        assert "Removed claim" in result.output
        assert store.read(REPOSITORY_ID).assignments == {}

    def test_release_unknown_plan(self) -> None:
        result = runner.invoke(app, ["release", UUID])
        assert result.exit_code == 0
        assert "no recorded claim" in result.output


class TestAssignmentsCommands:
    def test_list_empty(self) -> None:
        result = runner.invoke(app, ["assignments", "list"])
        assert result.exit_code == 0
        assert "No assignments recorded" in result.output

    def test_list_shows_claims(self) -> None:
        runner.invoke(app, ["claim", UUID, "--plan-id", "3"])
        result = runner.invoke(app, ["assignments", "list"])

        assert result.exit_code == 0, result.output
        assert "#3" in result.output
        assert "this workspace" in result.output
        assert "Total assignments: 1" in result.output

    @pytest.mark.parametrize("content", [b"not json", b"\xff\xfe{garbage"], ids=["bad-json", "bad-utf8"])
    def test_list_degrades_on_corrupt_ledger(self, store: FileLedgerStore, content: bytes) -> None:
        path = store.path_for(REPOSITORY_ID)
        path.parent.mkdir(parents=True)
        path.write_bytes(content)

        result = runner.invoke(app, ["assignments", "list"])

        assert result.exit_code == 0
        assert "showing no assignments" in result.output
        assert "No assignments recorded" in result.output

    def test_show_conflicts(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        runner.invoke(app, ["claim", UUID, "--plan-id", "3"])
        result = runner.invoke(app, ["assignments", "show-conflicts"])
        assert "No conflicting assignments" in result.output

        other = tmp_path / "other"
        other.mkdir()
        _use_workspace(monkeypatch, other)
        runner.invoke(app, ["claim", UUID, "--plan-id", "3"])

        result = runner.invoke(app, ["assignments", "show-conflicts"])
        assert result.exit_code == 0, result.output
        assert "Conflicting assignments: 1" in result.output

    def _seed_old_claim(self, store: FileLedgerStore, workspace: Path) -> None:
        old = datetime.now(timezone.utc) - timedelta(days=30)
        fresh = datetime.now(timezone.utc)
        ledger = store.read(REPOSITORY_ID)
        store.write(
            ledger.next_version(
                assignments={
                    "old-plan": AssignmentEntry(
                        plan_id=1, workspace_paths=[str(workspace)], assigned_at=old, updated_at=old
                    ),
                    "new-plan": AssignmentEntry(
                        plan_id=2, workspace_paths=[str(workspace)], assigned_at=fresh, updated_at=fresh
                    ),
                }
            )
        )

    def test_clean_stale_with_yes(self, store: FileLedgerStore, workspace: Path) -> None:
        self._seed_old_claim(store, workspace)

        result = runner.invoke(app, ["assignments", "clean-stale", "--yes"])

        assert result.exit_code == 0, result.output
        assert "Removed 1 stale assignment" in result.output
        ledger = store.read(REPOSITORY_ID)
        assert set(ledger.assignments) == {"new-plan"}
        assert ledger.version == 2

    def test_clean_stale_can_be_declined(self, store: FileLedgerStore, workspace: Path) -> None:
        self._seed_old_claim(store, workspace)

        result = runner.invoke(app, ["assignments", "clean-stale"], input="n\n")

        assert result.exit_code == 0
        assert "Aborted" in result.output
        assert set(store.read(REPOSITORY_ID).assignments) == {"old-plan", "new-plan"}

    def test_clean_stale_respects_disabled_timeout(
        self, store: FileLedgerStore, workspace: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        self._seed_old_claim(store, workspace)
        monkeypatch.setenv("CLAIMKIT_STALE_TIMEOUT_DAYS", "0")

        result = runner.invoke(app, ["assignments", "clean-stale", "--yes"])

        assert result.exit_code == 0
        assert "No stale assignments" in result.output
        assert len(store.read(REPOSITORY_ID).assignments) == 2


class TestLockCommands:
    def test_acquire_status_release(self, workspace: Path) -> None:
        result = runner.invoke(app, ["lock", "acquire", "--owner", "alice"])
        assert result.exit_code == 0, result.output
        assert (workspace / LOCK_FILENAME).exists()

        result = runner.invoke(app, ["lock", "status"])
        assert result.exit_code == 0
        assert "persistent lock" in result.output
        assert "owner alice" in result.output

        result = runner.invoke(app, ["lock", "acquire"])
        assert result.exit_code == 1
        assert "Workspace is locked" in result.output

        result = runner.invoke(app, ["lock", "release"])
        assert result.exit_code == 0, result.output
        assert not (workspace / LOCK_FILENAME).exists()

    def test_status_when_unlocked(self) -> None:
        result = runner.invoke(app, ["lock", "status"])
        assert result.exit_code == 0
        assert "is not locked" in result.output

    def test_release_refuses_live_pid_lock_without_force(self, workspace: Path) -> None:
        WorkspaceLock.acquire_lock(workspace, "long running")

        result = runner.invoke(app, ["lock", "release"])
        assert result.exit_code == 1
        assert (workspace / LOCK_FILENAME).exists()

        result = runner.invoke(app, ["lock", "release", "--force"])
        assert result.exit_code == 0
        assert not (workspace / LOCK_FILENAME).exists()

    def test_release_keeps_lock_taken_after_inspection(
        self, workspace: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        WorkspaceLock.acquire_lock(workspace, "reserve", type="persistent")
        inspected = WorkspaceLock.get_lock_info(workspace)
        (workspace / LOCK_FILENAME).unlink()
        WorkspaceLock.acquire_lock(workspace, "newcomer")
        monkeypatch.setattr(WorkspaceLock, "get_lock_info", classmethod(lambda cls, path: inspected))

        result = runner.invoke(app, ["lock", "release", "--force"])

        assert result.exit_code == 1
        assert "changed while releasing" in result.output
        current = WorkspaceLock.get_lock_info_including_stale(workspace)
        assert current is not None
        assert current.command == "newcomer"

    def test_release_force_removes_corrupt_lock(self, workspace: Path) -> None:
        (workspace / LOCK_FILENAME).write_bytes(b"\xff\xfe{garbage")

        result = runner.invoke(app, ["lock", "release"])
        assert result.exit_code == 1
        assert "--force" in result.output

        result = runner.invoke(app, ["lock", "release", "--force"])
        assert result.exit_code == 0, result.output
        assert not (workspace / LOCK_FILENAME).exists()

    def test_clear_stale(self, workspace: Path) -> None:
        WorkspaceLock.acquire_lock(workspace, "fresh")
        result = runner.invoke(app, ["lock", "clear-stale"])
        assert "No stale lock" in result.output
        assert (workspace / LOCK_FILENAME).exists()

    def test_run_holds_lock_and_propagates_exit_code(self, workspace: Path) -> None:
        script = "import pathlib, sys; sys.exit(3 if pathlib.Path('.claimkit.lock').exists() else 0)"
        result = runner.invoke(app, ["lock", "run", "--", sys.executable, "-c", script])

        assert result.exit_code == 3, result.output
        assert not (workspace / LOCK_FILENAME).exists()

    def test_run_refused_while_locked(self, workspace: Path) -> None:
        runner.invoke(app, ["lock", "acquire"])
        result = runner.invoke(app, ["lock", "run", "--", sys.executable, "-c", "pass"])

        assert result.exit_code == 1
        assert "Workspace is locked" in result.output

    def test_run_requires_command(self) -> None:
        result = runner.invoke(app, ["lock", "run"])
        assert result.exit_code == 1
        assert "No command given" in result.output

    def test_run_with_claim(self, store: FileLedgerStore, workspace: Path) -> None:
        result = runner.invoke(
            app,
            ["lock", "run", "--plan", UUID, "--plan-id", "5", "--claim", "--", sys.executable, "-c", "pass"],
        )

        assert result.exit_code == 0, result.output
        entry = store.read(REPOSITORY_ID).assignments[UUID]
        assert entry.plan_id == 5
        assert entry.workspace_paths == [str(workspace)]
        assert entry.users == ["alice"]

    def test_run_without_auto_claim_does_not_claim(self, store: FileLedgerStore) -> None:
        result = runner.invoke(app, ["lock", "run", "--plan", UUID, "--", sys.executable, "-c", "pass"])

        assert result.exit_code == 0, result.output
        assert store.read(REPOSITORY_ID).assignments == {}


class TestConfigCommands:
    def test_auto_claim_toggle(self, isolated_config_home: Path) -> None:
        result = runner.invoke(app, ["config", "auto-claim", "on"])
        assert result.exit_code == 0, result.output
        assert "auto_claim: true" in (isolated_config_home / "config.yaml").read_text(encoding="utf-8")

        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "assignments.auto_claim" in result.output

    def test_auto_claim_rejects_bad_value(self) -> None:
        result = runner.invoke(app, ["config", "auto-claim", "maybe"])
        assert result.exit_code == 1

    def test_stale_timeout(self, isolated_config_home: Path) -> None:
        result = runner.invoke(app, ["config", "stale-timeout", "0"])
        assert result.exit_code == 0
        assert "disabled" in result.output
        assert "stale_timeout: 0" in (isolated_config_home / "config.yaml").read_text(encoding="utf-8")

    def test_backend(self, isolated_config_home: Path) -> None:
        assert runner.invoke(app, ["config", "backend", "mongo"]).exit_code == 1
        assert runner.invoke(app, ["config", "backend", "sqlite"]).exit_code == 0
        assert "backend: sqlite" in (isolated_config_home / "config.yaml").read_text(encoding="utf-8")

    def test_auto_claim_setting_enables_run_claim(self, store: FileLedgerStore) -> None:
        runner.invoke(app, ["config", "auto-claim", "on"])
        result = runner.invoke(app, ["lock", "run", "--plan", UUID, "--", sys.executable, "-c", "pass"])

        assert result.exit_code == 0, result.output
        assert UUID in store.read(REPOSITORY_ID).assignments
