"""Storage backends for the claim ledger.

All backends implement the same optimistic-concurrency contract:

- ``read`` never fails on a missing ledger; it returns version 0 with no
  assignments.
- ``write`` serializes against other writers, re-reads the persisted
  version and rejects the write with :class:`VersionConflict` unless the
  persisted version equals ``expected_version`` (default
  ``ledger.version - 1``) and the incoming version is exactly one higher.
  A rejected write changes nothing.
- A corrupt or schema-invalid persisted ledger raises
  :class:`LedgerParseError`.
"""

from __future__ import annotations

import json
import logging
import os
import secrets
import sqlite3
from pathlib import Path
from typing import Any, Protocol

from pydantic import ValidationError

from claimkit.config import ClaimSettings
from claimkit.errors import LedgerParseError, LockTimeout, VersionConflict
from claimkit.ledger.models import AssignmentLedger, empty_ledger
from claimkit.locking import LOCK_ACQUIRE_TIMEOUT, acquire_file_lock
from claimkit.paths import get_ledger_db_path, get_ledger_path

logger = logging.getLogger(__name__)


class LedgerStore(Protocol):
    """Repository-scoped, versioned claim storage."""

    def read(self, repository_id: str, repository_remote_url: str | None = None) -> AssignmentLedger:
        ...

    def write(self, ledger: AssignmentLedger, expected_version: int | None = None) -> None:
        ...


def _revalidate(ledger: AssignmentLedger) -> AssignmentLedger:
    try:
        return AssignmentLedger.from_document(ledger.to_document())
    except ValidationError as exc:
        raise ValueError(f"Refusing to write invalid ledger for {ledger.repository_id}: {exc}") from exc


def check_write(ledger: AssignmentLedger, current_version: int, expected_version: int | None) -> None:
    """Apply the optimistic-concurrency rules shared by every backend."""
    expected = expected_version if expected_version is not None else max(0, ledger.version - 1)

    if expected != current_version:
        raise VersionConflict(ledger.repository_id, expected, current_version)

    if ledger.version <= current_version:
        raise VersionConflict(
            ledger.repository_id,
            expected,
            current_version,
            message=(
                f"Assignments version {ledger.version} is not newer than persisted version "
                f"{current_version} for {ledger.repository_id}"
            ),
        )

    if ledger.version != current_version + 1:
        raise VersionConflict(
            ledger.repository_id,
            expected,
            current_version,
            message=(
                f"Assignments version {ledger.version} skips ahead of persisted version "
                f"{current_version} for {ledger.repository_id}; versions must advance by one"
            ),
        )


class FileLedgerStore:
    """One JSON document per repository under ``<config root>/shared/``.

    Writers hold ``<file>.lock`` for the read-compare-replace critical
    section and publish through a temp file plus ``os.replace`` so readers
    never see a partial document.
    """

    def __init__(self, root: Path | None = None, *, lock_timeout: float = LOCK_ACQUIRE_TIMEOUT) -> None:
        self.root = root
        self.lock_timeout = lock_timeout

    def path_for(self, repository_id: str) -> Path:
        return get_ledger_path(repository_id, self.root)

    @staticmethod
    def _read_existing(path: Path) -> AssignmentLedger | None:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except UnicodeDecodeError as exc:
            raise LedgerParseError(f"Assignments file at {path} is not valid UTF-8: {exc}", path) from exc

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise LedgerParseError(f"Failed to parse assignments file at {path}: {exc}", path) from exc

        try:
            return AssignmentLedger.from_document(data)
        except ValidationError as exc:
            raise LedgerParseError(f"Invalid assignments file at {path}: {exc}", path) from exc

    def read(self, repository_id: str, repository_remote_url: str | None = None) -> AssignmentLedger:
        path = self.path_for(repository_id)
        existing = self._read_existing(path)
        if existing is None:
            return empty_ledger(repository_id, repository_remote_url)

        if existing.repository_id != repository_id:
            raise LedgerParseError(
                f"Assignments file repositoryId mismatch: expected {repository_id}, "
                f"found {existing.repository_id}",
                path,
            )
        return existing

    def write(self, ledger: AssignmentLedger, expected_version: int | None = None) -> None:
        validated = _revalidate(ledger)
        path = self.path_for(validated.repository_id)
        path.parent.mkdir(parents=True, exist_ok=True)

        serialized = json.dumps(validated.to_document(), indent=2) + "\n"
        tmp_path = path.with_name(f"{path.name}.tmp-{os.getpid()}-{secrets.token_hex(4)}")

        release = acquire_file_lock(path.with_name(path.name + ".lock"), timeout=self.lock_timeout)
        try:
            current = self._read_existing(path)
            check_write(validated, current.version if current else 0, expected_version)

            tmp_path.write_text(serialized, encoding="utf-8")
            os.replace(tmp_path, path)
            logger.debug("Wrote assignments for %s at version %d", validated.repository_id, validated.version)
        except BaseException:
            try:
                tmp_path.unlink()
            except FileNotFoundError:
                pass
            raise
        finally:
            release()


class SqliteLedgerStore:
    """Ledger rows in a single SQLite database shared by all repositories.

    ``BEGIN IMMEDIATE`` takes SQLite's write lock before the version check,
    which gives the same serialized read-compare-write section as the file
    backend's lock file.
    """

    def __init__(self, db_path: Path | None = None, *, lock_timeout: float = LOCK_ACQUIRE_TIMEOUT) -> None:
        self.db_path = db_path or get_ledger_db_path()
        self.lock_timeout = lock_timeout
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.lock_timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS ledger (
                    repository_id TEXT PRIMARY KEY,
                    remote_url TEXT,
                    version INTEGER NOT NULL,
                    highest_plan_id INTEGER,
                    updated_at TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS assignment (
                    repository_id TEXT NOT NULL,
                    plan_uuid TEXT NOT NULL,
                    entry TEXT NOT NULL,
                    PRIMARY KEY (repository_id, plan_uuid)
                )
                """
            )
        finally:
            conn.close()

    def _load(self, conn: sqlite3.Connection, repository_id: str) -> AssignmentLedger | None:
        row = conn.execute(
            "SELECT remote_url, version, highest_plan_id, updated_at FROM ledger WHERE repository_id = ?",
            (repository_id,),
        ).fetchone()
        if row is None:
            return None

        assignments: dict[str, Any] = {}
        for entry_row in conn.execute(
            "SELECT plan_uuid, entry FROM assignment WHERE repository_id = ? ORDER BY plan_uuid",
            (repository_id,),
        ):
            try:
                assignments[entry_row["plan_uuid"]] = json.loads(entry_row["entry"])
            except json.JSONDecodeError as exc:
                raise LedgerParseError(
                    f"Corrupt assignment {entry_row['plan_uuid']} for {repository_id} in {self.db_path}: {exc}",
                    self.db_path,
                ) from exc

        document = {
            "repositoryId": repository_id,
            "repositoryRemoteUrl": row["remote_url"],
            "version": row["version"],
            "assignments": assignments,
            "highestPlanId": row["highest_plan_id"],
            "updatedAt": row["updated_at"],
        }
        try:
            return AssignmentLedger.from_document(document)
        except ValidationError as exc:
            raise LedgerParseError(f"Invalid ledger for {repository_id} in {self.db_path}: {exc}", self.db_path) from exc

    def read(self, repository_id: str, repository_remote_url: str | None = None) -> AssignmentLedger:
        conn = self._connect()
        try:
            existing = self._load(conn, repository_id)
        finally:
            conn.close()
        return existing or empty_ledger(repository_id, repository_remote_url)

    def write(self, ledger: AssignmentLedger, expected_version: int | None = None) -> None:
        validated = _revalidate(ledger)
        document = validated.to_document()
        conn = self._connect()
        try:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as exc:
                if "locked" in str(exc) or "busy" in str(exc):
                    raise LockTimeout(self.db_path, self.lock_timeout) from exc
                raise
            try:
                current = self._load(conn, validated.repository_id)
                check_write(validated, current.version if current else 0, expected_version)

                conn.execute(
                    """
                    INSERT INTO ledger (repository_id, remote_url, version, highest_plan_id, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(repository_id) DO UPDATE SET
                        remote_url = excluded.remote_url,
                        version = excluded.version,
                        highest_plan_id = excluded.highest_plan_id,
                        updated_at = excluded.updated_at
                    """,
                    (
                        validated.repository_id,
                        validated.repository_remote_url,
                        validated.version,
                        validated.highest_plan_id,
                        document.get("updatedAt"),
                    ),
                )
                conn.execute("DELETE FROM assignment WHERE repository_id = ?", (validated.repository_id,))
                conn.executemany(
                    "INSERT INTO assignment (repository_id, plan_uuid, entry) VALUES (?, ?, ?)",
                    [
                        (validated.repository_id, plan_uuid, json.dumps(entry))
                        for plan_uuid, entry in document["assignments"].items()
                    ],
                )
                conn.execute("COMMIT")
            except BaseException:
                conn.execute("ROLLBACK")
                raise
        finally:
            conn.close()
        logger.debug("Wrote assignments for %s at version %d", validated.repository_id, validated.version)


class MemoryLedgerStore:
    """Process-local ledger storage with the same version rules.

    Documents are kept serialized so callers never share mutable state
    with the store.
    """

    def __init__(self) -> None:
        self._documents: dict[str, dict[str, Any]] = {}
        self.writes = 0

    def read(self, repository_id: str, repository_remote_url: str | None = None) -> AssignmentLedger:
        document = self._documents.get(repository_id)
        if document is None:
            return empty_ledger(repository_id, repository_remote_url)
        return AssignmentLedger.from_document(document)

    def write(self, ledger: AssignmentLedger, expected_version: int | None = None) -> None:
        validated = _revalidate(ledger)
        current = self._documents.get(validated.repository_id)
        check_write(validated, current["version"] if current else 0, expected_version)
        self._documents[validated.repository_id] = validated.to_document()
        self.writes += 1


def open_store(settings: ClaimSettings, root: Path | None = None) -> LedgerStore:
    """Build the backend selected by ``settings.ledger_backend``."""
    if settings.ledger_backend == "sqlite":
        return SqliteLedgerStore(get_ledger_db_path(root))
    return FileLedgerStore(root)


__all__ = [
    "FileLedgerStore",
    "LedgerStore",
    "MemoryLedgerStore",
    "SqliteLedgerStore",
    "check_write",
    "open_store",
]
