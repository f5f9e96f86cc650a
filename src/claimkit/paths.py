"""Per-user configuration root and derived ledger locations.

Provides the canonical functions for locating:
- The user-level claimkit config directory (cross-platform)
- The shared assignments ledger for a repository
- The SQLite ledger database and the settings file
"""

from __future__ import annotations

import os
from pathlib import Path

APP_NAME = "claimkit"
LEDGER_FILENAME = "assignments.json"
LEDGER_DB_FILENAME = "claimkit.db"
SETTINGS_FILENAME = "config.yaml"


def _is_windows() -> bool:
    """Return True when running on Windows."""
    return os.name == "nt"


def get_config_root() -> Path:
    """Return the per-user claimkit configuration directory.

    Resolution order:
    1. CLAIMKIT_CONFIG_HOME environment variable (all platforms)
    2. %APPDATA%\\claimkit\\ on Windows (via platformdirs)
    3. $XDG_CONFIG_HOME/claimkit/ when XDG_CONFIG_HOME is set
    4. ~/.config/claimkit/

    Returns:
        Path: Absolute path to the configuration root. The directory is
        not created.
    """
    if env_home := os.environ.get("CLAIMKIT_CONFIG_HOME", "").strip():
        return Path(env_home)

    if _is_windows():
        from platformdirs import user_config_dir

        return Path(user_config_dir(APP_NAME, appauthor=False, roaming=True))

    if xdg_home := os.environ.get("XDG_CONFIG_HOME", "").strip():
        return Path(xdg_home) / APP_NAME

    return Path.home() / ".config" / APP_NAME


def validate_repository_id(repository_id: str) -> str:
    """Reject repository ids that would escape the ``shared/`` directory."""
    candidate = repository_id.strip()
    if not candidate:
        raise ValueError("repository_id must not be empty")
    if "/" in candidate or "\\" in candidate or candidate in {".", ".."}:
        raise ValueError(f"Invalid repository_id {repository_id!r}: must be a single path segment")
    return candidate


def get_ledger_path(repository_id: str, root: Path | None = None) -> Path:
    """Return ``<root>/shared/<repository_id>/assignments.json``."""
    base = root if root is not None else get_config_root()
    return base / "shared" / validate_repository_id(repository_id) / LEDGER_FILENAME


def get_ledger_db_path(root: Path | None = None) -> Path:
    base = root if root is not None else get_config_root()
    return base / LEDGER_DB_FILENAME


def get_settings_path(root: Path | None = None) -> Path:
    base = root if root is not None else get_config_root()
    return base / SETTINGS_FILENAME
