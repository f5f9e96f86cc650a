"""User-level claimkit settings stored in <config root>/config.yaml."""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from claimkit.paths import get_settings_path

logger = logging.getLogger(__name__)

DEFAULT_STALE_TIMEOUT_DAYS = 7
DEFAULT_WORKSPACE_LOCK_STALE_HOURS = 24.0
LEDGER_BACKENDS = ("file", "sqlite")

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off", ""}


class SettingsError(RuntimeError):
    """Raised when the settings file is malformed."""


@dataclass(slots=True)
class ClaimSettings:
    """Settings that govern claiming, staleness and storage."""

    stale_timeout_days: int = DEFAULT_STALE_TIMEOUT_DAYS
    auto_claim: bool = False
    ledger_backend: str = "file"
    workspace_lock_stale_hours: float = DEFAULT_WORKSPACE_LOCK_STALE_HOURS

    def to_dict(self) -> dict[str, Any]:
        return {
            "assignments": {
                "stale_timeout": self.stale_timeout_days,
                "auto_claim": self.auto_claim,
                "backend": self.ledger_backend,
            },
            "workspace_lock": {
                "stale_hours": self.workspace_lock_stale_hours,
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ClaimSettings":
        if not isinstance(data, dict):
            return cls()

        settings = cls()
        assignments = data.get("assignments")
        if assignments is not None:
            if not isinstance(assignments, dict):
                raise SettingsError("'assignments' must be a mapping")
            if "stale_timeout" in assignments:
                settings.stale_timeout_days = _require_int(assignments["stale_timeout"], "assignments.stale_timeout")
            if "auto_claim" in assignments:
                value = assignments["auto_claim"]
                if not isinstance(value, bool):
                    raise SettingsError("'assignments.auto_claim' must be a boolean")
                settings.auto_claim = value
            if "backend" in assignments:
                backend = str(assignments["backend"]).strip().lower()
                if backend not in LEDGER_BACKENDS:
                    raise SettingsError(
                        f"'assignments.backend' must be one of {', '.join(LEDGER_BACKENDS)}, got {backend!r}"
                    )
                settings.ledger_backend = backend

        workspace_lock = data.get("workspace_lock")
        if workspace_lock is not None:
            if not isinstance(workspace_lock, dict):
                raise SettingsError("'workspace_lock' must be a mapping")
            if "stale_hours" in workspace_lock:
                hours = workspace_lock["stale_hours"]
                if isinstance(hours, bool) or not isinstance(hours, (int, float)) or hours <= 0:
                    raise SettingsError("'workspace_lock.stale_hours' must be a positive number")
                settings.workspace_lock_stale_hours = float(hours)

        return settings


def _require_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise SettingsError(f"'{name}' must be an integer, got {value!r}")
    return value


def _apply_env_overrides(settings: ClaimSettings) -> ClaimSettings:
    auto_claim = os.environ.get("CLAIMKIT_AUTO_CLAIM")
    if auto_claim is not None:
        normalized = auto_claim.strip().lower()
        if normalized in _TRUTHY:
            settings.auto_claim = True
        elif normalized in _FALSY:
            settings.auto_claim = False
        else:
            logger.warning("Ignoring unrecognised CLAIMKIT_AUTO_CLAIM value %r", auto_claim)

    stale_days = os.environ.get("CLAIMKIT_STALE_TIMEOUT_DAYS")
    if stale_days is not None:
        try:
            settings.stale_timeout_days = int(stale_days.strip())
        except ValueError as exc:
            raise SettingsError(f"CLAIMKIT_STALE_TIMEOUT_DAYS must be an integer, got {stale_days!r}") from exc

    return settings


def load_settings(path: Path | None = None, *, apply_env: bool = True) -> ClaimSettings:
    """Load settings from config.yaml, falling back to defaults.

    Environment overrides (``CLAIMKIT_AUTO_CLAIM``,
    ``CLAIMKIT_STALE_TIMEOUT_DAYS``) are applied on top of the file unless
    ``apply_env`` is false.
    """
    config_path = path or get_settings_path()
    payload: Any = {}
    if config_path.exists():
        yaml = YAML(typ="safe")
        try:
            with config_path.open("r", encoding="utf-8") as handle:
                payload = yaml.load(handle) or {}
        except (YAMLError, UnicodeDecodeError) as exc:
            raise SettingsError(f"Failed to parse {config_path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise SettingsError(f"{config_path} must contain a mapping at the top level")

    settings = ClaimSettings.from_dict(payload)
    return _apply_env_overrides(settings) if apply_env else settings


def save_settings(settings: ClaimSettings, path: Path | None = None) -> None:
    """Persist settings into config.yaml, preserving unrelated sections."""
    config_path = path or get_settings_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    yaml = YAML()
    yaml.preserve_quotes = True

    if config_path.exists():
        with config_path.open("r", encoding="utf-8") as handle:
            payload = yaml.load(handle) or {}
    else:
        payload = {}

    if not isinstance(payload, dict):
        payload = {}

    for section, values in settings.to_dict().items():
        existing = payload.get(section)
        if isinstance(existing, dict):
            existing.update(values)
        else:
            payload[section] = values

    fd, tmp_path = tempfile.mkstemp(
        dir=config_path.parent,
        prefix=".config.yaml.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            yaml.dump(payload, handle)
        os.replace(tmp_path, config_path)
    except Exception:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise
