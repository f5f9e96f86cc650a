"""Persisted claim ledger documents.

The ledger is one JSON document per repository::

    {
      "repositoryId": "github.com__acme__widgets",
      "repositoryRemoteUrl": "https://github.com/acme/widgets.git",
      "version": 3,
      "assignments": {
        "<plan uuid>": {
          "planId": 42,
          "workspacePaths": ["/work/widgets-1"],
          "workspaceOwners": {"/work/widgets-1": "alice"},
          "users": ["alice"],
          "status": "in_progress",
          "assignedAt": "2026-01-05T10:00:00+00:00",
          "updatedAt": "2026-01-05T10:00:00+00:00"
        }
      },
      "highestPlanId": 42,
      "updatedAt": "2026-01-05T10:00:00+00:00"
    }

Keys are camelCase on disk and snake_case in Python.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def unique_values(values: Iterable[Any]) -> list[str]:
    """Strip, drop empty values and de-duplicate while keeping order."""
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        if value is None:
            continue
        trimmed = str(value).strip()
        if not trimmed or trimmed in seen:
            continue
        seen.add(trimmed)
        result.append(trimmed)
    return result


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class _LedgerModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class AssignmentEntry(_LedgerModel):
    """Who has claimed one plan, keyed in the ledger by the plan's UUID.

    Attributes:
        plan_id: Numeric plan id at claim time (informational, may change)
        workspace_paths: Workspaces that claimed the plan
        users: Users that claimed the plan
        workspace_owners: Most recent claiming user per workspace
        status: Plan status mirrored at claim time (informational)
        assigned_at: First claim
        updated_at: Most recent change
    """

    plan_id: int | None = None
    workspace_paths: list[str] = Field(default_factory=list)
    users: list[str] = Field(default_factory=list)
    workspace_owners: dict[str, str] | None = None
    status: str | None = None
    assigned_at: datetime
    updated_at: datetime

    @field_validator("workspace_paths", "users", mode="before")
    @classmethod
    def _normalize_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, (list, tuple, set)):
            return unique_values(value)
        return value

    @field_validator("workspace_owners", mode="before")
    @classmethod
    def _normalize_owners(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        owners = {
            str(path).strip(): str(user).strip()
            for path, user in value.items()
            if path is not None and user is not None and str(path).strip() and str(user).strip()
        }
        return owners or None

    @field_validator("assigned_at", "updated_at")
    @classmethod
    def _timestamps_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @model_validator(mode="after")
    def _owners_are_known_workspaces(self) -> "AssignmentEntry":
        if self.workspace_owners:
            unknown = sorted(set(self.workspace_owners) - set(self.workspace_paths))
            if unknown:
                raise ValueError(f"workspaceOwners references unclaimed workspaces: {', '.join(unknown)}")
        return self

    @property
    def last_touched(self) -> datetime:
        return max(self.updated_at, self.assigned_at)

    def owner_of(self, workspace_path: str) -> str | None:
        if not self.workspace_owners:
            return None
        return self.workspace_owners.get(workspace_path)


class AssignmentLedger(_LedgerModel):
    """All claims for one repository plus the optimistic-concurrency version."""

    repository_id: str = Field(..., min_length=1)
    repository_remote_url: str | None = None
    version: int = Field(0, ge=0)
    assignments: dict[str, AssignmentEntry] = Field(default_factory=dict)
    highest_plan_id: int | None = Field(None, ge=0)
    updated_at: datetime | None = None

    @field_validator("updated_at")
    @classmethod
    def _updated_utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value) if value is not None else None

    def to_document(self) -> dict[str, Any]:
        """Serialize to the on-disk JSON shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_document(cls, data: Any) -> "AssignmentLedger":
        return cls.model_validate(data)

    def next_version(self, **changes: Any) -> "AssignmentLedger":
        """Copy with ``version + 1``, a fresh ``updated_at`` and ``changes`` applied."""
        update = {"version": self.version + 1, "updated_at": utc_now()}
        update.update(changes)
        return self.model_copy(update=update, deep=True)


def empty_ledger(repository_id: str, repository_remote_url: str | None = None) -> AssignmentLedger:
    """The ledger as it exists before the first write."""
    return AssignmentLedger(
        repository_id=repository_id,
        repository_remote_url=repository_remote_url,
        version=0,
        assignments={},
    )
