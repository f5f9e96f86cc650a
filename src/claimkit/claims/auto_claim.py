"""Automatic claiming of plans as commands resolve them.

Whether auto-claim is on is a property of the command being run, so it
lives on a :class:`ClaimContext` that the command builds and passes down,
not in module state. A fresh context is off unless the caller (or
``ClaimSettings.auto_claim``) turns it on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from claimkit.claims.claim import ClaimResult, claim_plan
from claimkit.config import ClaimSettings
from claimkit.identity import GitIdentityProvider, IdentityProvider, RepositoryIdentity, get_user_identity
from claimkit.ledger.store import LedgerStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanRef:
    """The parts of a plan that claiming needs."""

    uuid: str | None
    id: int | None = None
    filename: str | None = None
    status: str | None = None


@dataclass
class AutoClaimOutcome:
    identity: RepositoryIdentity
    user: str | None
    result: ClaimResult


@dataclass
class ClaimContext:
    """Per-command claiming configuration."""

    store: LedgerStore
    identity_provider: IdentityProvider = field(default_factory=GitIdentityProvider)
    user: str | None = None
    auto_claim: bool = False

    @classmethod
    def from_settings(
        cls,
        store: LedgerStore,
        settings: ClaimSettings,
        *,
        identity_provider: IdentityProvider | None = None,
        user: str | None = None,
    ) -> "ClaimContext":
        return cls(
            store=store,
            identity_provider=identity_provider or GitIdentityProvider(),
            user=user if user is not None else get_user_identity(),
            auto_claim=settings.auto_claim,
        )

    def enable_auto_claim(self) -> None:
        self.auto_claim = True

    def disable_auto_claim(self) -> None:
        self.auto_claim = False

    def is_auto_claim_enabled(self) -> bool:
        return self.auto_claim


def auto_claim_plan(
    context: ClaimContext,
    plan: PlanRef,
    *,
    cwd: Path | None = None,
) -> AutoClaimOutcome | None:
    """Claim ``plan`` for the current workspace and user if auto-claim is on.

    Returns ``None`` without touching the ledger when auto-claim is off or
    the plan has no uuid. Ledger errors propagate to the caller.
    """
    if not context.is_auto_claim_enabled():
        return None
    if not plan.uuid:
        logger.debug("Skipping auto-claim for plan without uuid (%s)", plan.filename or plan.id)
        return None

    identity = context.identity_provider.get_repository_identity(cwd)
    user = context.user
    result = claim_plan(
        context.store,
        plan.id,
        uuid=plan.uuid,
        repository_id=identity.repository_id,
        repository_remote_url=identity.remote_url,
        workspace_path=str(identity.git_root),
        user=user,
    )
    for warning in result.warnings:
        logger.info("Auto-claim: %s", warning)
    return AutoClaimOutcome(identity=identity, user=user, result=result)
