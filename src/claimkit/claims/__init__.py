"""Plan claims: merge, release, auto-claim and staleness."""

from claimkit.claims.auto_claim import AutoClaimOutcome, ClaimContext, PlanRef, auto_claim_plan
from claimkit.claims.claim import ClaimResult, ReleaseResult, claim_plan, release_plan
from claimkit.claims.stale import get_configured_stale_timeout_days, get_stale_assignments, is_stale_assignment

__all__ = [
    "AutoClaimOutcome",
    "ClaimContext",
    "ClaimResult",
    "PlanRef",
    "ReleaseResult",
    "auto_claim_plan",
    "claim_plan",
    "get_configured_stale_timeout_days",
    "get_stale_assignments",
    "is_stale_assignment",
    "release_plan",
]
