"""
Lifecycle guard for pending signups.

    PENDING_VERIFICATION ──verify──▶ ACTIVE     (terminal)
            │
            └──────stale job──────▶ EXPIRED    (terminal)

Every entry point (verify, resend, email change, context) re-reads the row
and runs it through `guard()` before doing anything else.  The components
behind it never compare status strings themselves.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from app import db
from app.errors import AlreadyVerified, PendingNotFound
from app.models import PendingSignup, SignupStatus


class GuardResult(str, Enum):
    PROCEED = "proceed"
    NOT_FOUND = "not_found"
    ALREADY_VERIFIED = "already_verified"


def guard(signup: PendingSignup | None) -> GuardResult:
    """Classify a (possibly missing) signup row."""
    if signup is None or signup.status == SignupStatus.EXPIRED:
        return GuardResult.NOT_FOUND
    if signup.status == SignupStatus.ACTIVE:
        return GuardResult.ALREADY_VERIFIED
    return GuardResult.PROCEED


def require_pending(signup: PendingSignup | None) -> PendingSignup:
    """Return the row if it is actionable, else raise the matching error."""
    result = guard(signup)
    if result is GuardResult.ALREADY_VERIFIED:
        raise AlreadyVerified()
    if result is GuardResult.NOT_FOUND:
        raise PendingNotFound()
    assert signup is not None
    return signup


# ── Transitions ───────────────────────────────────────────────────────────


async def activate(signup_id: str, otp_hash: str, now: datetime) -> bool:
    """PENDING_VERIFICATION → ACTIVE, only while *otp_hash* is still the live code."""
    return await db.activate_signup(signup_id, otp_hash, now)


async def expire_created_before(cutoff: datetime, now: datetime) -> list[str]:
    """PENDING_VERIFICATION → EXPIRED for every row created before *cutoff*."""
    return await db.expire_pending_before(cutoff, now)
