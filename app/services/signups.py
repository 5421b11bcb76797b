"""
Signup flows – what each /api/auth endpoint actually does.

Every flow that takes a resume token runs the same sequence:
token check → lifecycle guard → OTP / throttle logic.  Conditional
updates that affect no row are never taken as success: the row is read
again, guarded again, and the request fails closed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import NoReturn

from app import db
from app.errors import (
    EmailExists,
    PendingNotFound,
    PendingVerificationExists,
    ResumeTokenInvalid,
)
from app.models import PendingSignup, SignupStatus
from app.services import signup_state
from app.services.clock import Clock, utcnow
from app.services.email import mask_email
from app.services.otp import OtpEngine
from app.services.resend_throttle import ResendBudget, ResendThrottle
from app.services.resume_tokens import ResumeTokenService
from app.services.signup_state import require_pending

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass(frozen=True)
class Registration:
    signup_id: str
    resume_token: str


@dataclass(frozen=True)
class PendingContext:
    email_masked: str
    status: SignupStatus
    resend: ResendBudget


class SignupFlow:
    def __init__(
        self,
        *,
        tokens: ResumeTokenService,
        otp: OtpEngine,
        throttle: ResendThrottle,
        clock: Clock = utcnow,
    ) -> None:
        self._tokens = tokens
        self._otp = otp
        self._throttle = throttle
        self._clock = clock

    async def _load_pending(self, resume_token: str | None) -> PendingSignup:
        signup_id = await self._tokens.verify(resume_token)
        return require_pending(await db.get_signup(signup_id))

    async def _email_taken(self, email: str) -> bool:
        if await db.active_profile_exists(email):
            return True
        return await db.find_signup_by_email(email, SignupStatus.ACTIVE) is not None

    async def _resume(self, existing: PendingSignup) -> NoReturn:
        token = await self._tokens.issue(existing.id)
        logger.info("registration.resumed signup=%s", existing.id)
        raise PendingVerificationExists(token)

    # ── Register ──────────────────────────────────────────────────────

    async def register(self, full_name: str, email: str) -> Registration:
        """
        Start a signup.

        An email owned by an active account is refused.  An email that
        already has a pending signup gets that signup's token rotated and
        handed back through PendingVerificationExists, so the client can
        resume instead of creating a duplicate.
        """
        email = normalize_email(email)
        if await self._email_taken(email):
            logger.info("registration.rejected email_exists %s", mask_email(email))
            raise EmailExists()

        existing = await db.find_signup_by_email(email)
        if existing is not None:
            await self._resume(existing)

        try:
            signup = await db.create_signup(full_name.strip(), email, self._clock())
        except db.EmailInUse:
            # A concurrent registration for the same email inserted first
            existing = await db.find_signup_by_email(email)
            if existing is None:
                raise
            await self._resume(existing)
        await self._otp.issue(signup, count_as_resend=False)
        token = await self._tokens.issue(signup.id)

        logger.info("registration.created signup=%s email=%s", signup.id, mask_email(email))
        return Registration(signup_id=signup.id, resume_token=token)

    # ── Verify ────────────────────────────────────────────────────────

    async def verify(self, resume_token: str | None, code: str) -> None:
        signup = await self._load_pending(resume_token)
        matched_hash = await self._otp.verify(signup, code)

        if await self._email_taken(signup.signup_email):
            # Our own parallel success reads as ALREADY_VERIFIED, anyone else's as taken
            require_pending(await db.get_signup(signup.id))
            logger.info("registration.rejected email_exists signup=%s", signup.id)
            raise EmailExists()

        now = self._clock()
        await db.ensure_profile_for_signup(signup, now)
        try:
            activated = await signup_state.activate(signup.id, matched_hash, now)
        except db.EmailInUse:
            # Another signup on this email was activated since the check above
            raise EmailExists() from None
        if not activated:
            # Status moved or the code was rotated since we read the row
            require_pending(await db.get_signup(signup.id))
            raise PendingNotFound()

        await db.activate_profile(signup.id, signup.signup_email, now)
        await self._tokens.invalidate(signup.id)
        logger.info("registration.verified signup=%s", signup.id)

    # ── Resend ────────────────────────────────────────────────────────

    async def resend(self, resume_token: str | None) -> None:
        signup = await self._load_pending(resume_token)
        self._throttle.check(signup)

        if not await self._otp.issue(signup, count_as_resend=True):
            # Another issuance got there first; judge against the new state
            fresh = require_pending(await db.get_signup(signup.id))
            self._throttle.check(fresh)
            raise PendingNotFound()

    # ── Change email ──────────────────────────────────────────────────

    async def change_email(self, resume_token: str | None, new_email: str) -> str:
        """
        Move the signup to *new_email*; returns the replacement resume token.

        Refused with EMAIL_EXISTS when an active account or another pending
        signup already holds the address.
        """
        signup = await self._load_pending(resume_token)
        # A move sends a code, so it waits out the same cooldown as a resend
        self._throttle.check_cooldown(signup)

        new_email = normalize_email(new_email)
        if await self._email_taken(new_email):
            raise EmailExists()
        other = await db.find_signup_by_email(new_email)
        if other is not None and other.id != signup.id:
            raise EmailExists()

        try:
            token = await self._tokens.rotate_with_email(signup.id, new_email)
        except db.EmailInUse:
            raise EmailExists() from None

        fresh = await db.get_signup(signup.id)
        if fresh is not None and not await self._otp.issue(fresh, count_as_resend=False):
            logger.warning("No code sent after email change for signup %s", signup.id)

        logger.info(
            "registration.email_changed signup=%s email=%s", signup.id, mask_email(new_email)
        )
        return token

    # ── Context ───────────────────────────────────────────────────────

    async def context(self, resume_token: str | None) -> PendingContext:
        """Read-only view for the verification screen; token revocation is not checked."""
        signup_id = self._tokens.peek(resume_token)
        if signup_id is None:
            raise ResumeTokenInvalid()

        signup = require_pending(await db.get_signup(signup_id))
        return PendingContext(
            email_masked=mask_email(signup.signup_email),
            status=signup.status,
            resend=self._throttle.budget(signup),
        )
