"""
One-time codes for email verification.

Only an HMAC of the code is stored.  Issuing a code resets the attempt
counter and any lock; every verification that gets as far as comparing
(late codes included) counts as an attempt, and the attempt that reaches
the threshold is answered with OTP_LOCKED whatever its other outcome.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from collections.abc import Awaitable, Callable
from datetime import timedelta

from app import db
from app.config import OTP_HASH_SECRET, OTP_MAX_ATTEMPTS, OTP_TTL_MINUTES
from app.errors import OtpExpired, OtpInvalid, OtpLocked, PendingNotFound
from app.models import PendingSignup
from app.services.clock import Clock, utcnow
from app.services.email import send_otp_email
from app.services.signup_state import require_pending

logger = logging.getLogger(__name__)

# (to_email, full_name, otp_code) → delivery
OtpSender = Callable[[str, str, str], Awaitable[None]]


def generate_otp() -> str:
    """Six random digits."""
    return f"{secrets.randbelow(1_000_000):06d}"


def hash_otp(code: str, secret: str = OTP_HASH_SECRET) -> str:
    return hmac.new(secret.encode(), code.encode(), hashlib.sha256).hexdigest()


class OtpEngine:
    def __init__(
        self,
        *,
        sender: OtpSender = send_otp_email,
        clock: Clock = utcnow,
        ttl_minutes: int = OTP_TTL_MINUTES,
        max_attempts: int = OTP_MAX_ATTEMPTS,
        hash_secret: str = OTP_HASH_SECRET,
    ) -> None:
        self._sender = sender
        self._clock = clock
        self._ttl = timedelta(minutes=ttl_minutes)
        self._max_attempts = max_attempts
        self._hash_secret = hash_secret

    @property
    def ttl_seconds(self) -> int:
        return int(self._ttl.total_seconds())

    # ── Issuance ───────────────────────────────────────────────────────

    async def issue(self, signup: PendingSignup, *, count_as_resend: bool) -> bool:
        """
        Store a fresh code for *signup* and hand it to the sender.

        Returns False without sending anything if the row changed since it
        was read (another issuance won, or it left PENDING_VERIFICATION).
        """
        code = generate_otp()
        now = self._clock()
        stored = await db.store_otp(
            signup.id,
            hash_otp(code, self._hash_secret),
            now + self._ttl,
            now,
            expected_last_sent_at=signup.last_otp_sent_at,
            bump_resend_count=count_as_resend,
        )
        if not stored:
            logger.info("OTP issuance lost a race for signup %s", signup.id)
            return False

        logger.info("OTP issued for signup %s (resend=%s)", signup.id, count_as_resend)
        await self._sender(signup.signup_email, signup.full_name, code)
        return True

    async def clear(self, signup_id: str) -> None:
        """Forget the live code. Idempotent."""
        await db.clear_otp(signup_id, self._clock())

    # ── Verification ───────────────────────────────────────────────────

    def is_locked(self, signup: PendingSignup) -> bool:
        return signup.locked_at is not None or signup.otp_attempts >= self._max_attempts

    async def verify(self, signup: PendingSignup, code: str) -> str:
        """
        Check *code* against the live OTP of a pending signup.

        Returns the matched hash (the activation update is conditional on
        it) or raises OtpLocked / OtpExpired / OtpInvalid / PendingNotFound.
        """
        if self.is_locked(signup):
            raise OtpLocked()
        if not signup.has_live_otp:
            raise PendingNotFound()

        now = self._clock()
        if now > signup.otp_expires_at:  # type: ignore[operator]
            await self._count_failed_attempt(signup)
            raise OtpExpired()

        supplied = hash_otp(code, self._hash_secret)
        if not hmac.compare_digest(supplied, signup.otp_hash):  # type: ignore[arg-type]
            await self._count_failed_attempt(signup)
            raise OtpInvalid()

        return supplied

    async def _count_failed_attempt(self, signup: PendingSignup) -> None:
        attempts = await db.bump_otp_attempts(
            signup.id, self._max_attempts, self._clock()
        )
        if attempts is None:
            # Row left PENDING_VERIFICATION under us
            require_pending(await db.get_signup(signup.id))
            raise PendingNotFound()

        if attempts >= self._max_attempts:
            logger.warning(
                "OTP locked for signup %s after %d attempts", signup.id, attempts
            )
            raise OtpLocked()
