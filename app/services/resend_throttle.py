"""
Gates on how often a new code may be sent for one signup.

Two independent checks with fixed precedence: the cooldown is evaluated
first, so a client hammering resend inside the cooldown always gets
OTP_COOLDOWN and learns nothing about how close it is to the cap.

The cap counts resends since the last explicit reset of `resend_count`;
there is no calendar-day rollover.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from app.config import OTP_DAILY_RESEND_CAP, OTP_RESEND_COOLDOWN_SECONDS
from app.errors import OtpCooldown, OtpResendLimit
from app.models import PendingSignup
from app.services.clock import Clock, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResendBudget:
    cooldown_seconds: int
    remaining_today: int


class ResendThrottle:
    def __init__(
        self,
        *,
        cooldown_seconds: int = OTP_RESEND_COOLDOWN_SECONDS,
        daily_cap: int = OTP_DAILY_RESEND_CAP,
        clock: Clock = utcnow,
    ) -> None:
        self._cooldown_seconds = cooldown_seconds
        self._daily_cap = daily_cap
        self._clock = clock

    def _cooldown_left(self, signup: PendingSignup) -> float:
        if signup.last_otp_sent_at is None:
            return 0.0
        elapsed = (self._clock() - signup.last_otp_sent_at).total_seconds()
        return max(0.0, self._cooldown_seconds - elapsed)

    def check_cooldown(self, signup: PendingSignup) -> None:
        """Raise OtpCooldown while the last code is younger than the cooldown."""
        if self._cooldown_left(signup) > 0:
            logger.info("New code for signup %s refused: cooldown", signup.id)
            raise OtpCooldown()

    def check(self, signup: PendingSignup) -> None:
        """Raise OtpCooldown or OtpResendLimit if a resend is not allowed now."""
        self.check_cooldown(signup)
        if signup.resend_count >= self._daily_cap:
            logger.info("Resend for signup %s refused: cap of %d reached", signup.id, self._daily_cap)
            raise OtpResendLimit()

    def budget(self, signup: PendingSignup) -> ResendBudget:
        """What the client may do next, for display."""
        return ResendBudget(
            cooldown_seconds=min(
                self._cooldown_seconds, math.ceil(self._cooldown_left(signup))
            ),
            remaining_today=max(0, self._daily_cap - signup.resend_count),
        )
