"""
Stale-signup expiry.

Pending signups that were never verified are moved to EXPIRED once they
are older than SIGNUP_EXPIRATION_DAYS.  Their OTP and resume-token state
is cleared in the same update, so old tokens stop working.  Running the
job twice in a row expires nothing the second time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from app.config import EXPIRY_JOB_INTERVAL_SECONDS, SIGNUP_EXPIRATION_DAYS
from app.services import signup_state
from app.services.background import BackgroundWorker
from app.services.clock import Clock, utcnow

logger = logging.getLogger(__name__)


@dataclass
class ExpireResult:
    expired_count: int = 0
    signup_ids: list[str] = field(default_factory=list)


async def expire_stale_signups(
    now: datetime | None = None,
    *,
    max_age_days: int = SIGNUP_EXPIRATION_DAYS,
) -> ExpireResult:
    now = now or utcnow()
    cutoff = now - timedelta(days=max_age_days)

    signup_ids = await signup_state.expire_created_before(cutoff, now)
    if signup_ids:
        logger.info(
            "Expired %d stale signup(s) created before %s",
            len(signup_ids),
            cutoff.isoformat(),
        )
    else:
        logger.debug("No stale signups to expire")
    return ExpireResult(expired_count=len(signup_ids), signup_ids=signup_ids)


class StaleSignupExpirer(BackgroundWorker):
    """Runs `expire_stale_signups` at startup and then once per interval."""

    def __init__(
        self,
        *,
        interval: float = EXPIRY_JOB_INTERVAL_SECONDS,
        clock: Clock = utcnow,
    ) -> None:
        super().__init__(interval=interval, name="StaleSignupExpirer")
        self._clock = clock

    async def run_once(self) -> None:
        await expire_stale_signups(self._clock())
