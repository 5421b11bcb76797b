"""
FastAPI dependency providers.

Tests swap the clock and the OTP sender through ``app.dependency_overrides``;
everything else is built from them per request.
"""

import logging
from typing import Annotated

from fastapi import Depends

from app.services.clock import Clock, utcnow
from app.services.email import send_otp_email
from app.services.otp import OtpEngine, OtpSender
from app.services.resend_throttle import ResendThrottle
from app.services.resume_tokens import ResumeTokenService
from app.services.signups import SignupFlow

logger = logging.getLogger(__name__)


def get_clock() -> Clock:
    return utcnow


def get_otp_sender() -> OtpSender:
    return send_otp_email


def get_signup_flow(
    clock: Annotated[Clock, Depends(get_clock)],
    sender: Annotated[OtpSender, Depends(get_otp_sender)],
) -> SignupFlow:
    return SignupFlow(
        tokens=ResumeTokenService(clock=clock),
        otp=OtpEngine(sender=sender, clock=clock),
        throttle=ResendThrottle(clock=clock),
        clock=clock,
    )


Signups = Annotated[SignupFlow, Depends(get_signup_flow)]
