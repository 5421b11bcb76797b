"""
Signup verification endpoints – register, verify, resend, change email, context.

Each write endpoint sits behind a per-identity rate limit keyed on the
client address plus the email, or the signup named by the resume token.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from app.dependencies import Signups
from app.models import (
    ChangePendingEmailRequest,
    ChangePendingEmailResponse,
    ErrorResponse,
    PendingContextResponse,
    RegisterRequest,
    RegisterResponse,
    ResendInfo,
    ResendOtpRequest,
    SuccessResponse,
    VerifyOtpRequest,
    VerifyOtpResponse,
)
from app.rate_limit import client_and_email, client_and_signup, rate_limit

router = APIRouter(prefix="/api/auth", tags=["auth"])

MINUTE_MS = 60 * 1000

# 10 / hour per (address + email)
register_limit = rate_limit(
    window_ms=60 * MINUTE_MS, max_requests=10, key_func=client_and_email, scope="register"
)
# 10 / 10 min per (address + signup)
verify_limit = rate_limit(
    window_ms=10 * MINUTE_MS, max_requests=10, key_func=client_and_signup, scope="verify"
)
# 3 / min per (address + signup), on top of the per-signup cooldown
resend_limit = rate_limit(
    window_ms=MINUTE_MS, max_requests=3, key_func=client_and_signup, scope="resend"
)
# 5 / 15 min per (address + signup)
change_email_limit = rate_limit(
    window_ms=15 * MINUTE_MS, max_requests=5, key_func=client_and_signup, scope="change-email"
)

_errors = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
}


@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    operation_id="register",
    summary="Start a signup and email a verification code",
    dependencies=[Depends(register_limit)],
    responses=_errors,
)
async def register(body: RegisterRequest, signups: Signups) -> RegisterResponse:
    """
    Create a pending signup and send a 6-digit code to the email.

    If the email already has a pending signup, answers 409
    PENDING_VERIFICATION_EXISTS with a fresh resume token for it.
    """
    registration = await signups.register(body.full_name, body.email)
    return RegisterResponse(
        user_id=registration.signup_id,
        resume_token=registration.resume_token,
    )


@router.post(
    "/verify-otp",
    response_model=VerifyOtpResponse,
    operation_id="verifyOtp",
    summary="Verify the emailed code and activate the account",
    dependencies=[Depends(verify_limit)],
    responses={**_errors, 423: {"model": ErrorResponse}},
)
async def verify_otp(body: VerifyOtpRequest, signups: Signups) -> VerifyOtpResponse:
    await signups.verify(body.resume_token, body.otp)
    return VerifyOtpResponse()


@router.post(
    "/resend-otp",
    response_model=SuccessResponse,
    operation_id="resendOtp",
    summary="Send a new verification code",
    dependencies=[Depends(resend_limit)],
    responses=_errors,
)
async def resend_otp(body: ResendOtpRequest, signups: Signups) -> SuccessResponse:
    await signups.resend(body.resume_token)
    return SuccessResponse()


@router.patch(
    "/pending/email",
    response_model=ChangePendingEmailResponse,
    operation_id="changePendingEmail",
    summary="Change the email of a signup that is not verified yet",
    dependencies=[Depends(change_email_limit)],
    responses=_errors,
)
async def change_pending_email(
    body: ChangePendingEmailRequest, signups: Signups
) -> ChangePendingEmailResponse:
    """Invalidates the old resume token and code; a new code goes to the new address."""
    token = await signups.change_email(body.resume_token, body.new_email)
    return ChangePendingEmailResponse(resume_token=token)


@router.get(
    "/pending/context",
    response_model=PendingContextResponse,
    operation_id="getPendingContext",
    summary="Masked email and resend budget for the verification screen",
    responses=_errors,
)
async def get_pending_context(
    signups: Signups,
    resume_token: Annotated[str | None, Query(alias="resumeToken")] = None,
) -> PendingContextResponse:
    context = await signups.context(resume_token)
    return PendingContextResponse(
        email_masked=context.email_masked,
        status=context.status,
        resend=ResendInfo(
            cooldown_seconds=context.resend.cooldown_seconds,
            remaining_today=context.resend.remaining_today,
        ),
    )
