"""
Outcome codes and the exceptions that carry them.

Services raise a `SignupError` subclass; the handler in `app.main` turns it
into ``{"code": ...}`` with the matching HTTP status.  Every failure path
produces exactly one code.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from fastapi import status


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    RESUME_TOKEN_INVALID = "RESUME_TOKEN_INVALID"
    PENDING_NOT_FOUND = "PENDING_NOT_FOUND"
    ALREADY_VERIFIED = "ALREADY_VERIFIED"
    EMAIL_EXISTS = "EMAIL_EXISTS"
    PENDING_VERIFICATION_EXISTS = "PENDING_VERIFICATION_EXISTS"
    OTP_EXPIRED = "OTP_EXPIRED"
    OTP_INVALID = "OTP_INVALID"
    OTP_LOCKED = "OTP_LOCKED"
    OTP_COOLDOWN = "OTP_COOLDOWN"
    OTP_RESEND_LIMIT = "OTP_RESEND_LIMIT"
    TOO_MANY_REQUESTS = "TOO_MANY_REQUESTS"
    INTERNAL = "INTERNAL"


class SignupError(Exception):
    """Base class for every outcome the API reports as an error code."""

    code: ErrorCode = ErrorCode.INTERNAL
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code.value)

    def payload(self) -> dict[str, Any]:
        return {"code": self.code.value}


# ── Authentication ─────────────────────────────────────────────────────────


class ResumeTokenInvalid(SignupError):
    code = ErrorCode.RESUME_TOKEN_INVALID
    status_code = status.HTTP_401_UNAUTHORIZED


# ── Lifecycle ──────────────────────────────────────────────────────────────


class PendingNotFound(SignupError):
    code = ErrorCode.PENDING_NOT_FOUND
    status_code = status.HTTP_404_NOT_FOUND


class AlreadyVerified(SignupError):
    code = ErrorCode.ALREADY_VERIFIED
    status_code = status.HTTP_409_CONFLICT


class EmailExists(SignupError):
    code = ErrorCode.EMAIL_EXISTS
    status_code = status.HTTP_409_CONFLICT


class PendingVerificationExists(SignupError):
    """Registration hit an email that already has a pending signup."""

    code = ErrorCode.PENDING_VERIFICATION_EXISTS
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, resume_token: str) -> None:
        super().__init__()
        self.resume_token = resume_token

    def payload(self) -> dict[str, Any]:
        return {"code": self.code.value, "resumeToken": self.resume_token}


# ── OTP ────────────────────────────────────────────────────────────────────


class OtpExpired(SignupError):
    code = ErrorCode.OTP_EXPIRED
    status_code = status.HTTP_400_BAD_REQUEST


class OtpInvalid(SignupError):
    code = ErrorCode.OTP_INVALID
    status_code = status.HTTP_400_BAD_REQUEST


class OtpLocked(SignupError):
    code = ErrorCode.OTP_LOCKED
    status_code = status.HTTP_423_LOCKED


# ── Abuse throttling ──────────────────────────────────────────────────────


class OtpCooldown(SignupError):
    code = ErrorCode.OTP_COOLDOWN
    status_code = status.HTTP_429_TOO_MANY_REQUESTS


class OtpResendLimit(SignupError):
    code = ErrorCode.OTP_RESEND_LIMIT
    status_code = status.HTTP_429_TOO_MANY_REQUESTS


class TooManyRequests(SignupError):
    code = ErrorCode.TOO_MANY_REQUESTS
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
