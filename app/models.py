"""Pydantic models for the signup verification API."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


class SignupStatus(str, Enum):
    PENDING_VERIFICATION = "PENDING_VERIFICATION"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"


class PendingSignup(BaseModel):
    """One registration attempt, as stored in `user_signups`."""

    id: str
    status: SignupStatus
    signup_email: str
    full_name: str
    otp_hash: str | None = None
    otp_expires_at: datetime | None = None
    otp_attempts: int = 0
    last_otp_sent_at: datetime | None = None
    resend_count: int = 0
    locked_at: datetime | None = None
    resume_token_hash: str | None = None
    resume_token_expires_at: datetime | None = None
    email_verified_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def has_live_otp(self) -> bool:
        return self.otp_hash is not None and self.otp_expires_at is not None


# ── API payloads ──────────────────────────────────────────────────────────


class ApiModel(BaseModel):
    """Base for request/response bodies: camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterRequest(ApiModel):
    full_name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr


class RegisterResponse(ApiModel):
    success: bool = True
    user_id: str
    resume_token: str


class VerifyOtpRequest(ApiModel):
    resume_token: str = Field(..., min_length=1)
    otp: str = Field(..., pattern=r"^[0-9]{6}$")


class VerifyOtpResponse(ApiModel):
    success: bool = True
    message: str = "Account verified successfully"


class ResendOtpRequest(ApiModel):
    resume_token: str = Field(..., min_length=1)


class SuccessResponse(ApiModel):
    success: bool = True


class ChangePendingEmailRequest(ApiModel):
    resume_token: str = Field(..., min_length=1)
    new_email: EmailStr


class ChangePendingEmailResponse(ApiModel):
    success: bool = True
    resume_token: str


class ResendInfo(ApiModel):
    cooldown_seconds: int
    remaining_today: int


class PendingContextResponse(ApiModel):
    email_masked: str
    status: SignupStatus
    resend: ResendInfo


class ErrorResponse(ApiModel):
    code: str
    details: list | dict | None = None


class HealthResponse(BaseModel):
    status: str
    version: str
    timestamp: datetime
