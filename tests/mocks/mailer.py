"""
In-memory OTP sender that records every code instead of emailing it.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class SentCode:
    to_email: str
    full_name: str
    otp_code: str


@dataclass
class Outbox:
    messages: list[SentCode] = field(default_factory=list)

    async def __call__(self, to_email: str, full_name: str, otp_code: str) -> None:
        self.messages.append(SentCode(to_email, full_name, otp_code))

    @property
    def last(self) -> SentCode:
        return self.messages[-1]

    def last_code_for(self, email: str) -> str:
        for message in reversed(self.messages):
            if message.to_email == email:
                return message.otp_code
        raise AssertionError(f"no code was sent to {email}")


class FailingSender:
    """Sender whose mail server is down."""

    async def __call__(self, to_email: str, full_name: str, otp_code: str) -> None:
        raise ConnectionError("SMTP unavailable")
