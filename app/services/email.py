"""
Email service – sends verification codes via SMTP.

In development (no SMTP configured), emails are printed to the console
so you can see what *would* be sent without configuring a mail server.
"""

from __future__ import annotations

import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from app.config import (
    OTP_TTL_MINUTES,
    SMTP_FROM_EMAIL,
    SMTP_HOST,
    SMTP_PASSWORD,
    SMTP_PORT,
    SMTP_USE_TLS,
    SMTP_USERNAME,
    smtp_enabled,
)

logger = logging.getLogger(__name__)


def mask_email(email: str) -> str:
    """john.doe@unsw.edu.au → j***@u***.au"""
    local, _, domain = email.partition("@")
    parts = domain.split(".")
    masked_domain = f"{parts[0][:1]}***.{parts[-1]}" if len(parts) > 1 else f"{domain[:1]}***"
    return f"{local[:1]}***@{masked_domain}"


def _build_html_body(full_name: str, otp_code: str) -> str:
    """Build a simple HTML email body showing the code."""
    name = full_name or "there"
    return f"""
    <html>
    <body style="font-family:system-ui,Arial,sans-serif;max-width:520px;color:#333">
      <h2>Verify your email</h2>
      <p>Hi {name},</p>
      <p>Your one-time verification code is:</p>
      <div style="font-size:28px;font-weight:700;letter-spacing:4px;margin:12px 0">
        {otp_code}
      </div>
      <p>This code expires in {OTP_TTL_MINUTES} minutes.
         If you didn't request this, you can ignore the email.</p>
      <hr style="border:none;border-top:1px solid #eee;margin:24px 0">
      <p style="color:#777;font-size:12px">Sent by Ignite • noreply</p>
    </body>
    </html>
    """


async def send_otp_email(to_email: str, full_name: str, otp_code: str) -> None:
    """
    Send (or log) a verification code.

    If SMTP is not configured, falls back to console output.
    """
    subject = "Your Ignite verification code"

    # ── Console fallback (dev mode) ───────────────────────────────────
    if not smtp_enabled():
        logger.info(
            "📧 [DEV] Would send email to %s:\n  Subject: %s\n  Code: %s",
            to_email,
            subject,
            otp_code,
        )
        return

    # ── Real SMTP send ────────────────────────────────────────────────
    import aiosmtplib

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = SMTP_FROM_EMAIL
    msg["To"] = to_email

    # Plain text fallback
    plain = (
        f"Hi {full_name or 'there'},\n\n"
        f"Your verification code is {otp_code}.\n"
        f"It expires in {OTP_TTL_MINUTES} minutes."
    )
    msg.attach(MIMEText(plain, "plain"))
    msg.attach(MIMEText(_build_html_body(full_name, otp_code), "html"))

    try:
        await aiosmtplib.send(
            msg,
            hostname=SMTP_HOST,
            port=SMTP_PORT,
            username=SMTP_USERNAME,
            password=SMTP_PASSWORD,
            start_tls=SMTP_USE_TLS,
        )
        logger.info("Verification email sent to %s", mask_email(to_email))
    except Exception:
        logger.exception("Failed to send email to %s", mask_email(to_email))
        raise
