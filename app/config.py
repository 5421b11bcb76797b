"""
Application configuration from environment variables.

All settings have sensible defaults for local development.
A .env file in the project root is loaded automatically (if present).
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file before reading any env vars
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

# ── Environment ───────────────────────────────────────────────────────────

ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
APP_VERSION = "0.1.0"

# ── Paths ─────────────────────────────────────────────────────────────────

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DATA_DIR = PROJECT_ROOT / "data"

# SQLite database file
DB_PATH: str = os.getenv("DB_PATH", str(DATA_DIR / "signups.db"))

# ── Resume tokens (JWT) ───────────────────────────────────────────────────

JWT_SECRET: str = os.getenv("JWT_SECRET", "dev-secret-change-me-in-production")
JWT_ALGORITHM: str = "HS256"
RESUME_TOKEN_TTL_MINUTES: int = int(os.getenv("RESUME_TOKEN_TTL_MINUTES", "30"))

# ── OTP ───────────────────────────────────────────────────────────────────

# Key for the one-way OTP hash. Falls back to the JWT secret in development.
OTP_HASH_SECRET: str = os.getenv("OTP_HASH_SECRET", JWT_SECRET)
OTP_TTL_MINUTES: int = int(os.getenv("OTP_TTL_MINUTES", "10"))
OTP_MAX_ATTEMPTS: int = int(os.getenv("OTP_MAX_ATTEMPTS", "5"))
OTP_RESEND_COOLDOWN_SECONDS: int = int(os.getenv("OTP_RESEND_COOLDOWN_SECONDS", "60"))
OTP_DAILY_RESEND_CAP: int = int(os.getenv("OTP_DAILY_RESEND_CAP", "5"))

# ── Stale signup expiry ───────────────────────────────────────────────────

SIGNUP_EXPIRATION_DAYS: int = int(os.getenv("SIGNUP_EXPIRATION_DAYS", "7"))

# How often the expiry job runs (seconds). Once a day by default.
EXPIRY_JOB_INTERVAL_SECONDS: float = float(os.getenv("EXPIRY_JOB_INTERVAL_SECONDS", "86400"))

# ── Rate limiting ─────────────────────────────────────────────────────────

# Any `limits` storage URI: memory:// (per process) or redis://host:6379 (shared).
RATE_LIMIT_STORAGE_URI: str = os.getenv("RATE_LIMIT_STORAGE_URI", "memory://")

# Coarse per-address limit applied to every route.
RATE_LIMIT_DEFAULT: str = os.getenv("RATE_LIMIT_DEFAULT", "60/minute")

# ── SMTP ──────────────────────────────────────────────────────────────────

SMTP_HOST: str = os.getenv("SMTP_HOST", "")
SMTP_PORT: int = int(os.getenv("SMTP_PORT", "587"))
SMTP_USERNAME: str = os.getenv("SMTP_USERNAME", "")
SMTP_PASSWORD: str = os.getenv("SMTP_PASSWORD", "")
SMTP_FROM_EMAIL: str = os.getenv("SMTP_FROM_EMAIL", "noreply@ignite.local")
SMTP_USE_TLS: bool = os.getenv("SMTP_USE_TLS", "true").lower() == "true"

# Set to "false" to force console-only mode even when SMTP credentials are present.
# Handy for local development to avoid burning real SMTP quota.
_SMTP_ENABLED_OVERRIDE: str = os.getenv("SMTP_ENABLED", "auto")


def smtp_enabled() -> bool:
    """True when SMTP should actually send emails.

    Controlled by SMTP_ENABLED env var:
      • "auto" (default): send if credentials are configured
      • "true":  always send (will fail if credentials are missing)
      • "false": never send, print to console instead
    """
    if _SMTP_ENABLED_OVERRIDE.lower() == "false":
        return False
    if _SMTP_ENABLED_OVERRIDE.lower() == "true":
        return True
    # "auto": send only when credentials are fully configured
    return bool(SMTP_HOST and SMTP_USERNAME and SMTP_PASSWORD)
