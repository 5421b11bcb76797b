"""
SQLite database layer using aiosqlite.

Stores pending signups and the profiles they materialise into.
Tables are created automatically on first connect.

Every mutation targets a row by id plus a previous-state predicate and
reports whether a row was actually affected; callers treat "nothing
updated" the same as "row not in the expected state".
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

import aiosqlite

from app.config import DB_PATH
from app.models import PendingSignup, SignupStatus

logger = logging.getLogger(__name__)


class EmailInUse(Exception):
    """A write would give one email two pending signups or two active accounts."""

# ── Module-level connection ───────────────────────────────────────────────

_db: aiosqlite.Connection | None = None


async def init_db() -> None:
    """Open the database and create tables if they don't exist."""
    global _db
    db_path = Path(DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    _db = await aiosqlite.connect(str(db_path))
    _db.row_factory = aiosqlite.Row  # dict-like rows
    await _db.execute("PRAGMA journal_mode=WAL")
    await _db.execute("PRAGMA foreign_keys=ON")

    await _db.executescript(_SCHEMA)
    await _db.commit()
    logger.info("Database initialized at %s", db_path)


async def close_db() -> None:
    """Close the database connection."""
    global _db
    if _db is not None:
        await _db.close()
        _db = None
        logger.info("Database connection closed")


def get_db() -> aiosqlite.Connection:
    """Return the active database connection (must call init_db first)."""
    assert _db is not None, "Database not initialized, call init_db() first"
    return _db


# ── Schema ────────────────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS user_signups (
    id                      TEXT PRIMARY KEY,
    status                  TEXT NOT NULL DEFAULT 'PENDING_VERIFICATION',
    signup_email            TEXT NOT NULL,
    full_name               TEXT NOT NULL,
    otp_hash                TEXT,
    otp_expires_at          TEXT,
    otp_attempts            INTEGER NOT NULL DEFAULT 0,
    last_otp_sent_at        TEXT,
    resend_count            INTEGER NOT NULL DEFAULT 0,
    locked_at               TEXT,
    resume_token_hash       TEXT,
    resume_token_expires_at TEXT,
    email_verified_at       TEXT,
    created_at              TEXT NOT NULL,
    updated_at              TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_signups_email ON user_signups(signup_email, status);
CREATE INDEX IF NOT EXISTS idx_signups_status ON user_signups(status, created_at);
CREATE UNIQUE INDEX IF NOT EXISTS uq_signups_pending_email
    ON user_signups(signup_email) WHERE status = 'PENDING_VERIFICATION';
CREATE UNIQUE INDEX IF NOT EXISTS uq_signups_active_email
    ON user_signups(signup_email) WHERE status = 'ACTIVE';

CREATE TABLE IF NOT EXISTS profiles (
    id              TEXT PRIMARY KEY,
    signup_id       TEXT NOT NULL UNIQUE,
    email           TEXT NOT NULL,
    full_name       TEXT NOT NULL,
    status          TEXT NOT NULL DEFAULT 'PENDING',
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL,
    FOREIGN KEY (signup_id) REFERENCES user_signups(id)
);

CREATE INDEX IF NOT EXISTS idx_profiles_email ON profiles(email, status);
CREATE UNIQUE INDEX IF NOT EXISTS uq_profiles_active_email
    ON profiles(email) WHERE status = 'ACTIVE';
"""

_PENDING = SignupStatus.PENDING_VERIFICATION.value


# ── Helpers ───────────────────────────────────────────────────────────────


def _iso(dt: datetime | None) -> str | None:
    """Normalise to UTC with a fixed width so stored values sort as text."""
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _row_to_signup(row: aiosqlite.Row) -> PendingSignup:
    """Convert a database row to a PendingSignup model."""
    return PendingSignup(**dict(row))


# ══════════════════════════════════════════════════════════════════════════
#                    SIGNUP REPOSITORY
# ══════════════════════════════════════════════════════════════════════════


async def create_signup(full_name: str, email: str, now: datetime) -> PendingSignup:
    """
    Insert a fresh PENDING_VERIFICATION row and return it.

    Raises EmailInUse if the email already has a pending signup.
    """
    db = get_db()
    signup_id = str(uuid4())
    ts = _iso(now)

    try:
        await db.execute(
            """
            INSERT INTO user_signups (id, status, signup_email, full_name, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (signup_id, _PENDING, email, full_name, ts, ts),
        )
    except sqlite3.IntegrityError as exc:
        raise EmailInUse(email) from exc
    await db.commit()
    return await get_signup(signup_id)  # type: ignore[return-value]


async def get_signup(signup_id: str) -> PendingSignup | None:
    """Fetch a single signup by ID."""
    db = get_db()
    async with db.execute(
        "SELECT * FROM user_signups WHERE id = ?", (signup_id,)
    ) as cur:
        row = await cur.fetchone()
    return _row_to_signup(row) if row else None


async def find_signup_by_email(
    email: str,
    status: SignupStatus = SignupStatus.PENDING_VERIFICATION,
) -> PendingSignup | None:
    """Most recent signup for an email in the given status."""
    db = get_db()
    async with db.execute(
        """
        SELECT * FROM user_signups
        WHERE signup_email = ? AND status = ?
        ORDER BY created_at DESC LIMIT 1
        """,
        (email, status.value),
    ) as cur:
        row = await cur.fetchone()
    return _row_to_signup(row) if row else None


async def store_otp(
    signup_id: str,
    otp_hash: str,
    expires_at: datetime,
    now: datetime,
    *,
    expected_last_sent_at: datetime | None,
    bump_resend_count: bool,
) -> bool:
    """
    Replace the live OTP of a pending signup.

    Resets attempts and any lock.  Only succeeds if `last_otp_sent_at`
    still holds the value the caller read, so two concurrent issuances
    cannot both win.
    """
    db = get_db()
    ts = _iso(now)
    cur = await db.execute(
        """
        UPDATE user_signups SET
            otp_hash = ?, otp_expires_at = ?,
            otp_attempts = 0, locked_at = NULL,
            last_otp_sent_at = ?,
            resend_count = resend_count + ?,
            updated_at = ?
        WHERE id = ? AND status = ? AND last_otp_sent_at IS ?
        """,
        (
            otp_hash, _iso(expires_at),
            ts,
            1 if bump_resend_count else 0,
            ts,
            signup_id, _PENDING, _iso(expected_last_sent_at),
        ),
    )
    await db.commit()
    return cur.rowcount == 1


async def bump_otp_attempts(
    signup_id: str,
    lock_threshold: int,
    now: datetime,
) -> int | None:
    """
    Count one verification attempt, store-side.

    Sets `locked_at` in the same statement once the threshold is reached.
    Returns the new attempt count, or None if the row is no longer pending.
    """
    db = get_db()
    ts = _iso(now)
    cur = await db.execute(
        """
        UPDATE user_signups SET
            otp_attempts = otp_attempts + 1,
            locked_at = CASE
                WHEN otp_attempts + 1 >= ? THEN COALESCE(locked_at, ?)
                ELSE locked_at
            END,
            updated_at = ?
        WHERE id = ? AND status = ?
        """,
        (lock_threshold, ts, ts, signup_id, _PENDING),
    )
    await db.commit()
    if cur.rowcount != 1:
        return None

    async with db.execute(
        "SELECT otp_attempts FROM user_signups WHERE id = ?", (signup_id,)
    ) as c:
        row = await c.fetchone()
    return row["otp_attempts"] if row else None


async def clear_otp(signup_id: str, now: datetime) -> None:
    """Drop hash and expiry together. A no-op when already cleared."""
    db = get_db()
    await db.execute(
        """
        UPDATE user_signups SET otp_hash = NULL, otp_expires_at = NULL, updated_at = ?
        WHERE id = ? AND (otp_hash IS NOT NULL OR otp_expires_at IS NOT NULL)
        """,
        (_iso(now), signup_id),
    )
    await db.commit()


async def set_resume_token(
    signup_id: str,
    token_hash: str,
    expires_at: datetime,
    now: datetime,
) -> bool:
    """Bind a resume token to a pending signup, replacing the previous one."""
    db = get_db()
    cur = await db.execute(
        """
        UPDATE user_signups SET
            resume_token_hash = ?, resume_token_expires_at = ?, updated_at = ?
        WHERE id = ? AND status = ?
        """,
        (token_hash, _iso(expires_at), _iso(now), signup_id, _PENDING),
    )
    await db.commit()
    return cur.rowcount == 1


async def clear_resume_token(signup_id: str, now: datetime) -> None:
    """Revoke whatever resume token is bound to the signup. Idempotent."""
    db = get_db()
    await db.execute(
        """
        UPDATE user_signups SET
            resume_token_hash = NULL, resume_token_expires_at = NULL, updated_at = ?
        WHERE id = ? AND (resume_token_hash IS NOT NULL OR resume_token_expires_at IS NOT NULL)
        """,
        (_iso(now), signup_id),
    )
    await db.commit()


async def change_pending_email(
    signup_id: str,
    email: str,
    token_hash: str,
    token_expires_at: datetime,
    now: datetime,
) -> bool:
    """
    Move a pending signup to a new email.

    Clears the live OTP and swaps the resume token in one statement, so the
    old token stops working at the moment the new one exists.  Raises
    EmailInUse if another signup is already pending on *email*.
    """
    db = get_db()
    try:
        cur = await db.execute(
            """
            UPDATE user_signups SET
                signup_email = ?,
                otp_hash = NULL, otp_expires_at = NULL,
                resume_token_hash = ?, resume_token_expires_at = ?,
                updated_at = ?
            WHERE id = ? AND status = ?
            """,
            (email, token_hash, _iso(token_expires_at), _iso(now), signup_id, _PENDING),
        )
    except sqlite3.IntegrityError as exc:
        raise EmailInUse(email) from exc
    await db.commit()
    return cur.rowcount == 1


async def activate_signup(signup_id: str, otp_hash: str, now: datetime) -> bool:
    """
    PENDING_VERIFICATION → ACTIVE, provided the OTP that was matched is
    still the live one.  Clears OTP state and the resume token.  Raises
    EmailInUse if another signup on the same email is already ACTIVE.
    """
    db = get_db()
    ts = _iso(now)
    try:
        cur = await db.execute(
            """
            UPDATE user_signups SET
                status = ?, email_verified_at = ?,
                otp_hash = NULL, otp_expires_at = NULL,
                resume_token_hash = NULL, resume_token_expires_at = NULL,
                updated_at = ?
            WHERE id = ? AND status = ? AND otp_hash = ?
            """,
            (SignupStatus.ACTIVE.value, ts, ts, signup_id, _PENDING, otp_hash),
        )
    except sqlite3.IntegrityError as exc:
        raise EmailInUse() from exc
    await db.commit()
    return cur.rowcount == 1


async def expire_pending_before(cutoff: datetime, now: datetime) -> list[str]:
    """
    PENDING_VERIFICATION → EXPIRED for rows created before *cutoff*.

    Returns the IDs that were expired.
    """
    db = get_db()
    async with db.execute(
        "SELECT id FROM user_signups WHERE status = ? AND created_at < ?",
        (_PENDING, _iso(cutoff)),
    ) as cur:
        rows = await cur.fetchall()
    signup_ids = [r["id"] for r in rows]
    if not signup_ids:
        return []

    placeholders = ", ".join("?" for _ in signup_ids)
    await db.execute(
        f"""
        UPDATE user_signups SET
            status = ?, email_verified_at = NULL,
            otp_hash = NULL, otp_expires_at = NULL,
            resume_token_hash = NULL, resume_token_expires_at = NULL,
            updated_at = ?
        WHERE status = ? AND id IN ({placeholders})
        """,
        (SignupStatus.EXPIRED.value, _iso(now), _PENDING, *signup_ids),
    )
    await db.commit()
    return signup_ids


# ══════════════════════════════════════════════════════════════════════════
#                    PROFILE REPOSITORY
# ══════════════════════════════════════════════════════════════════════════


async def active_profile_exists(email: str) -> bool:
    """True if an ACTIVE profile already owns the email."""
    db = get_db()
    async with db.execute(
        "SELECT 1 FROM profiles WHERE email = ? AND status = 'ACTIVE' LIMIT 1",
        (email,),
    ) as cur:
        row = await cur.fetchone()
    return row is not None


async def ensure_profile_for_signup(signup: PendingSignup, now: datetime) -> str:
    """Create the (not yet active) profile for a signup if missing; return its ID."""
    db = get_db()
    ts = _iso(now)
    await db.execute(
        """
        INSERT OR IGNORE INTO profiles (id, signup_id, email, full_name, status, created_at, updated_at)
        VALUES (?, ?, ?, ?, 'PENDING', ?, ?)
        """,
        (str(uuid4()), signup.id, signup.signup_email, signup.full_name, ts, ts),
    )
    await db.commit()

    async with db.execute(
        "SELECT id FROM profiles WHERE signup_id = ?", (signup.id,)
    ) as cur:
        row = await cur.fetchone()
    return row["id"]


async def activate_profile(signup_id: str, email: str, now: datetime) -> None:
    """
    Flip the profile linked to a signup to ACTIVE, syncing its email.

    Raises EmailInUse if another active profile owns the email.
    """
    db = get_db()
    try:
        await db.execute(
            "UPDATE profiles SET status = 'ACTIVE', email = ?, updated_at = ? WHERE signup_id = ?",
            (email, _iso(now), signup_id),
        )
    except sqlite3.IntegrityError as exc:
        raise EmailInUse(email) from exc
    await db.commit()
