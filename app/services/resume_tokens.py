"""
Resume tokens – bearer credentials for a signup that has no password yet.

A token is ``res_`` + a signed JWT naming the signup.  The SHA-256 of the
most recently issued token is kept on the signup row, so issuing a new
token (or invalidating) kills every older one for that signup.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from datetime import datetime, timedelta

import jwt

from app import db
from app.config import JWT_ALGORITHM, JWT_SECRET, RESUME_TOKEN_TTL_MINUTES
from app.errors import PendingNotFound, ResumeTokenInvalid
from app.models import SignupStatus
from app.services.clock import Clock, utcnow

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "res_"
TOKEN_PURPOSE = "SIGNUP"


def hash_resume_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


class ResumeTokenService:
    def __init__(
        self,
        *,
        secret: str = JWT_SECRET,
        algorithm: str = JWT_ALGORITHM,
        ttl_minutes: int = RESUME_TOKEN_TTL_MINUTES,
        clock: Clock = utcnow,
    ) -> None:
        self._secret = secret
        self._algorithm = algorithm
        self._ttl = timedelta(minutes=ttl_minutes)
        self._clock = clock

    # ── Minting ────────────────────────────────────────────────────────

    def mint(self, signup_id: str) -> tuple[str, datetime]:
        """Create a signed token without persisting it. Returns (token, expires_at)."""
        now = self._clock()
        expires_at = now + self._ttl
        payload = {
            "sub": signup_id,
            "purpose": TOKEN_PURPOSE,
            "jti": str(uuid.uuid4()),
            "exp": expires_at,
        }
        token = TOKEN_PREFIX + jwt.encode(payload, self._secret, algorithm=self._algorithm)
        return token, expires_at

    async def issue(self, signup_id: str) -> str:
        """Mint a token and bind it to the signup, replacing any earlier one."""
        token, expires_at = self.mint(signup_id)
        bound = await db.set_resume_token(
            signup_id, hash_resume_token(token), expires_at, self._clock()
        )
        if not bound:
            raise PendingNotFound()
        return token

    async def rotate_with_email(self, signup_id: str, new_email: str) -> str:
        """
        Move a pending signup to *new_email* and hand back its new token.

        The email, the cleared OTP and the new token hash land in one
        conditional update, so the old token dies with the new one's birth.
        """
        token, expires_at = self.mint(signup_id)
        moved = await db.change_pending_email(
            signup_id, new_email, hash_resume_token(token), expires_at, self._clock()
        )
        if not moved:
            raise PendingNotFound()
        return token

    # ── Checking ───────────────────────────────────────────────────────

    def peek(self, token: str | None) -> str | None:
        """
        Non-strict check: signature, expiry and purpose only.

        Expiry is judged by the service clock, the same one `mint` stamps
        `exp` from.  Never raises; returns the signup ID or None.
        """
        if not token or not token.startswith(TOKEN_PREFIX):
            return None
        try:
            payload = jwt.decode(
                token[len(TOKEN_PREFIX):],
                self._secret,
                algorithms=[self._algorithm],
                options={"require": ["sub", "exp"], "verify_exp": False},
            )
        except jwt.PyJWTError:
            return None
        exp = payload["exp"]
        if not isinstance(exp, (int, float)) or exp <= self._clock().timestamp():
            return None
        if payload.get("purpose") != TOKEN_PURPOSE:
            return None
        sub = payload.get("sub")
        return sub if isinstance(sub, str) and sub else None

    async def verify(self, token: str | None) -> str:
        """
        Strict check: everything `peek` checks, plus revocation.

        While the signup is pending the token must be the one currently
        bound to it.  Rows that already left PENDING_VERIFICATION are left
        to the lifecycle guard, which refuses to act on them anyway.
        """
        signup_id = self.peek(token)
        if signup_id is None:
            raise ResumeTokenInvalid()

        signup = await db.get_signup(signup_id)
        if signup is not None and signup.status == SignupStatus.PENDING_VERIFICATION:
            if signup.resume_token_hash != hash_resume_token(token):  # type: ignore[arg-type]
                logger.info("Rejected revoked resume token for signup %s", signup_id)
                raise ResumeTokenInvalid()
        return signup_id

    # ── Revocation ─────────────────────────────────────────────────────

    async def invalidate(self, signup_id: str) -> None:
        """Revoke every resume token of the signup. Safe to call repeatedly."""
        await db.clear_resume_token(signup_id, self._clock())
