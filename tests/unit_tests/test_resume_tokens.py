"""Tests for resume-token issuance, checking and revocation."""

from datetime import timedelta

import jwt
import pytest

from app import db
from app.config import JWT_ALGORITHM, JWT_SECRET
from app.errors import PendingNotFound, ResumeTokenInvalid
from app.services.resume_tokens import (
    TOKEN_PREFIX,
    ResumeTokenService,
    hash_resume_token,
)
from tests.mocks.clock import FakeClock


@pytest.fixture()
async def signup(database, clock):
    return await db.create_signup("Jane Doe", "jane@example.com", clock())


class TestPeek:
    def test_minted_token_round_trips(self, tokens):
        token, _ = tokens.mint("signup-1")
        assert token.startswith(TOKEN_PREFIX)
        assert tokens.peek(token) == "signup-1"

    @pytest.mark.parametrize("token", [None, "", "abc", "res_", "res_not-a-jwt"])
    def test_malformed_tokens(self, tokens, token):
        assert tokens.peek(token) is None

    def test_missing_prefix(self, tokens):
        token, _ = tokens.mint("signup-1")
        assert tokens.peek(token[len(TOKEN_PREFIX):]) is None

    def test_foreign_signature(self, tokens, clock):
        other = ResumeTokenService(secret="another-secret", clock=clock)
        token, _ = other.mint("signup-1")
        assert tokens.peek(token) is None

    def test_expired(self, tokens, clock):
        stale = ResumeTokenService(ttl_minutes=-1, clock=clock)
        token, _ = stale.mint("signup-1")
        assert tokens.peek(token) is None

    def test_expires_on_the_service_clock(self, tokens, clock):
        token, _ = tokens.mint("signup-1")
        clock.advance(minutes=29, seconds=59)
        assert tokens.peek(token) == "signup-1"
        clock.advance(seconds=1)
        assert tokens.peek(token) is None

    def test_clock_behind_wall_time(self, clock):
        lagging = FakeClock(clock() - timedelta(days=1))
        service = ResumeTokenService(clock=lagging)
        token, expires_at = service.mint("signup-1")
        assert expires_at < clock()
        assert service.peek(token) == "signup-1"

    def test_wrong_purpose(self, tokens, clock):
        raw = jwt.encode(
            {"sub": "signup-1", "purpose": "LOGIN", "exp": clock().timestamp() + 600},
            JWT_SECRET,
            algorithm=JWT_ALGORITHM,
        )
        assert tokens.peek(TOKEN_PREFIX + raw) is None


class TestIssueAndVerify:
    async def test_issued_token_verifies(self, tokens, signup):
        token = await tokens.issue(signup.id)
        assert await tokens.verify(token) == signup.id

        row = await db.get_signup(signup.id)
        assert row.resume_token_hash == hash_resume_token(token)
        assert row.resume_token_expires_at is not None

    async def test_reissue_revokes_previous_token(self, tokens, signup):
        first = await tokens.issue(signup.id)
        second = await tokens.issue(signup.id)

        with pytest.raises(ResumeTokenInvalid):
            await tokens.verify(first)
        assert await tokens.verify(second) == signup.id

    async def test_invalid_token_raises(self, tokens, database):
        with pytest.raises(ResumeTokenInvalid):
            await tokens.verify("res_garbage")

    async def test_unknown_signup_is_left_to_the_guard(self, tokens, database):
        token, _ = tokens.mint("does-not-exist")
        assert await tokens.verify(token) == "does-not-exist"

    async def test_issue_refuses_non_pending_signup(self, tokens, signup, otp_engine, clock):
        await otp_engine.issue(signup, count_as_resend=False)
        row = await db.get_signup(signup.id)
        assert await db.activate_signup(signup.id, row.otp_hash, clock())

        with pytest.raises(PendingNotFound):
            await tokens.issue(signup.id)


class TestInvalidate:
    async def test_invalidated_token_is_rejected(self, tokens, signup):
        token = await tokens.issue(signup.id)
        await tokens.invalidate(signup.id)

        with pytest.raises(ResumeTokenInvalid):
            await tokens.verify(token)

    async def test_invalidate_twice_changes_nothing(self, tokens, signup, clock):
        await tokens.issue(signup.id)
        await tokens.invalidate(signup.id)
        before = await db.get_signup(signup.id)

        clock.advance(seconds=5)
        await tokens.invalidate(signup.id)
        after = await db.get_signup(signup.id)

        assert after == before


class TestRotateWithEmail:
    async def test_moves_email_and_swaps_token(self, tokens, otp_engine, signup):
        old = await tokens.issue(signup.id)
        await otp_engine.issue(signup, count_as_resend=False)

        new = await tokens.rotate_with_email(signup.id, "new@example.com")

        row = await db.get_signup(signup.id)
        assert row.signup_email == "new@example.com"
        assert row.otp_hash is None and row.otp_expires_at is None
        assert await tokens.verify(new) == signup.id
        with pytest.raises(ResumeTokenInvalid):
            await tokens.verify(old)
