"""Tests for OTP issuance, verification and lockout."""

import pytest

from app import db
from app.errors import (
    AlreadyVerified,
    OtpExpired,
    OtpInvalid,
    OtpLocked,
    PendingNotFound,
)
from app.services.otp import generate_otp, hash_otp
from tests.mocks.api import wrong_code


@pytest.fixture()
async def signup(database, otp_engine, clock):
    row = await db.create_signup("Jane Doe", "jane@example.com", clock())
    assert await otp_engine.issue(row, count_as_resend=False)
    return await db.get_signup(row.id)


def test_generate_otp_is_six_digits():
    for _ in range(50):
        code = generate_otp()
        assert len(code) == 6
        assert code.isdigit()


def test_hash_is_keyed():
    assert hash_otp("123456", "a") != hash_otp("123456", "b")
    assert hash_otp("123456", "a") == hash_otp("123456", "a")


class TestIssue:
    async def test_code_is_sent_and_only_its_hash_stored(self, signup, outbox):
        code = outbox.last.otp_code
        assert outbox.last.to_email == "jane@example.com"
        assert outbox.last.full_name == "Jane Doe"
        assert signup.otp_hash == hash_otp(code)
        assert code not in signup.otp_hash

    async def test_first_issue_is_not_a_resend(self, signup):
        assert signup.resend_count == 0
        assert signup.otp_attempts == 0
        assert signup.last_otp_sent_at is not None

    async def test_expiry_is_ttl_after_issue(self, signup, otp_engine):
        delta = signup.otp_expires_at - signup.last_otp_sent_at
        assert delta.total_seconds() == otp_engine.ttl_seconds

    async def test_reissue_resets_attempts_and_lock(self, signup, otp_engine, outbox, clock):
        code = outbox.last.otp_code
        for _ in range(5):
            with pytest.raises((OtpInvalid, OtpLocked)):
                await otp_engine.verify(await db.get_signup(signup.id), wrong_code(code))
        locked = await db.get_signup(signup.id)
        assert locked.locked_at is not None

        clock.advance(seconds=61)
        assert await otp_engine.issue(locked, count_as_resend=True)

        row = await db.get_signup(signup.id)
        assert row.otp_attempts == 0
        assert row.locked_at is None
        assert row.resend_count == 1

    async def test_stale_read_loses_the_race(self, signup, otp_engine, outbox, clock):
        clock.advance(seconds=61)
        assert await otp_engine.issue(signup, count_as_resend=True)
        sent = len(outbox.messages)

        # `signup` still carries the old last_otp_sent_at
        assert not await otp_engine.issue(signup, count_as_resend=True)
        assert len(outbox.messages) == sent
        assert (await db.get_signup(signup.id)).resend_count == 1


class TestVerify:
    async def test_correct_code(self, signup, otp_engine, outbox):
        matched = await otp_engine.verify(signup, outbox.last.otp_code)
        assert matched == signup.otp_hash

    async def test_wrong_code_counts_an_attempt(self, signup, otp_engine, outbox):
        with pytest.raises(OtpInvalid):
            await otp_engine.verify(signup, wrong_code(outbox.last.otp_code))
        assert (await db.get_signup(signup.id)).otp_attempts == 1

    async def test_fifth_wrong_code_locks(self, signup, otp_engine, outbox):
        bad = wrong_code(outbox.last.otp_code)
        for attempt in range(1, 5):
            with pytest.raises(OtpInvalid):
                await otp_engine.verify(await db.get_signup(signup.id), bad)
            assert (await db.get_signup(signup.id)).otp_attempts == attempt

        with pytest.raises(OtpLocked):
            await otp_engine.verify(await db.get_signup(signup.id), bad)
        row = await db.get_signup(signup.id)
        assert row.otp_attempts == 5
        assert row.locked_at is not None

    async def test_locked_signup_skips_comparison(self, signup, otp_engine, outbox):
        code = outbox.last.otp_code
        for _ in range(5):
            with pytest.raises((OtpInvalid, OtpLocked)):
                await otp_engine.verify(await db.get_signup(signup.id), wrong_code(code))

        # Even the right code is refused, and no attempt is counted
        with pytest.raises(OtpLocked):
            await otp_engine.verify(await db.get_signup(signup.id), code)
        assert (await db.get_signup(signup.id)).otp_attempts == 5

    async def test_late_code_is_expired_and_counted(self, signup, otp_engine, outbox, clock):
        clock.advance(minutes=10, seconds=1)
        with pytest.raises(OtpExpired):
            await otp_engine.verify(signup, outbox.last.otp_code)
        assert (await db.get_signup(signup.id)).otp_attempts == 1

    async def test_code_valid_up_to_and_including_expiry(self, signup, otp_engine, outbox, clock):
        clock.now = signup.otp_expires_at
        assert await otp_engine.verify(signup, outbox.last.otp_code) == signup.otp_hash

    async def test_late_attempt_reaching_threshold_locks(self, signup, otp_engine, outbox, clock):
        bad = wrong_code(outbox.last.otp_code)
        for _ in range(4):
            with pytest.raises(OtpInvalid):
                await otp_engine.verify(await db.get_signup(signup.id), bad)

        clock.advance(minutes=11)
        with pytest.raises(OtpLocked):
            await otp_engine.verify(await db.get_signup(signup.id), outbox.last.otp_code)

    async def test_no_live_code(self, signup, otp_engine):
        await otp_engine.clear(signup.id)
        with pytest.raises(PendingNotFound):
            await otp_engine.verify(await db.get_signup(signup.id), "123456")

    async def test_row_activated_between_read_and_count(self, signup, otp_engine, outbox, clock):
        # Another request activated the signup after we loaded it
        assert await db.activate_signup(signup.id, signup.otp_hash, clock())
        with pytest.raises(AlreadyVerified):
            await otp_engine.verify(signup, wrong_code(outbox.last.otp_code))


class TestClear:
    async def test_clear_twice_is_harmless(self, signup, otp_engine, clock):
        await otp_engine.clear(signup.id)
        before = await db.get_signup(signup.id)
        assert before.otp_hash is None and before.otp_expires_at is None

        clock.advance(seconds=5)
        await otp_engine.clear(signup.id)
        assert await db.get_signup(signup.id) == before
