"""Tests for the stale-signup expiry job."""

import asyncio
from datetime import timedelta

import pytest

from app import db
from app.errors import PendingNotFound, ResumeTokenInvalid
from app.models import SignupStatus
from app.services.expiry import StaleSignupExpirer, expire_stale_signups


@pytest.fixture()
async def old_signup(database, tokens, otp_engine, clock):
    row = await db.create_signup("Old", "old@example.com", clock())
    await otp_engine.issue(row, count_as_resend=False)
    token = await tokens.issue(row.id)
    return row, token


async def test_expires_signups_older_than_seven_days(old_signup, clock):
    row, token = old_signup
    fresh = await db.create_signup("Fresh", "fresh@example.com", clock() + timedelta(days=2))

    clock.advance(days=7, seconds=1)
    result = await expire_stale_signups(clock())

    assert result.expired_count == 1
    assert result.signup_ids == [row.id]

    expired = await db.get_signup(row.id)
    assert expired.status == SignupStatus.EXPIRED
    assert expired.otp_hash is None
    assert expired.resume_token_hash is None
    assert (await db.get_signup(fresh.id)).status == SignupStatus.PENDING_VERIFICATION


async def test_nothing_younger_than_cutoff(old_signup, clock):
    clock.advance(days=6, hours=23)
    result = await expire_stale_signups(clock())
    assert result.expired_count == 0
    assert result.signup_ids == []


async def test_running_twice_expires_nothing_new(old_signup, clock):
    clock.advance(days=8)
    first = await expire_stale_signups(clock())
    second = await expire_stale_signups(clock())

    assert first.expired_count == 1
    assert second.expired_count == 0


async def test_verified_signups_are_left_alone(old_signup, clock):
    row, _ = old_signup
    current = await db.get_signup(row.id)
    assert await db.activate_signup(row.id, current.otp_hash, clock())

    clock.advance(days=30)
    assert (await expire_stale_signups(clock())).expired_count == 0
    assert (await db.get_signup(row.id)).status == SignupStatus.ACTIVE


async def test_worker_runs_on_start(old_signup, clock):
    row, _ = old_signup
    clock.advance(days=8)

    worker = StaleSignupExpirer(interval=3600, clock=clock)
    await worker.start()
    try:
        assert (await db.get_signup(row.id)).status == SignupStatus.EXPIRED
    finally:
        await worker.stop()


async def test_worker_ticks_on_interval(database, clock):
    worker = StaleSignupExpirer(interval=0.05, clock=clock)
    await worker.start()
    try:
        row = await db.create_signup("Late", "late@example.com", clock())
        clock.advance(days=8)
        for _ in range(40):
            await asyncio.sleep(0.05)
            if (await db.get_signup(row.id)).status == SignupStatus.EXPIRED:
                break
        assert (await db.get_signup(row.id)).status == SignupStatus.EXPIRED
    finally:
        await worker.stop()


async def test_token_of_expired_signup_stops_working(old_signup, flow, tokens, clock):
    row, token = old_signup
    clock.advance(days=8)
    await expire_stale_signups(clock())

    # The issued token lapsed long ago; a freshly signed one still meets the guard
    with pytest.raises(ResumeTokenInvalid):
        await flow.resend(token)
    fresh_token, _ = tokens.mint(row.id)
    with pytest.raises(PendingNotFound):
        await flow.resend(fresh_token)
    with pytest.raises(PendingNotFound):
        await flow.context(fresh_token)


async def test_stop_is_idempotent(database, clock):
    worker = StaleSignupExpirer(interval=3600, clock=clock)
    await worker.start()
    assert worker.running

    await worker.stop()
    await worker.stop()
    assert not worker.running
