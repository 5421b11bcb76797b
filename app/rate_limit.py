"""
Rate limiting.

Two layers:
  • limiter         – slowapi, 60/min per client address on every route
                      (coarse backstop, configured by RATE_LIMIT_DEFAULT)
  • signup_limiter  – fixed-window counters keyed per identity attempt
                      (client address + signup / email), mounted as a
                      dependency in front of the sensitive auth endpoints

Both keep their counters in a `limits` storage backend: memory:// by
default (per process, lost on restart), or a shared store such as
redis:// via RATE_LIMIT_STORAGE_URI.  This is an abuse backstop, not a
security boundary.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from fastapi import Request
from limits.storage import MemoryStorage, Storage, storage_from_string
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.config import RATE_LIMIT_DEFAULT, RATE_LIMIT_STORAGE_URI
from app.errors import TooManyRequests
from app.services.resume_tokens import ResumeTokenService

logger = logging.getLogger(__name__)

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[RATE_LIMIT_DEFAULT],
    storage_uri=RATE_LIMIT_STORAGE_URI,
)


@dataclass(frozen=True)
class RateLimitStats:
    limit: int
    remaining: int
    reset_at: float  # unix seconds

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_at)),
        }


class FixedWindowLimiter:
    """
    Per-key fixed-window counter.

    The first request for a key (or the first after its window ran out)
    opens a new window with count 1.  Once the count reaches *max_requests*
    further requests are rejected without being counted until the window
    resets.
    """

    def __init__(self, storage: Storage | None = None) -> None:
        self._storage = storage if storage is not None else MemoryStorage()

    def hit(self, key: str, *, max_requests: int, window_ms: int) -> tuple[bool, RateLimitStats]:
        """Record one request for *key*. Returns (allowed, stats)."""
        # limits backends expire keys in whole seconds
        window_seconds = max(1, math.ceil(window_ms / 1000))

        count = self._storage.get(key)
        if count >= max_requests:
            return False, RateLimitStats(
                limit=max_requests,
                remaining=0,
                reset_at=self._storage.get_expiry(key),
            )

        count = self._storage.incr(key, window_seconds)
        return True, RateLimitStats(
            limit=max_requests,
            remaining=max(0, max_requests - count),
            reset_at=self._storage.get_expiry(key),
        )

    def reset(self) -> None:
        """Drop every counter."""
        self._storage.reset()


signup_limiter = FixedWindowLimiter(storage_from_string(RATE_LIMIT_STORAGE_URI))


# ── Key functions ─────────────────────────────────────────────────────────

KeyFunc = Callable[[Request, Mapping[str, Any]], str]

# Signature and expiry only; revocation is left to the endpoint
_token_reader = ResumeTokenService()


def client_address(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def client_and_signup(request: Request, payload: Mapping[str, Any]) -> str:
    # Tokens rotate on email change and re-register; the signup they name does not
    token = payload.get("resumeToken")
    token = token if isinstance(token, str) else ""
    signup_id = _token_reader.peek(token)
    return f"{client_address(request)}:{signup_id or token}"


def client_and_email(request: Request, payload: Mapping[str, Any]) -> str:
    # Empty or malformed bodies still bucket by address
    return f"{client_address(request)}:{str(payload.get('email') or '').lower()}"


async def _request_payload(request: Request) -> Mapping[str, Any]:
    """JSON body for writes, query string for reads; {} when unparseable."""
    if request.method in ("GET", "HEAD"):
        return dict(request.query_params)
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


# ── FastAPI dependency ────────────────────────────────────────────────────


def rate_limit(
    *,
    window_ms: int,
    max_requests: int,
    key_func: KeyFunc,
    scope: str,
) -> Callable:
    """
    Build a dependency that throttles a route.

    The window stats are left on ``request.state.rate_limit``; the
    middleware in `app.main` copies them onto the response, whatever the
    outcome of the request.
    """

    async def dependency(request: Request) -> RateLimitStats:
        payload = await _request_payload(request)
        key = f"{scope}:{key_func(request, payload)}"

        allowed, stats = signup_limiter.hit(
            key, max_requests=max_requests, window_ms=window_ms
        )
        request.state.rate_limit = stats
        if not allowed:
            logger.warning("Rate limit exceeded on %s for %s", scope, client_address(request))
            raise TooManyRequests()
        return stats

    return dependency
