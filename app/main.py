"""Main FastAPI application for the Ignite signup verification service."""

import logging
import sqlite3
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from app import db
from app.config import APP_VERSION, LOG_LEVEL
from app.errors import ErrorCode, SignupError
from app.logging_config import setup_logging
from app.rate_limit import limiter
from app.routers import auth, health
from app.services.expiry import StaleSignupExpirer

setup_logging(LOG_LEVEL)
logger = logging.getLogger(__name__)

expirer = StaleSignupExpirer()


@asynccontextmanager
async def lifespan(app: FastAPI):
    await db.init_db()
    await expirer.start()
    logger.info("Signup service started")
    try:
        yield
    finally:
        await expirer.stop()
        await db.close_db()
        logger.info("Signup service stopped")


app = FastAPI(
    title="Ignite Signup API",
    description="Email verification for pending signups: one-time codes and resume tokens",
    version=APP_VERSION,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)


# ── Rate-limit headers ─────────────────────────────────────────────────────


@app.middleware("http")
async def rate_limit_headers(request: Request, call_next):
    """Copy per-identity window stats onto the response, whatever the outcome."""
    response = await call_next(request)
    stats = getattr(request.state, "rate_limit", None)
    if stats is not None:
        response.headers.update(stats.headers())
    return response


# ── Error handlers ─────────────────────────────────────────────────────────


def _error(status_code: int, content: dict, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=content, headers=headers)


@app.exception_handler(SignupError)
async def signup_error_handler(request: Request, exc: SignupError):
    return _error(exc.status_code, exc.payload())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return _error(
        status.HTTP_400_BAD_REQUEST,
        {
            "code": ErrorCode.VALIDATION_ERROR.value,
            "details": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(RateLimitExceeded)
def coarse_rate_limit_handler(request: Request, exc: RateLimitExceeded):
    item = exc.limit.limit
    logger.warning("Global rate limit hit by %s on %s", request.client, request.url.path)
    return _error(
        status.HTTP_429_TOO_MANY_REQUESTS,
        {"code": ErrorCode.TOO_MANY_REQUESTS.value},
        headers={
            "X-RateLimit-Limit": str(item.amount),
            "X-RateLimit-Remaining": "0",
            # upper bound: the window cannot outlive one full period from now
            "X-RateLimit-Reset": str(int(time.time()) + item.get_expiry()),
        },
    )


@app.exception_handler(sqlite3.Error)
async def storage_error_handler(request: Request, exc: sqlite3.Error):
    logger.exception("Storage failure on %s %s", request.method, request.url.path)
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, {"code": ErrorCode.INTERNAL.value})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, {"code": ErrorCode.INTERNAL.value})


app.include_router(health.router)
app.include_router(auth.router)
