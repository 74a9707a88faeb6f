"""
api/limiter.py -- Rate-limit dependencies for the API routes.

Two independent fixed-window limiters share one RateLimiter
(app.state.rate_limiter, built on the `limits` package) under separate key
namespaces:

  global_rate_limit   every /api/v1 route except health. Keyed by
                      "user:<id>" when the request carries a valid access
                      token, otherwise "ip:<client address>".
  login_rate_limit    POST /auth/login only. Keyed by "login:ip:<address>"
                      with its own limit and window.

Client addresses come from slowapi's get_remote_address, the same key
function slowapi's own Limiter uses.

These run as FastAPI dependencies rather than slowapi decorators because a
rejected request must not count against the window: each dependency checks,
then increments, in two separate calls. Enforcement is therefore approximate
under concurrency (see cache/limiter.py). A storage failure on check fails
the request with 500; a failure on increment is logged and the request
proceeds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Request
from slowapi.util import get_remote_address

from auth.dependencies import try_get_current_claims
from auth.errors import RateLimitExceededError
from cache.limiter import RateLimiter

logger = logging.getLogger("sessiongate.api")


@dataclass(frozen=True)
class RateLimitPolicy:
    limit: int
    window_seconds: int


def _enforce(request: Request, key: str, policy: RateLimitPolicy, message: str | None = None) -> None:
    limiter: RateLimiter = request.app.state.rate_limiter
    if not limiter.check(key, policy.limit, policy.window_seconds):
        retry_after = limiter.ttl(key, policy.limit, policy.window_seconds) or policy.window_seconds
        logger.info("Rate limit hit for %s", key)
        raise RateLimitExceededError(message, retry_after=retry_after)
    try:
        limiter.increment(key, policy.limit, policy.window_seconds)
    except Exception:
        logger.warning("Rate limiter increment failed for %s", key, exc_info=True)


def global_rate_limit(request: Request) -> None:
    claims = try_get_current_claims(request)
    key = f"user:{claims.user_id}" if claims else f"ip:{get_remote_address(request)}"
    _enforce(request, key, request.app.state.global_limit)


def login_rate_limit(request: Request) -> None:
    _enforce(
        request,
        f"login:ip:{get_remote_address(request)}",
        request.app.state.login_limit,
        "Too many login attempts. Please try again later.",
    )
