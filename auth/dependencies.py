"""
auth/dependencies.py -- FastAPI Depends() helpers for bearer authentication.

Only one auth method exists: an access token in the
Authorization: Bearer <token> header. Refresh tokens are rejected here --
they are only good for POST /auth/refresh-token.

try_get_current_claims() is the soft variant (returns None on failure).
get_current_claims() wraps it and raises UnauthorizedError /
InvalidTokenError, which the AuthError handler in api/main.py renders as 401.
require_roles(...) builds a dependency that additionally raises
ForbiddenError (403) when the token's role is not in the allowed set.

Role gating trusts the role claim of a validated token; it does not re-read
the user record.

Layer rule: no imports from api/ or cache/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from typing import Callable

from fastapi import Request

from auth.errors import AuthError, ForbiddenError, InvalidTokenError, UnauthorizedError
from auth.models import Role
from auth.tokens import ACCESS, TokenClaims, TokenIssuer


def _bearer_token(request: Request) -> str | None:
    parts = request.headers.get("Authorization", "").split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        return None
    return parts[1]


def try_get_current_claims(request: Request) -> TokenClaims | None:
    """Return the validated access-token claims, or None. Never raises."""
    token = _bearer_token(request)
    if token is None:
        return None
    issuer: TokenIssuer = request.app.state.token_issuer
    try:
        claims = issuer.validate(token)
    except AuthError:
        return None
    return claims if claims.token_type == ACCESS else None


def get_current_claims(request: Request) -> TokenClaims:
    """Require a valid access token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(claims: TokenClaims = Depends(get_current_claims)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise UnauthorizedError()
    issuer: TokenIssuer = request.app.state.token_issuer
    claims = issuer.validate(token)
    if claims.token_type != ACCESS:
        raise InvalidTokenError()
    return claims


def require_roles(*roles: Role) -> Callable[[Request], TokenClaims]:
    """Build a dependency that admits only the given roles.

        @router.get("/finance/reports")
        def reports(claims: TokenClaims = Depends(require_roles(Role.admin, Role.finance_manager))): ...
    """
    allowed = {r.value for r in roles}

    def dependency(request: Request) -> TokenClaims:
        claims = get_current_claims(request)
        if claims.role not in allowed:
            raise ForbiddenError()
        return claims

    return dependency
