"""
api/routes/v1/roles.py -- Role-gated endpoints.

Routes:
  GET /api/v1/admin/users         -- admin
  GET /api/v1/finance/reports     -- admin, finance_manager
  GET /api/v1/manager/dashboard   -- admin, manager

Each handler only echoes the caller's identity; the point of these routes is
the role gate in front of them. A caller outside the allowed set gets 403,
a caller without a valid access token gets 401.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import global_rate_limit
from api.responses import success
from auth.dependencies import require_roles
from auth.models import Role
from auth.tokens import TokenClaims

router = APIRouter(dependencies=[Depends(global_rate_limit)])


def _echo(request: Request, message: str, claims: TokenClaims) -> JSONResponse:
    return success(request, {"message": message, "user_id": claims.user_id, "role": claims.role})


@router.get("/admin/users")
def admin_users(
    request: Request,
    claims: TokenClaims = Depends(require_roles(Role.admin)),
) -> JSONResponse:
    return _echo(request, "Admin users endpoint", claims)


@router.get("/finance/reports")
def finance_reports(
    request: Request,
    claims: TokenClaims = Depends(require_roles(Role.admin, Role.finance_manager)),
) -> JSONResponse:
    return _echo(request, "Finance reports endpoint", claims)


@router.get("/manager/dashboard")
def manager_dashboard(
    request: Request,
    claims: TokenClaims = Depends(require_roles(Role.admin, Role.manager)),
) -> JSONResponse:
    return _echo(request, "Manager dashboard endpoint", claims)
