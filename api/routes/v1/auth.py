"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/register       -- create unverified user, send OTP; 201
  POST /api/v1/auth/login          -- email + password -> token pair (login rate limit)
  POST /api/v1/auth/verify-otp     -- activate account with the emailed code
  POST /api/v1/auth/refresh-token  -- rotate refresh token -> new token pair
  POST /api/v1/auth/resend-otp     -- new OTP for an unverified user
  GET  /api/v1/auth/profile        -- current user's profile (requires access token)

Handlers are thin: map the body onto an auth.models request, call
AuthService, wrap the result in the success envelope. AuthError subclasses
propagate to the handler in api/main.py, which picks the status code.

Handlers are plain `def` so FastAPI runs them in its threadpool -- every
store call underneath is blocking.

Security:
  Cache-Control: no-store on every response that carries tokens.
  Login returns the same invalid_credentials error for an unknown email and
  a wrong password (AuthService guarantees this).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import global_rate_limit, login_rate_limit
from api.models import (
    AuthResponse,
    LoginBody,
    MessageResponse,
    RefreshTokenBody,
    RegisterBody,
    RegisterResponse,
    ResendOTPBody,
    UserInfoResponse,
    VerifyOTPBody,
)
from api.responses import success
from auth.dependencies import get_current_claims
from auth.models import LoginRequest, RefreshTokenRequest, RegisterRequest, VerifyOTPRequest
from auth.service import AuthService
from auth.tokens import TokenClaims

# Auth policy:
# - POST /auth/register, /login, /verify-otp, /refresh-token, /resend-otp: public
# - GET  /auth/profile: requires a valid access token (get_current_claims)
# All routes pass through global_rate_limit; /login additionally through login_rate_limit.
router = APIRouter(dependencies=[Depends(global_rate_limit)])


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/register", status_code=201)
def register(request: Request, body: RegisterBody) -> JSONResponse:
    user = _service(request).register(
        RegisterRequest(
            email=body.email,
            phone=body.phone,
            password=body.password,
            first_name=body.first_name,
            last_name=body.last_name,
            role=body.role,
        )
    )
    data = RegisterResponse(
        message="Registration successful. Please verify your email with the OTP sent.",
        user=UserInfoResponse.from_info(user.to_info()),
    )
    return success(request, data, status_code=201)


@router.post("/auth/login", dependencies=[Depends(login_rate_limit)])
def login(request: Request, body: LoginBody) -> JSONResponse:
    result = _service(request).login(LoginRequest(email=body.email, password=body.password))
    return _no_store(success(request, AuthResponse.from_result(result)))


@router.post("/auth/verify-otp")
def verify_otp(request: Request, body: VerifyOTPBody) -> JSONResponse:
    _service(request).verify_otp(VerifyOTPRequest(email=body.email, code=body.code))
    return success(request, MessageResponse(message="Email verified successfully. You can now login."))


@router.post("/auth/refresh-token")
def refresh_token(request: Request, body: RefreshTokenBody) -> JSONResponse:
    result = _service(request).refresh_token(RefreshTokenRequest(refresh_token=body.refresh_token))
    return _no_store(success(request, AuthResponse.from_result(result)))


@router.post("/auth/resend-otp")
def resend_otp(request: Request, body: ResendOTPBody) -> JSONResponse:
    _service(request).resend_otp(body.email)
    return success(request, MessageResponse(message="OTP sent successfully. Please check your email."))


@router.get("/auth/profile")
def profile(request: Request, claims: TokenClaims = Depends(get_current_claims)) -> JSONResponse:
    user = _service(request).get_user_by_id(claims.user_id)
    return success(request, UserInfoResponse.from_info(user.to_info()))
