"""
API request and response models for SessionGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Payload-shape validation (email syntax via email-validator, password
length, OTP length) happens here, before AuthService is called. Domain
validation (phone canonical form, role membership, uniqueness) happens in
AuthService.

Every response is wrapped in an envelope:
    success: {"success": true,  "data": ...,   "trace_id": "..."}
    failure: {"success": false, "error": {...}, "trace_id": "..."}
"""

from typing import Annotated, Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, StringConstraints

from auth.models import AuthResult, Role, UserInfo

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

OTP_PATTERN = r"^[0-9]{4,10}$"

# Names are trimmed; passwords are never touched.
Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterBody(BaseModel):
    """Request body for POST /api/v1/auth/register.

    role is a plain string here, not the Role enum, so an unknown role reaches
    AuthService and fails there with invalid_role (400) rather than a generic
    422 from request validation.

    Only email and the name fields are whitespace-trimmed. The password is
    stored exactly as sent.
    """

    email: EmailStr
    phone: str = Field(min_length=1, max_length=20)
    password: str = Field(min_length=8, max_length=72)
    first_name: Name
    last_name: Name
    role: str = Field(min_length=1, max_length=30)


class LoginBody(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=72)


class VerifyOTPBody(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    code: str = Field(pattern=OTP_PATTERN)


class RefreshTokenBody(BaseModel):
    refresh_token: str = Field(min_length=1)


class ResendOTPBody(BaseModel):
    email: EmailStr


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserInfoResponse(BaseModel):
    """Public user projection. Never carries the password hash."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    phone: str
    first_name: str
    last_name: str
    role: Role
    is_verified: bool
    created_at: Optional[str]

    @classmethod
    def from_info(cls, info: UserInfo) -> "UserInfoResponse":
        return cls(
            id=info.id,
            email=info.email,
            phone=info.phone,
            first_name=info.first_name,
            last_name=info.last_name,
            role=info.role,
            is_verified=info.is_verified,
            created_at=info.created_at,
        )


class AuthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user: UserInfoResponse

    @classmethod
    def from_result(cls, result: AuthResult) -> "AuthResponse":
        return cls(
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            user=UserInfoResponse.from_info(result.user),
        )


class RegisterResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    user: UserInfoResponse


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class SuccessEnvelope(BaseModel):
    success: bool = True
    data: Any = None
    trace_id: str


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: ErrorDetail
    trace_id: str = ""


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
