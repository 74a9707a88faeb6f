"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and the
AuthService do the work; these classes own the domain shape only.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    """Closed set of roles a user may hold."""

    admin = "admin"
    customer = "customer"
    finance_manager = "finance_manager"
    manager = "manager"

    @classmethod
    def parse(cls, value: str | Role) -> Role | None:
        """Return the matching Role, or None if value is outside the enum."""
        try:
            return cls(value)
        except ValueError:
            return None


@dataclass
class User:
    """A registered identity.

    hashed_password is a bcrypt hash and never leaves the auth layer -- use
    to_info() for anything returned to a caller. phone is always stored in
    canonical +923xxxxxxxxx form.

    Timestamps are ISO 8601 strings (UTC), assigned by the store.
    """

    email: str
    phone: str
    hashed_password: str
    first_name: str
    last_name: str
    role: Role
    id: int | None = None
    is_verified: bool = False
    is_active: bool = True
    created_at: str | None = None
    updated_at: str | None = None
    last_login_at: str | None = None

    def to_info(self) -> UserInfo:
        return UserInfo(
            id=str(self.id),
            email=self.email,
            phone=self.phone,
            first_name=self.first_name,
            last_name=self.last_name,
            role=self.role,
            is_verified=self.is_verified,
            created_at=self.created_at,
        )


@dataclass(frozen=True)
class UserInfo:
    """Public projection of a User -- safe to serialize."""

    id: str
    email: str
    phone: str
    first_name: str
    last_name: str
    role: Role
    is_verified: bool
    created_at: str | None


@dataclass
class RefreshToken:
    """A persisted refresh token row.

    Rows are never deleted. Rotation flips is_revoked on the old row and
    inserts a new one, so revoked rows double as a replay-detection trail.
    expires_at is authoritative for the refresh flow, independent of the
    exp claim inside the token itself.
    """

    user_id: int
    token: str
    expires_at: datetime
    id: int | None = None
    is_revoked: bool = False
    created_at: str | None = None


# ---------------------------------------------------------------------------
# Use-case requests and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RegisterRequest:
    email: str
    phone: str
    password: str
    first_name: str
    last_name: str
    role: str


@dataclass(frozen=True)
class LoginRequest:
    email: str
    password: str


@dataclass(frozen=True)
class VerifyOTPRequest:
    email: str
    code: str


@dataclass(frozen=True)
class RefreshTokenRequest:
    refresh_token: str


@dataclass(frozen=True)
class AuthResult:
    """Token pair handed back by Login and RefreshToken."""

    access_token: str
    refresh_token: str
    user: UserInfo
