"""
auth/errors.py -- Exception taxonomy for the authentication subsystem.

Every failure the AuthService can report is a subclass of AuthError with a
stable machine-readable code, a human message, and the HTTP status the
delivery layer should use. api/main.py registers one exception handler for
AuthError; route handlers never translate these by hand.

Anything that is NOT an AuthError (SQLAlchemy OperationalError, sqlite3
errors, bugs) is an internal failure and propagates unchanged to the
catch-all 500 handler.

Category base classes exist so callers can catch a whole family
(e.g. `except AlreadyExistsError`) without listing every member.
"""

from __future__ import annotations


class AuthError(Exception):
    code = "auth_error"
    message = "Authentication error."
    status_code = 400

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


class ValidationError(AuthError):
    status_code = 400


class ConflictError(AuthError):
    status_code = 409


class AuthenticationError(AuthError):
    status_code = 401


class AuthorizationError(AuthError):
    status_code = 403


class NotFoundError(AuthError):
    status_code = 404


class RateLimitedError(AuthError):
    status_code = 429


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class InvalidPhoneFormatError(ValidationError):
    code = "invalid_phone_format"
    message = "Invalid Pakistani phone number format (expected: +923xxxxxxxxx)."


class InvalidRoleError(ValidationError):
    code = "invalid_role"
    message = "Invalid role."


class UserAlreadyVerifiedError(ValidationError):
    code = "bad_request"
    message = "User is already verified."


# ---------------------------------------------------------------------------
# Conflict
# ---------------------------------------------------------------------------


class AlreadyExistsError(ConflictError):
    code = "already_exists"
    message = "User already exists."


class UserAlreadyExistsError(AlreadyExistsError):
    code = "user_exists"
    message = "User with this email already exists."


class PhoneAlreadyExistsError(AlreadyExistsError):
    code = "phone_exists"
    message = "User with this phone number already exists."


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class UnauthorizedError(AuthenticationError):
    code = "unauthorized"
    message = "Authentication required."


class InvalidCredentialsError(AuthenticationError):
    code = "invalid_credentials"
    message = "Invalid email or password."


class InvalidTokenError(AuthenticationError):
    code = "invalid_token"
    message = "Invalid token."


class ExpiredTokenError(AuthenticationError):
    code = "expired_token"
    message = "Token has expired."


class RevokedTokenError(AuthenticationError):
    code = "revoked_token"
    message = "Token has been revoked."


# OTP failures are 400, not 401.
class InvalidOTPError(AuthenticationError):
    code = "invalid_otp"
    message = "Invalid OTP code."
    status_code = 400


class OTPNotFoundError(AuthenticationError):
    code = "otp_not_found"
    message = "OTP not found or expired."
    status_code = 400


# ---------------------------------------------------------------------------
# Authorization / account state
# ---------------------------------------------------------------------------


class UserNotVerifiedError(AuthorizationError):
    code = "user_not_verified"
    message = "User email not verified."


class UserInactiveError(AuthorizationError):
    code = "user_inactive"
    message = "User account is inactive."


class ForbiddenError(AuthorizationError):
    code = "forbidden"
    message = "Forbidden: insufficient permissions."


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------


class UserNotFoundError(NotFoundError):
    code = "user_not_found"
    message = "User not found."


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


class RateLimitExceededError(RateLimitedError):
    code = "rate_limited"
    message = "Rate limit exceeded, please try again later."

    def __init__(self, message: str | None = None, retry_after: int = 60) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class OTPAlreadySentError(RateLimitedError):
    code = "otp_already_sent"
    message = "OTP already sent, please wait before requesting again."
