"""
auth/service.py -- AuthService, the use-case layer of the auth subsystem.

AuthService is the only component with business-level knowledge. It
composes the leaf components -- credential store, refresh token store, OTP
store, token issuer, password hasher, email sender -- into the six
operations the delivery layer exposes:

    register      Unregistered -> Registered & Unverified (OTP sent)
    verify_otp    Registered & Unverified -> Verified
    login         Verified & Active -> token pair
    refresh_token token pair -> new token pair (old refresh token revoked)
    resend_otp    new OTP for a still-unverified user
    get_user_by_id

Each leaf is injected through the constructor and described by a narrow
Protocol below, so tests can pass hand-written doubles without subclassing
anything.

Concurrency model:
  AuthService holds no mutable state of its own; one instance is shared by
  every request thread. Each store guarantees atomicity of its own
  single-key calls. AuthService never assumes atomicity ACROSS calls:

  - register's email/phone pre-check is advisory. The UNIQUE constraints in
    the credential store decide races; the loser gets the same
    AlreadyExistsError the pre-check would have produced.
  - register is not transactional. If the OTP cannot be stored or sent
    after the user row exists, the error propagates and the account stays
    registered but unverified with no live OTP; resend_otp recovers it.

Best-effort side updates (last-login stamp, OTP cleanup after verification)
are logged on failure and never reach the caller. Nothing here retries.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from auth.errors import (
    ExpiredTokenError,
    InvalidCredentialsError,
    InvalidOTPError,
    InvalidPhoneFormatError,
    InvalidRoleError,
    InvalidTokenError,
    OTPAlreadySentError,
    PhoneAlreadyExistsError,
    RevokedTokenError,
    UserAlreadyExistsError,
    UserAlreadyVerifiedError,
    UserInactiveError,
    UserNotFoundError,
    UserNotVerifiedError,
)
from auth.models import (
    AuthResult,
    LoginRequest,
    RefreshToken,
    RefreshTokenRequest,
    RegisterRequest,
    Role,
    User,
    VerifyOTPRequest,
)
from auth.phone import validate_phone
from auth.tokens import REFRESH, TokenClaims, generate_otp

logger = logging.getLogger("sessiongate.auth")

# ---------------------------------------------------------------------------
# Collaborator interfaces
# ---------------------------------------------------------------------------


class CredentialStore(Protocol):
    def create(self, user: User) -> int: ...
    def find_by_email(self, email: str) -> User: ...
    def find_by_phone(self, phone: str) -> User: ...
    def find_by_id(self, user_id: int) -> User: ...
    def update_verification_status(self, email: str, is_verified: bool) -> None: ...
    def update_last_login(self, user_id: int) -> None: ...


class RefreshTokenRepository(Protocol):
    def create(self, token: RefreshToken) -> int: ...
    def find_by_token(self, token: str) -> RefreshToken: ...
    def revoke(self, token: str) -> bool: ...
    def revoke_all_for_user(self, user_id: int) -> int: ...


class OTPRepository(Protocol):
    def store(self, email: str, code: str, ttl_seconds: int) -> None: ...
    def get(self, email: str) -> str: ...
    def delete(self, email: str) -> None: ...
    def exists(self, email: str) -> bool: ...


class Issuer(Protocol):
    @property
    def refresh_ttl(self) -> timedelta: ...
    def issue_access_token(self, user_id: int | str, email: str, role: str) -> str: ...
    def issue_refresh_token(self, user_id: int | str) -> str: ...
    def validate(self, token: str) -> TokenClaims: ...


class PasswordHasher(Protocol):
    def hash(self, plain: str) -> str: ...
    def verify(self, hashed: str, plain: str) -> bool: ...


class EmailSender(Protocol):
    def send_otp(self, email: str, code: str) -> None: ...


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class AuthService:
    def __init__(
        self,
        users: CredentialStore,
        refresh_tokens: RefreshTokenRepository,
        otps: OTPRepository,
        issuer: Issuer,
        hasher: PasswordHasher,
        email_sender: EmailSender,
        otp_length: int = 6,
        otp_ttl_seconds: int = 300,
    ) -> None:
        self._users = users
        self._refresh_tokens = refresh_tokens
        self._otps = otps
        self._issuer = issuer
        self._hasher = hasher
        self._email_sender = email_sender
        self._otp_length = otp_length
        self._otp_ttl_seconds = otp_ttl_seconds
        # Verified against when the email is unknown, so a miss costs the
        # same bcrypt work as a wrong password.
        self._dummy_hash = hasher.hash("sessiongate_timing_dummy")

    # ------------------------------------------------------------------
    # Register
    # ------------------------------------------------------------------

    def register(self, req: RegisterRequest) -> User:
        """Create an unverified, active user and send them an OTP.

        Raises InvalidPhoneFormatError, InvalidRoleError,
        UserAlreadyExistsError or PhoneAlreadyExistsError.
        """
        is_valid, phone = validate_phone(req.phone)
        if not is_valid:
            raise InvalidPhoneFormatError()

        role = Role.parse(req.role)
        if role is None:
            raise InvalidRoleError()

        if self._user_exists(self._users.find_by_email, req.email):
            raise UserAlreadyExistsError()
        if self._user_exists(self._users.find_by_phone, phone):
            raise PhoneAlreadyExistsError()

        user = User(
            email=req.email,
            phone=phone,
            hashed_password=self._hasher.hash(req.password),
            first_name=req.first_name,
            last_name=req.last_name,
            role=role,
            is_verified=False,
            is_active=True,
        )
        self._users.create(user)
        logger.info("Registered user %s (id=%s)", user.email, user.id)

        try:
            self._issue_otp(req.email)
        except Exception:
            logger.warning("User %s registered but OTP could not be issued; resend required", req.email)
            raise
        return user

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, req: LoginRequest) -> AuthResult:
        """Authenticate with email + password and mint a token pair.

        Unknown email and wrong password raise the same
        InvalidCredentialsError. Verification is checked before activity:
        an unverified, inactive account reports UserNotVerifiedError.
        """
        try:
            user = self._users.find_by_email(req.email)
        except UserNotFoundError:
            self._hasher.verify(self._dummy_hash, req.password)
            raise InvalidCredentialsError() from None

        if not self._hasher.verify(user.hashed_password, req.password):
            raise InvalidCredentialsError()
        if not user.is_verified:
            raise UserNotVerifiedError()
        if not user.is_active:
            raise UserInactiveError()

        result = self._issue_pair(user)
        self._touch_last_login(user.id)
        return result

    # ------------------------------------------------------------------
    # Verify OTP
    # ------------------------------------------------------------------

    def verify_otp(self, req: VerifyOTPRequest) -> None:
        """Mark the user verified if code matches the stored OTP exactly.

        Missing or expired OTP -> OTPNotFoundError. Wrong code ->
        InvalidOTPError, and the stored OTP stays valid for another try.
        """
        stored = self._otps.get(req.email)
        if not secrets.compare_digest(stored.encode("utf-8"), req.code.encode("utf-8")):
            raise InvalidOTPError()

        self._users.update_verification_status(req.email, True)
        logger.info("Verified email %s", req.email)

        try:
            self._otps.delete(req.email)
        except Exception:
            logger.warning("Failed to delete OTP for %s", req.email, exc_info=True)

    # ------------------------------------------------------------------
    # Refresh token
    # ------------------------------------------------------------------

    def refresh_token(self, req: RefreshTokenRequest) -> AuthResult:
        """Exchange a refresh token for a new pair, revoking the old token.

        The stored row decides revocation and expiry; the token's own exp
        claim only matters to the signature check in validate(). The old token
        is revoked before the new pair is minted, so each refresh token can be
        exchanged at most once.
        """
        claims = self._issuer.validate(req.refresh_token)
        if claims.token_type != REFRESH:
            raise InvalidTokenError()

        stored = self._refresh_tokens.find_by_token(req.refresh_token)
        if stored.is_revoked:
            logger.warning("Revoked refresh token presented for user_id=%s", stored.user_id)
            raise RevokedTokenError()
        if datetime.now(timezone.utc) >= stored.expires_at:
            raise ExpiredTokenError()

        try:
            user_id = int(claims.user_id)
        except ValueError:
            raise InvalidTokenError() from None
        user = self._users.find_by_id(user_id)

        # Losing the revoke race means another request already rotated this token.
        if not self._refresh_tokens.revoke(req.refresh_token):
            logger.warning("Refresh token reused concurrently for user_id=%s", user.id)
            raise RevokedTokenError()

        access_token = self._issuer.issue_access_token(user.id, user.email, user.role.value)
        new_refresh_token = self._issuer.issue_refresh_token(user.id)
        self._store_refresh_token(user.id, new_refresh_token)

        return AuthResult(access_token=access_token, refresh_token=new_refresh_token, user=user.to_info())

    # ------------------------------------------------------------------
    # Resend OTP
    # ------------------------------------------------------------------

    def resend_otp(self, email: str) -> None:
        """Issue a fresh OTP to an unverified user who has no live one.

        A live OTP blocks resend for its whole remaining TTL
        (OTPAlreadySentError); there is no shorter cool-down.
        """
        user = self._users.find_by_email(email)
        if user.is_verified:
            raise UserAlreadyVerifiedError()
        if self._otps.exists(email):
            raise OTPAlreadySentError()
        self._issue_otp(email)

    # ------------------------------------------------------------------
    # Get user
    # ------------------------------------------------------------------

    def get_user_by_id(self, user_id: str) -> User:
        try:
            parsed = int(user_id)
        except (TypeError, ValueError):
            raise UserNotFoundError() from None
        return self._users.find_by_id(parsed)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _user_exists(self, finder: Callable[[str], User], value: str) -> bool:
        try:
            finder(value)
        except UserNotFoundError:
            return False
        return True

    def _issue_otp(self, email: str) -> None:
        code = generate_otp(self._otp_length)
        self._otps.store(email, code, self._otp_ttl_seconds)
        self._email_sender.send_otp(email, code)

    def _issue_pair(self, user: User) -> AuthResult:
        access_token = self._issuer.issue_access_token(user.id, user.email, user.role.value)
        refresh_token = self._issuer.issue_refresh_token(user.id)
        self._store_refresh_token(user.id, refresh_token)
        return AuthResult(access_token=access_token, refresh_token=refresh_token, user=user.to_info())

    def _store_refresh_token(self, user_id: int, token: str) -> None:
        self._refresh_tokens.create(
            RefreshToken(
                user_id=user_id,
                token=token,
                expires_at=datetime.now(timezone.utc) + self._issuer.refresh_ttl,
            )
        )

    def _touch_last_login(self, user_id: int) -> None:
        try:
            self._users.update_last_login(user_id)
        except Exception:
            logger.warning("Failed to update last login for user_id=%s", user_id, exc_info=True)
