"""
auth/tokens.py -- JWT issuance/validation, password hashing, and OTP codes.

Security design decisions:
  JWT: python-jose with HS256 only. TokenIssuer is constructed with the
       signing secret and both TTLs; it never reads configuration itself and
       the secret cannot be changed after construction. validate() raises
       InvalidTokenError for every failure mode (malformed, wrong algorithm,
       bad signature, expired, missing claims) -- callers never need to tell
       these apart. Only the refresh flow distinguishes expiry/revocation, and
       it does so from the stored row, not from the token.

       Every token carries a random jti. Without it, two refresh tokens minted
       for the same user within the same second would be byte-identical and
       collide on the UNIQUE(token) index.

  Passwords: bcrypt, used directly (no passlib wrapper). The cost factor is
       a constructor argument so tests can run with the minimum of 4 rounds.

  OTP: secrets.choice over the decimal digits.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import secrets
import string
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from auth.errors import InvalidTokenError

ALGORITHM = "HS256"

_BCRYPT_MAX_BYTES = 72

ACCESS = "access"
REFRESH = "refresh"


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


class BcryptPasswordHasher:
    """One-way password hashing with bcrypt.

    bcrypt only looks at the first 72 bytes of a password, and bcrypt>=5
    raises instead of truncating. Both methods truncate explicitly so hash and
    verify always agree.
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds

    def hash(self, plain: str) -> str:
        return bcrypt.hashpw(_bcrypt_bytes(plain), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, hashed: str, plain: str) -> bool:
        """Return True if plain matches hashed. Malformed hashes count as a mismatch."""
        try:
            return bcrypt.checkpw(_bcrypt_bytes(plain), hashed.encode("utf-8"))
        except ValueError:
            return False


def _bcrypt_bytes(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


# ---------------------------------------------------------------------------
# OTP codes
# ---------------------------------------------------------------------------


def generate_otp(length: int) -> str:
    """Return a random numeric code of exactly `length` digits (leading zeros allowed)."""
    if length <= 0:
        raise ValueError("OTP length must be positive")
    return "".join(secrets.choice(string.digits) for _ in range(length))


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenClaims:
    """Decoded, verified claims of an access or refresh token.

    email and role are empty for refresh tokens.
    """

    user_id: str
    token_type: str
    issued_at: datetime
    expires_at: datetime
    jti: str
    email: str = ""
    role: str = ""


class TokenIssuer:
    """Stateless signer/verifier for access and refresh tokens.

    Usage:
        issuer = TokenIssuer(secret_key, timedelta(minutes=15), timedelta(days=7))
        token = issuer.issue_access_token(42, "a@x.com", "customer")
        claims = issuer.validate(token)   # raises InvalidTokenError on any failure
    """

    def __init__(
        self,
        secret_key: str,
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
    ) -> None:
        if not secret_key:
            raise ValueError("TokenIssuer requires a non-empty secret key")
        self._secret_key = secret_key
        self._access_ttl = access_ttl
        self._refresh_ttl = refresh_ttl

    @property
    def access_ttl(self) -> timedelta:
        return self._access_ttl

    @property
    def refresh_ttl(self) -> timedelta:
        return self._refresh_ttl

    def issue_access_token(self, user_id: int | str, email: str, role: str) -> str:
        return self._encode(user_id, ACCESS, self._access_ttl, {"email": email, "role": role})

    def issue_refresh_token(self, user_id: int | str) -> str:
        return self._encode(user_id, REFRESH, self._refresh_ttl, {})

    def validate(self, token: str) -> TokenClaims:
        """Verify signature, algorithm and expiry; return the decoded claims.

        Fails closed: any problem at all raises InvalidTokenError with the same
        message, so the failure reason never leaks to the caller.
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[ALGORITHM])
        except (JWTError, AttributeError, TypeError, ValueError):
            raise InvalidTokenError() from None

        try:
            return TokenClaims(
                user_id=str(payload["sub"]),
                token_type=payload["type"],
                issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
                jti=payload["jti"],
                email=payload.get("email", ""),
                role=payload.get("role", ""),
            )
        except (KeyError, TypeError, ValueError, OverflowError):
            raise InvalidTokenError() from None

    def _encode(self, user_id: int | str, token_type: str, ttl: timedelta, extra: dict) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "type": token_type,
            "iat": now,
            "nbf": now,
            "exp": now + ttl,
            "jti": uuid.uuid4().hex,
            **extra,
        }
        return jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)
