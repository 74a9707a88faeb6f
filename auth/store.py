"""
auth/store.py -- SQLAlchemy Core persistence for users and refresh tokens.

Pattern: Repository + Data Mapper.
UserStore and RefreshTokenStore are the repositories; _row_to_user /
_row_to_refresh_token are the mappers. AuthService never touches SQL.

Atomicity:
  Every public method runs inside its own engine.begin() block, so each
  single-row operation commits or rolls back on its own. Nothing here
  offers atomicity ACROSS calls, and AuthService does not assume any.

Uniqueness:
  UNIQUE(email) and UNIQUE(phone) on users are the real race guard for
  registration. AuthService pre-checks for a friendlier error, but two
  concurrent registrations can both pass that check -- the loser hits the
  constraint here, and the IntegrityError is remapped to the same
  AlreadyExistsError family the pre-check would have raised.

Absence:
  Lookups raise UserNotFoundError / InvalidTokenError rather than returning
  None, because absence is a domain condition the caller must branch on.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import (
    Boolean,
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import (
    AlreadyExistsError,
    InvalidTokenError,
    PhoneAlreadyExistsError,
    UserAlreadyExistsError,
    UserNotFoundError,
)
from auth.models import RefreshToken, Role, User

logger = logging.getLogger("sessiongate.store")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'sessiongate_auth.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False),
    Column("phone", String(20), nullable=False),  # canonical +923xxxxxxxxx
    Column("hashed_password", Text, nullable=False),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("role", String(30), nullable=False),
    Column("is_verified", Boolean, nullable=False, default=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login_at", String(32)),
    UniqueConstraint("email", name="uq_users_email"),
    UniqueConstraint("phone", name="uq_users_phone"),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("token", Text, nullable=False),
    Column("expires_at", String(32), nullable=False),  # ISO 8601 UTC
    Column("is_revoked", Boolean, nullable=False, default=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("token", name="uq_refresh_tokens_token"),
    Index("ix_refresh_tokens_user_id", "user_id"),
    Index("ix_refresh_tokens_expires_at", "expires_at"),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by a writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str = _DEFAULT_DB_URL, timeout: float = 5.0) -> Engine:
    """Create an engine and make sure both tables exist.

    For SQLite, `timeout` is the busy timeout: a call waiting on another
    writer's lock gives up after that many seconds instead of hanging.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite") and ":memory:" not in db_url:
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _conflict_from(exc: IntegrityError) -> AlreadyExistsError:
    """Map a duplicate-key failure to the matching domain error.

    SQLite reports "UNIQUE constraint failed: users.email"; PostgreSQL names
    the constraint (uq_users_email). Both contain the column name.
    """
    detail = str(exc.orig).lower()
    logger.info("Insert rejected by unique constraint: %s", exc.orig)
    if "email" in detail:
        return UserAlreadyExistsError()
    if "phone" in detail:
        return PhoneAlreadyExistsError()
    return UserAlreadyExistsError()


# ---------------------------------------------------------------------------
# Credential store
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore(engine)
        store.create(user)              # sets user.id / timestamps
        user = store.find_by_email("a@x.com")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create(self, user: User) -> int:
        """Insert a new user and return its assigned ID.

        Raises UserAlreadyExistsError / PhoneAlreadyExistsError when the
        email or phone collides with an existing row.
        """
        now = _now_iso()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _users.insert().values(
                        email=user.email,
                        phone=user.phone,
                        hashed_password=user.hashed_password,
                        first_name=user.first_name,
                        last_name=user.last_name,
                        role=Role(user.role).value,
                        is_verified=user.is_verified,
                        is_active=user.is_active,
                        created_at=now,
                        updated_at=now,
                    )
                )
        except IntegrityError as exc:
            raise _conflict_from(exc) from exc
        user.id = result.inserted_primary_key[0]
        user.created_at = now
        user.updated_at = now
        return user.id

    def find_by_email(self, email: str) -> User:
        return self._find_one(_users.c.email == email)

    def find_by_phone(self, phone: str) -> User:
        return self._find_one(_users.c.phone == phone)

    def find_by_id(self, user_id: int) -> User:
        return self._find_one(_users.c.id == user_id)

    def update(self, user: User) -> None:
        """Replace every mutable column of an existing user.

        Raises UserNotFoundError if user.id does not exist, and the
        AlreadyExistsError family if the new email/phone collides.
        """
        now = _now_iso()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _users.update()
                    .where(_users.c.id == user.id)
                    .values(
                        email=user.email,
                        phone=user.phone,
                        hashed_password=user.hashed_password,
                        first_name=user.first_name,
                        last_name=user.last_name,
                        role=Role(user.role).value,
                        is_verified=user.is_verified,
                        is_active=user.is_active,
                        last_login_at=user.last_login_at,
                        updated_at=now,
                    )
                )
        except IntegrityError as exc:
            raise _conflict_from(exc) from exc
        if result.rowcount == 0:
            raise UserNotFoundError()
        user.updated_at = now

    def update_verification_status(self, email: str, is_verified: bool) -> None:
        """Flip is_verified for the user with this email, touching nothing else."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.email == email)
                .values(is_verified=is_verified, updated_at=_now_iso())
            )
        if result.rowcount == 0:
            raise UserNotFoundError()

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current UTC time as last_login_at."""
        now = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(last_login_at=now, updated_at=now)
            )
        if result.rowcount == 0:
            raise UserNotFoundError()

    def close(self) -> None:
        self.engine.dispose()

    def _find_one(self, clause) -> User:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(clause)).fetchone()
        if row is None:
            raise UserNotFoundError()
        return _row_to_user(row)


# ---------------------------------------------------------------------------
# Refresh token store
# ---------------------------------------------------------------------------


class RefreshTokenStore:
    """Repository for issued refresh tokens.

    Rows are never deleted -- revocation is a flag. Keeping revoked rows is
    what lets the refresh flow tell "revoked" (replay of a rotated token)
    apart from "never issued".
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create(self, token: RefreshToken) -> int:
        """Persist a new, non-revoked refresh token row and return its ID."""
        now = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.insert().values(
                    user_id=token.user_id,
                    token=token.token,
                    expires_at=_as_utc(token.expires_at).isoformat(),
                    is_revoked=False,
                    created_at=now,
                )
            )
        token.id = result.inserted_primary_key[0]
        token.is_revoked = False
        token.created_at = now
        return token.id

    def find_by_token(self, token: str) -> RefreshToken:
        """Look up a row by its exact token string. Raises InvalidTokenError if absent."""
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token == token)).fetchone()
        if row is None:
            raise InvalidTokenError()
        return _row_to_refresh_token(row)

    def revoke(self, token: str) -> bool:
        """Mark a single live token revoked. Returns False if no such live token exists.

        The is_revoked guard makes this a compare-and-set: of two concurrent
        calls for the same token, exactly one sees rowcount 1.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.token == token) & (_refresh_tokens.c.is_revoked.is_(False)))
                .values(is_revoked=True)
            )
        return result.rowcount > 0

    def revoke_all_for_user(self, user_id: int) -> int:
        """Revoke every still-active token owned by user_id. Returns the number revoked.

        Mass-logout primitive. No AuthService operation calls it today.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.is_revoked.is_(False)))
                .values(is_revoked=True)
            )
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _as_utc(value: datetime) -> datetime:
    # Naive datetimes are taken to be UTC already.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        phone=row.phone,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        role=Role(row.role),
        is_verified=bool(row.is_verified),
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login_at=row.last_login_at,
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        expires_at=_as_utc(datetime.fromisoformat(row.expires_at)),
        is_revoked=bool(row.is_revoked),
        created_at=row.created_at,
    )
