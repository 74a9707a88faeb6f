"""
cache/store.py -- SQLite-backed ephemeral OTP store.

Maps an email to exactly one live verification code. Expiry is a TTL on
the entry itself: the code row carries its own expires_at, reads treat an
expired row as absent and delete it on the way out. There is no separate
expiry field in the domain model -- callers only ever see "present" or
"not found".

store() is an unconditional overwrite that restarts the TTL. There is no
compare-and-set: two concurrent store() calls for the same email race and
the last writer wins.

Every operation takes the connection lock, so each single-key call is atomic
with respect to the others.

Usage:
    otps = OTPStore()
    otps.store("a@x.com", "123456", ttl_seconds=300)
    otps.get("a@x.com")        # "123456", or raises OTPNotFoundError
    otps.exists("a@x.com")     # True
    otps.delete("a@x.com")
    otps.purge_expired()       # call periodically to trim old entries
"""

import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Callable

from auth.errors import OTPNotFoundError

logger = logging.getLogger("sessiongate.cache")

_DEFAULT_DB = Path(__file__).parent / "sessiongate_cache.db"

_DDL = """
CREATE TABLE IF NOT EXISTS otp_codes (
    key         TEXT PRIMARY KEY,
    code        TEXT NOT NULL,
    expires_at  REAL NOT NULL
);
"""


def connect(db_path=_DEFAULT_DB, timeout: float = 5.0) -> sqlite3.Connection:
    """Open a cache connection shared across threads.

    `timeout` bounds how long a call waits on another process's write lock.
    """
    conn = sqlite3.connect(db_path, timeout=timeout, check_same_thread=False)
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


class OTPStore:
    def __init__(
        self,
        conn: sqlite3.Connection | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._conn = conn if conn is not None else connect()
        self._clock = clock
        self._lock = threading.Lock()
        with self._lock:
            self._conn.execute(_DDL)
            self._conn.commit()

    def store(self, email: str, code: str, ttl_seconds: int) -> None:
        """Set the code for email, replacing any existing one and restarting its TTL."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO otp_codes (key, code, expires_at) VALUES (?, ?, ?)",
                (_key(email), code, self._clock() + ttl_seconds),
            )
            self._conn.commit()

    def get(self, email: str) -> str:
        """Return the live code for email. Raises OTPNotFoundError if absent or expired."""
        with self._lock:
            code = self._live_code(email)
        if code is None:
            raise OTPNotFoundError()
        return code

    def exists(self, email: str) -> bool:
        with self._lock:
            return self._live_code(email) is not None

    def delete(self, email: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM otp_codes WHERE key = ?", (_key(email),))
            self._conn.commit()

    def purge_expired(self) -> int:
        """Delete all expired codes. Returns number of rows removed."""
        with self._lock:
            cursor = self._conn.execute("DELETE FROM otp_codes WHERE expires_at <= ?", (self._clock(),))
            self._conn.commit()
        if cursor.rowcount:
            logger.debug("Purged %d expired OTP codes", cursor.rowcount)
        return cursor.rowcount

    def close(self) -> None:
        self._conn.close()

    def _live_code(self, email: str) -> str | None:
        # Caller holds the lock.
        row = self._conn.execute(
            "SELECT code, expires_at FROM otp_codes WHERE key = ?",
            (_key(email),),
        ).fetchone()
        if row is None:
            return None
        code, expires_at = row
        if self._clock() >= expires_at:
            self._conn.execute("DELETE FROM otp_codes WHERE key = ?", (_key(email),))
            self._conn.commit()
            return None
        return code


def _key(email: str) -> str:
    return f"otp:{email}"
