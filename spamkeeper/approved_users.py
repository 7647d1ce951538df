"""Storage of users approved to post without spam checks."""

from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone

log = logging.getLogger(__name__)

_CREATE_TABLE = """CREATE TABLE IF NOT EXISTS approved_users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uid TEXT,
    gid TEXT DEFAULT '',
    name TEXT,
    timestamp DATETIME DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(gid, uid)
)"""

_CREATE_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_approved_users_uid ON approved_users(uid)",
    "CREATE INDEX IF NOT EXISTS idx_approved_users_gid ON approved_users(gid)",
    "CREATE INDEX IF NOT EXISTS idx_approved_users_name ON approved_users(name)",
    "CREATE INDEX IF NOT EXISTS idx_approved_users_timestamp ON approved_users(timestamp)",
)

_ADD_UID_COLUMN = "ALTER TABLE approved_users ADD COLUMN uid TEXT"
_ADD_GID_COLUMN = "ALTER TABLE approved_users ADD COLUMN gid TEXT DEFAULT ''"
_INSERT_USER = "INSERT OR REPLACE INTO approved_users (uid, gid, name, timestamp) VALUES (?, ?, ?, ?)"


def _to_db_time(value: datetime) -> str:
    """Format a datetime as a sortable UTC string in the layout SQLite uses."""
    if value.tzinfo is None:
        value = value.astimezone()
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f")


def _from_db_time(value: object) -> datetime | None:
    """Parse a stored timestamp; naive values are taken as UTC."""
    if value is None:
        return None
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone()


@dataclass
class UserInfo:
    """An approved user."""

    user_id: str
    user_name: str = ""
    timestamp: datetime | None = None


class ApprovedUsers:
    """Approved users of one group, kept in an SQLite database."""

    def __init__(self, conn: sqlite3.Connection, gid: str) -> None:
        if conn is None:
            raise ValueError("db connection is nil")
        self.conn = conn
        self.gid = gid
        self._lock = threading.Lock()
        try:
            with self._lock, self.conn:
                self.conn.execute(_CREATE_TABLE)
                self._migrate()
                for stmt in _CREATE_INDEXES:
                    self.conn.execute(stmt)
        except sqlite3.Error as exc:
            raise RuntimeError(f"failed to init approved users storage: {exc}") from exc

    def read(self) -> list[UserInfo]:
        """Return all approved users of the group, ordered by user id."""
        with self._lock:
            rows = self.conn.execute(
                "SELECT uid, name, timestamp FROM approved_users WHERE gid = ? ORDER BY uid ASC",
                (self.gid,),
            ).fetchall()
        users = [
            UserInfo(user_id=uid, user_name=name or "", timestamp=_from_db_time(ts))
            for uid, name, ts in rows
        ]
        log.debug("read %d approved users", len(users))
        return users

    def write(self, user: UserInfo) -> None:
        """Add or replace a user in the approved list."""
        if not user.user_id:
            raise ValueError("user id can't be empty")
        timestamp = user.timestamp or datetime.now(timezone.utc)
        with self._lock, self.conn:
            self.conn.execute(
                _INSERT_USER, (user.user_id, self.gid, user.user_name, _to_db_time(timestamp))
            )
        log.info("user %r (%s) added to approved users", user.user_name, user.user_id)

    def delete(self, user_id: str) -> None:
        """Remove a user from the approved list; the user must exist."""
        if not user_id:
            raise ValueError("user id can't be empty")
        with self._lock, self.conn:
            row = self.conn.execute(
                "SELECT name FROM approved_users WHERE uid = ? AND gid = ?",
                (user_id, self.gid),
            ).fetchone()
            if row is None:
                raise LookupError(f"failed to get approved user for id {user_id}")
            self.conn.execute(
                "DELETE FROM approved_users WHERE uid = ? AND gid = ?", (user_id, self.gid)
            )
        log.info("user %r (%s) deleted from approved users", row[0], user_id)

    def _migrate(self) -> None:
        try:
            self.conn.execute("SELECT COUNT(*) FROM approved_users WHERE uid='' AND gid=''")
        except sqlite3.OperationalError:
            pass
        else:
            log.debug("approved_users table already migrated")
            return

        for stmt in (_ADD_UID_COLUMN, _ADD_GID_COLUMN):
            try:
                self.conn.execute(stmt)
            except sqlite3.OperationalError as exc:
                if "duplicate column" not in str(exc):
                    raise
        self.conn.execute(
            "UPDATE approved_users SET uid = id, gid = ? WHERE uid IS NULL OR uid = ''",
            (self.gid,),
        )
        log.debug("approved_users table migrated")