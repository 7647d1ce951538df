"""Storage of detected spam messages with the results of their checks."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone

log = logging.getLogger(__name__)

MAX_DETECTED_SPAM_ENTRIES = 500

_CREATE_TABLE = """CREATE TABLE IF NOT EXISTS detected_spam (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    gid TEXT NOT NULL DEFAULT '',
    text TEXT,
    user_id INTEGER,
    user_name TEXT,
    timestamp DATETIME DEFAULT CURRENT_TIMESTAMP,
    added BOOLEAN DEFAULT 0,
    checks TEXT
)"""

_CREATE_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_detected_spam_gid_ts ON detected_spam(gid, timestamp DESC)",
    "CREATE INDEX IF NOT EXISTS idx_detected_spam_user_id_gid ON detected_spam(user_id, gid)",
    "CREATE INDEX IF NOT EXISTS idx_spam_gid_time ON detected_spam(gid, timestamp DESC)",
    "CREATE INDEX IF NOT EXISTS idx_detected_spam_gid ON detected_spam(gid)",
)

_ADD_GID_COLUMN = "ALTER TABLE detected_spam ADD COLUMN gid TEXT DEFAULT ''"

_COLUMNS = "id, gid, text, user_id, user_name, timestamp, added, checks"


def _to_db_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.astimezone()
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f")


def _from_db_time(value: object) -> datetime | None:
    if value is None:
        return None
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone()


@dataclass
class CheckResult:
    """Outcome of a single spam check."""

    name: str
    spam: bool
    details: str = ""

    def to_dict(self) -> dict:
        """Return the JSON form of the result."""
        return {"name": self.name, "spam": self.spam, "details": self.details}


def _check_from_dict(data: dict) -> CheckResult:
    lowered = {str(k).lower(): v for k, v in data.items()}
    return CheckResult(
        name=lowered.get("name", ""),
        spam=bool(lowered.get("spam", False)),
        details=lowered.get("details", ""),
    )


def _decode_checks(raw: str | None) -> list[CheckResult]:
    try:
        data = json.loads(raw if raw is not None else "null")
        if data is None:
            return []
        if not isinstance(data, list):
            raise ValueError("checks are not a list")
        return [_check_from_dict(item) for item in data]
    except (ValueError, AttributeError) as exc:
        raise ValueError(f"failed to unmarshal checks: {exc}") from exc


@dataclass
class DetectedSpamInfo:
    """A detected spam message."""

    id: int = 0
    gid: str = ""
    text: str = ""
    user_id: int = 0
    user_name: str = ""
    timestamp: datetime | None = None
    added: bool = False
    checks: list[CheckResult] = field(default_factory=list)


class DetectedSpam:
    """Detected spam entries of one group, kept in an SQLite database."""

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
            raise RuntimeError(f"failed to init detected spam storage: {exc}") from exc

    def write(self, entry: DetectedSpamInfo, checks: list[CheckResult] | None) -> None:
        """Store a detected spam entry with its check results."""
        if not entry.gid:
            raise ValueError("missing required GID field")
        checks_json = (
            "null"
            if checks is None
            else json.dumps([c.to_dict() for c in checks], separators=(",", ":"), ensure_ascii=False)
        )
        timestamp = entry.timestamp or datetime.now(timezone.utc)
        with self._lock, self.conn:
            self.conn.execute(
                "INSERT INTO detected_spam (gid, text, user_id, user_name, timestamp, checks) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (entry.gid, entry.text, entry.user_id, entry.user_name, _to_db_time(timestamp), checks_json),
            )
        log.info(
            "detected spam entry added for gid:%s, user_id:%d, name:%s",
            entry.gid,
            entry.user_id,
            entry.user_name,
        )

    def set_added_to_samples_flag(self, entry_id: int) -> None:
        """Mark the entry as added to spam samples."""
        with self._lock, self.conn:
            self.conn.execute("UPDATE detected_spam SET added = ? WHERE id = ?", (True, entry_id))

    def read(self) -> list[DetectedSpamInfo]:
        """Return the latest entries of the group, newest first, at most 500."""
        with self._lock:
            rows = self.conn.execute(
                f"SELECT {_COLUMNS} FROM detected_spam WHERE gid = ? ORDER BY timestamp DESC LIMIT ?",
                (self.gid, MAX_DETECTED_SPAM_ENTRIES),
            ).fetchall()
        return [self._from_row(row) for row in rows]

    def find_by_user_id(self, user_id: int) -> DetectedSpamInfo | None:
        """Return the latest entry for the user, or None if there is none."""
        with self._lock:
            row = self.conn.execute(
                f"SELECT {_COLUMNS} FROM detected_spam WHERE user_id = ? AND gid = ? "
                "ORDER BY timestamp DESC LIMIT 1",
                (user_id, self.gid),
            ).fetchone()
        if row is None:
            return None
        return self._from_row(row)

    @staticmethod
    def _from_row(row: tuple) -> DetectedSpamInfo:
        entry_id, gid, text, user_id, user_name, ts, added, checks = row
        return DetectedSpamInfo(
            id=entry_id,
            gid=gid or "",
            text=text or "",
            user_id=user_id or 0,
            user_name=user_name or "",
            timestamp=_from_db_time(ts),
            added=bool(added),
            checks=_decode_checks(checks),
        )

    def _migrate(self) -> None:
        try:
            self.conn.execute("SELECT COUNT(*) FROM detected_spam WHERE gid = ''")
        except sqlite3.OperationalError:
            pass
        else:
            log.debug("detected_spam table already migrated")
            return
        try:
            self.conn.execute(_ADD_GID_COLUMN)
        except sqlite3.OperationalError as exc:
            if "duplicate column" not in str(exc):
                raise
        self.conn.execute("UPDATE detected_spam SET gid = ? WHERE gid = ''", (self.gid,))
        log.debug("detected_spam table migrated")