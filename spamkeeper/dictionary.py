"""Storage of stop phrases and ignored words."""

from __future__ import annotations

import io
import logging
import sqlite3
import threading
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from typing import IO, Union

log = logging.getLogger(__name__)

_CREATE_TABLE = """CREATE TABLE IF NOT EXISTS dictionary (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    gid TEXT DEFAULT '',
    timestamp DATETIME DEFAULT CURRENT_TIMESTAMP,
    type TEXT CHECK (type IN ('stop_phrase', 'ignored_word')),
    data TEXT NOT NULL,
    UNIQUE(gid, data)
)"""

_CREATE_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_dictionary_timestamp ON dictionary(timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_dictionary_type ON dictionary(type)",
    "CREATE INDEX IF NOT EXISTS idx_dictionary_phrase ON dictionary(data)",
    "CREATE INDEX IF NOT EXISTS idx_dictionary_gid ON dictionary(gid)",
)

_ADD_ENTRY = "INSERT OR IGNORE INTO dictionary (type, data, gid) VALUES (?, ?, ?)"
_IMPORT_ENTRY = "INSERT OR REPLACE INTO dictionary (type, data, gid) VALUES (?, ?, ?)"
_SELECT_DATA = "SELECT data FROM dictionary WHERE type = ? AND gid = ? ORDER BY timestamp, id"

Source = Union[str, bytes, IO[str], IO[bytes]]


class DictionaryType(str, Enum):
    """Kind of a dictionary entry."""

    STOP_PHRASE = "stop_phrase"
    IGNORED_WORD = "ignored_word"

    def __str__(self) -> str:
        return self.value


def validate_dictionary_type(value: DictionaryType | str) -> DictionaryType:
    """Return the dictionary type for the value, or raise ValueError if it is not one."""
    try:
        return DictionaryType(value)
    except ValueError:
        raise ValueError(f"invalid dictionary type: {value}") from None


@dataclass
class DictionaryStats:
    """Counts of dictionary entries by type."""

    total_stop_phrases: int = 0
    total_ignored_words: int = 0

    def __str__(self) -> str:
        return f"stop phrases: {self.total_stop_phrases}, ignored words: {self.total_ignored_words}"


def _csv_records(text: str) -> Iterator[list[str]]:
    """Parse comma separated records, trimming leading space of each field.

    Quoted fields may hold commas, newlines and doubled quotes. A quote inside an
    unquoted field, text after a closing quote and an unterminated quoted field
    are errors.
    """
    text = text.replace("\r\n", "\n")
    size = len(text)
    pos = 0
    line = 1
    while pos < size:
        if text[pos] == "\n":
            pos += 1
            line += 1
            continue
        record: list[str] = []
        while True:
            while pos < size and text[pos] != "\n" and text[pos].isspace():
                pos += 1
            if pos < size and text[pos] == '"':
                pos += 1
                parts: list[str] = []
                while True:
                    quote = text.find('"', pos)
                    if quote == -1:
                        raise ValueError(f'line {line}: extraneous or missing " in quoted-field')
                    chunk = text[pos:quote]
                    line += chunk.count("\n")
                    parts.append(chunk)
                    pos = quote + 1
                    if pos < size and text[pos] == '"':
                        parts.append('"')
                        pos += 1
                        continue
                    break
                record.append("".join(parts))
                if pos >= size or text[pos] == "\n":
                    pos += 1
                    line += 1
                    break
                if text[pos] == ",":
                    pos += 1
                    continue
                raise ValueError(f'line {line}: extraneous or missing " in quoted-field')
            end = pos
            while end < size and text[end] not in ",\n":
                end += 1
            value = text[pos:end]
            if '"' in value:
                raise ValueError(f'line {line}: bare " in non-quoted-field')
            record.append(value)
            if end < size and text[end] == ",":
                pos = end + 1
                continue
            pos = end + 1
            line += 1
            break
        yield record


def _read_source(source: Source) -> str:
    data = source if isinstance(source, (str, bytes)) else source.read()
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    return data


class Dictionary:
    """Stop phrases and ignored words of one group, kept in an SQLite database."""

    def __init__(self, conn: sqlite3.Connection, gid: str) -> None:
        if conn is None:
            raise ValueError("db connection is nil")
        self.conn = conn
        self.gid = gid
        self._lock = threading.Lock()
        try:
            with self._lock, self.conn:
                self.conn.execute(_CREATE_TABLE)
                for stmt in _CREATE_INDEXES:
                    self.conn.execute(stmt)
        except sqlite3.Error as exc:
            raise RuntimeError(f"failed to init dictionary storage: {exc}") from exc

    def add(self, dict_type: DictionaryType | str, data: str) -> None:
        """Add an entry; an entry with the same data is kept as it is."""
        kind = validate_dictionary_type(dict_type)
        if not data:
            raise ValueError("data cannot be empty")
        with self._lock, self.conn:
            self.conn.execute(_ADD_ENTRY, (kind.value, data, self.gid))

    def delete(self, entry_id: int) -> None:
        """Remove the entry with the given id; it must exist."""
        with self._lock, self.conn:
            cursor = self.conn.execute("DELETE FROM dictionary WHERE id = ?", (entry_id,))
        if cursor.rowcount == 0:
            raise LookupError(f"phrase with id {entry_id} not found")

    def read(self, dict_type: DictionaryType | str) -> list[str]:
        """Return all entries of the type, oldest first."""
        kind = validate_dictionary_type(dict_type)
        with self._lock:
            rows = self.conn.execute(_SELECT_DATA, (kind.value, self.gid)).fetchall()
        return [row[0] for row in rows]

    def reader(self, dict_type: DictionaryType | str) -> io.StringIO:
        """Return a text stream with the entries of the type, one per line."""
        return io.StringIO("\n".join(self.read(dict_type)))

    def iterate(self, dict_type: DictionaryType | str) -> Iterator[str]:
        """Return an iterator over the entries of the type, oldest first."""
        return iter(self.read(dict_type))

    def import_entries(
        self, dict_type: DictionaryType | str, source: Source, with_cleanup: bool
    ) -> DictionaryStats:
        """Import comma separated entries from text or a stream and return the new stats.

        With with_cleanup, entries of the same type are removed first. Nothing is
        changed if the input cannot be parsed.
        """
        kind = validate_dictionary_type(dict_type)
        if source is None:
            raise ValueError("reader cannot be nil")
        text = _read_source(source)
        with self._lock, self.conn:
            if with_cleanup:
                self.conn.execute(
                    "DELETE FROM dictionary WHERE type = ? AND gid = ?", (kind.value, self.gid)
                )
            try:
                for record in _csv_records(text):
                    for value in record:
                        if value:
                            self.conn.execute(_IMPORT_ENTRY, (kind.value, value, self.gid))
            except ValueError as exc:
                raise ValueError(f"error reading input: {exc}") from exc
        return self.stats()

    def stats(self) -> DictionaryStats:
        """Return counts of entries by type for the group."""
        with self._lock:
            stop_phrases, ignored_words = self.conn.execute(
                """SELECT
                    COUNT(CASE WHEN type = ? THEN 1 END),
                    COUNT(CASE WHEN type = ? THEN 1 END)
                FROM dictionary WHERE gid = ?""",
                (DictionaryType.STOP_PHRASE.value, DictionaryType.IGNORED_WORD.value, self.gid),
            ).fetchone()
        return DictionaryStats(total_stop_phrases=stop_phrases, total_ignored_words=ignored_words)