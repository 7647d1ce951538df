"""Reports about detected spam: a rotated JSON-lines log and the detected spam store."""

from __future__ import annotations

import gzip
import json
import logging
import os
import re
import shutil
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol, Union

from spamkeeper.detected_spam import CheckResult, DetectedSpamInfo

log = logging.getLogger(__name__)

_MEGABYTE = 1024 * 1024
_DEFAULT_MAX_SIZE_MB = 100
_SUFFIXES = ("k", "m", "g", "t")
_SIGNED_INT_RE = re.compile(r"[+-]?\d+")
_UNSIGNED_INT_RE = re.compile(r"\d+")
_BACKUP_TIME_FORMAT = "%Y-%m-%dT%H-%M-%S.%f"

Data = Union[bytes, str]


class Writer(Protocol):
    """Anything that accepts written data and can be closed."""

    def write(self, data: bytes, /) -> object: ...

    def close(self) -> None: ...


@dataclass
class SpamUser:
    """The sender of a spam message."""

    id: int
    user_name: str = ""
    display_name: str = ""


def parse_size(value: str) -> int:
    """Parse a size such as 100, 10k, 1M, 2G or 1T (powers of 1024) into bytes."""
    if not value:
        raise ValueError("empty value")
    for power, suffix in enumerate(_SUFFIXES, start=1):
        if value.endswith((suffix, suffix.upper())):
            number = value[:-1]
            if not _SIGNED_INT_RE.fullmatch(number):
                raise ValueError(f"can't parse {value}: invalid number {number!r}")
            parsed = int(number)
            if parsed < 0:
                raise ValueError(f"can't parse {value}: negative size")
            return parsed * 1024**power
    if not _UNSIGNED_INT_RE.fullmatch(value):
        raise ValueError(f"invalid size {value!r}")
    return int(value)


class _DiscardWriter:
    """Writer that drops everything written to it."""

    def write(self, data: Data) -> int:
        return len(data)

    def close(self) -> None:
        return None

    def __enter__(self) -> _DiscardWriter:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class _RotatingFile:
    """Append-only file rotated by size; old files are gzipped and pruned."""

    def __init__(self, filename: str, max_size_mb: int, max_backups: int) -> None:
        self.filename = filename
        self.max_bytes = (max_size_mb if max_size_mb > 0 else _DEFAULT_MAX_SIZE_MB) * _MEGABYTE
        self.max_backups = max_backups
        self._file = None
        self._size = 0
        directory = os.path.dirname(filename)
        stem, ext = os.path.splitext(os.path.basename(filename))
        self._dir = directory or "."
        self._prefix = f"{stem}-"
        self._ext = ext

    def write(self, data: Data) -> int:
        if isinstance(data, str):
            data = data.encode("utf-8")
        if len(data) > self.max_bytes:
            raise ValueError(
                f"write length {len(data)} exceeds maximum file size {self.max_bytes}"
            )
        if self._file is None:
            self._open_existing_or_new(len(data))
        elif self._size + len(data) > self.max_bytes:
            self._rotate()
        written = self._file.write(data)
        self._file.flush()
        self._size += written
        return written

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> _RotatingFile:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _open_existing_or_new(self, incoming: int) -> None:
        os.makedirs(self._dir, exist_ok=True)
        try:
            size = os.path.getsize(self.filename)
        except OSError:
            self._open_new()
            return
        if size + incoming > self.max_bytes:
            self._rotate()
            return
        self._file = open(self.filename, "ab")  # noqa: SIM115 - kept open across writes
        self._size = size

    def _open_new(self) -> None:
        os.makedirs(self._dir, exist_ok=True)
        self._file = open(self.filename, "wb")  # noqa: SIM115 - kept open across writes
        self._size = 0

    def _rotate(self) -> None:
        self.close()
        if os.path.exists(self.filename):
            backup = self._backup_name()
            os.replace(self.filename, backup)
            self._compress(backup)
        self._open_new()
        self._prune()

    def _backup_name(self) -> str:
        moment = datetime.now()
        while True:
            stamp = moment.strftime(_BACKUP_TIME_FORMAT)[:-3]  # milliseconds
            name = os.path.join(self._dir, f"{self._prefix}{stamp}{self._ext}")
            if not os.path.exists(name) and not os.path.exists(name + ".gz"):
                return name
            moment += timedelta(milliseconds=1)

    @staticmethod
    def _compress(path: str) -> None:
        with open(path, "rb") as src, gzip.open(path + ".gz", "wb") as dst:
            shutil.copyfileobj(src, dst)
        os.remove(path)

    def _backup_time(self, name: str) -> datetime | None:
        if not name.startswith(self._prefix):
            return None
        rest = name[len(self._prefix):]
        for ending in (self._ext + ".gz", self._ext):
            if rest.endswith(ending) and (ending or rest):
                stamp = rest[: len(rest) - len(ending)] if ending else rest
                try:
                    return datetime.strptime(stamp + "000", _BACKUP_TIME_FORMAT)
                except ValueError:
                    return None
        return None

    def _prune(self) -> None:
        if self.max_backups <= 0:
            return
        backups = []
        for name in os.listdir(self._dir):
            stamp = self._backup_time(name)
            if stamp is not None:
                backups.append((stamp, os.path.join(self._dir, name)))
        backups.sort(reverse=True)
        for _, path in backups[self.max_backups:]:
            try:
                os.remove(path)
            except OSError as exc:
                log.warning("can't remove old log %s: %s", path, exc)


def make_spam_log_writer(
    enabled: bool, file_name: str, max_size: str, max_backups: int
) -> _DiscardWriter | _RotatingFile:
    """Return a writer for the spam log.

    When disabled, the writer discards everything. Otherwise it appends to
    file_name, rotating the file once it grows beyond max_size (rounded down to
    whole megabytes) and keeping max_backups gzipped old files.
    """
    if not enabled:
        return _DiscardWriter()
    try:
        size = parse_size(max_size)
    except ValueError as exc:
        raise ValueError(f"can't parse logger MaxSize: {exc}") from exc
    size_mb = size // _MEGABYTE
    log.info("logger enabled for %s, max size %dM", file_name, size_mb)
    return _RotatingFile(file_name, size_mb, max_backups)


def _encode_line(record: dict) -> bytes:
    line = json.dumps(record, ensure_ascii=False, separators=(",", ":"))
    for char, escaped in (
        ("<", "\\u003c"),
        (">", "\\u003e"),
        ("&", "\\u0026"),
        ("\u2028", "\\u2028"),
        ("\u2029", "\\u2029"),
    ):
        line = line.replace(char, escaped)
    return (line + "\n").encode("utf-8")


def _rfc3339(moment: datetime) -> str:
    stamp = moment.isoformat(timespec="seconds")
    return stamp[:-6] + "Z" if stamp.endswith("+00:00") else stamp


class _DetectedSpamStore(Protocol):
    def write(self, entry: DetectedSpamInfo, checks: list[CheckResult] | None) -> None: ...


def make_spam_logger(
    gid: str, writer: Writer, store: _DetectedSpamStore
) -> Callable[[SpamUser, str, Iterable[CheckResult] | None], None]:
    """Return a function that records a spam message.

    The function writes one JSON line to writer and stores the message with its
    check results in store. Failures of either are logged, not raised.
    """

    def save(user: SpamUser, text: str, checks: Iterable[CheckResult] | None) -> None:
        user_name = user.user_name or user.display_name
        clean_text = text.replace("\n", " ").strip()
        log.debug("spam detected from %s, text: %s", user, clean_text)
        now = datetime.now().astimezone()
        record = {
            "ts": _rfc3339(now),
            "display_name": user.display_name,
            "user_name": user.user_name,
            "user_id": user.id,
            "text": clean_text,
        }
        try:
            writer.write(_encode_line(record))
        except (OSError, ValueError) as exc:
            log.warning("can't write to log, %s", exc)

        entry = DetectedSpamInfo(
            gid=gid,
            text=clean_text,
            user_id=user.id,
            user_name=user_name,
            timestamp=now,
        )
        try:
            store.write(entry, None if checks is None else list(checks))
        except Exception as exc:  # noqa: BLE001 - a failed store must not stop reporting
            log.warning("can't write to db, %s", exc)

    return save