"""Backups of the SQLite database file on version change."""

from __future__ import annotations

import glob
import logging
import os
import re
import shutil
import time
from datetime import datetime

log = logging.getLogger(__name__)

_STAMP_RE = re.compile(r"\d{8}T\d{2}:\d{2}:\d{2}")
_STAMP_FORMAT = "%Y%m%dT%H:%M:%S"


def _backup_time(path: str) -> float:
    """Time of a backup: the version's timestamp suffix, else the file's mtime."""
    parts = os.path.basename(path).split("-")
    if len(parts) >= 3 and _STAMP_RE.fullmatch(parts[-1]):
        try:
            return datetime.strptime(parts[-1], _STAMP_FORMAT).timestamp()
        except ValueError:
            pass
    try:
        return os.stat(path).st_mtime
    except OSError as exc:
        log.warning("can't stat file %s: %s", path, exc)
        return time.time()  # treat as newest so it is not removed


def backup_db(db_file: str, version: str, max_backups: int) -> None:
    """Copy the db file to <db_file>.<version> unless that backup exists.

    Dots in the version become underscores. At most max_backups backups are kept,
    the oldest removed first; a max_backups of 0 disables backups.
    """
    if max_backups == 0:
        return
    backup_file = f"{db_file}.{version.replace('.', '_')}"
    if os.path.exists(backup_file):
        return
    if not os.path.exists(db_file):
        log.warning("db file not found: %s, skip backup", db_file)
        return

    log.debug("db backup: %s -> %s", db_file, backup_file)
    try:
        shutil.copyfile(db_file, backup_file)
        shutil.copymode(db_file, backup_file)
    except OSError as exc:
        raise OSError(f"failed to copy db file: {exc}") from exc
    log.info("db backup created: %s", backup_file)

    files = glob.glob(glob.escape(db_file) + ".*")
    if len(files) <= max_backups:
        return

    files.sort(key=_backup_time)
    for old in files[: len(files) - max_backups]:
        try:
            os.remove(old)
        except OSError as exc:
            raise OSError(f"failed to remove old backup {old}: {exc}") from exc
        log.debug("db backup removed: %s", old)