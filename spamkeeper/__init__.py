"""SQLite storage, backups, spam logs and legacy file migration for a chat anti-spam bot."""

__version__ = "0.1.0"