# spamkeeper

Storage and housekeeping building blocks for a chat anti-spam bot. Data is
kept in SQLite through the standard library's `sqlite3` module; the package
needs no third-party libraries.

Each store takes an open `sqlite3.Connection` and a group id (`gid`). It
creates its table and indexes when it is constructed, keeps only the rows of
its own group apart, and serialises access with a lock. When the same
connection is used from several threads, open it with
`check_same_thread=False`.

## Modules

### `spamkeeper.approved_users`

- `UserInfo(user_id, user_name="", timestamp=None)`
- `ApprovedUsers(conn, gid)`
  - `read()` returns the group's users ordered by user id.
  - `write(user)` adds or replaces a user. An empty user id raises
    `ValueError`; a missing timestamp becomes the current time.
  - `delete(user_id)` removes a user. An empty id raises `ValueError`, an
    unknown one `LookupError`.

Tables in the older layout, without the `uid` and `gid` columns, are brought
up to date when the store is constructed.

### `spamkeeper.detected_spam`

- `CheckResult(name, spam, details="")` with `to_dict()`.
- `DetectedSpamInfo` holds `id`, `gid`, `text`, `user_id`, `user_name`,
  `timestamp`, `added` and `checks`.
- `DetectedSpam(conn, gid)`
  - `write(entry, checks)` stores an entry with its check results as JSON. An
    entry without a `gid` raises `ValueError`.
  - `read()` returns the group's latest entries, newest first, at most 500
    (`MAX_DETECTED_SPAM_ENTRIES`).
  - `find_by_user_id(user_id)` returns the user's latest entry, or `None`.
    Check results that cannot be decoded raise `ValueError`.
  - `set_added_to_samples_flag(entry_id)` marks an entry as added to samples.

### `spamkeeper.dictionary`

- `DictionaryType.STOP_PHRASE` and `DictionaryType.IGNORED_WORD`;
  `validate_dictionary_type(value)` turns a string into one or raises
  `ValueError`.
- `DictionaryStats(total_stop_phrases, total_ignored_words)`.
- `Dictionary(conn, gid)`
  - `add(dict_type, data)`: an entry whose data already exists is left as it is.
  - `delete(entry_id)` raises `LookupError` when there is no such entry.
  - `read(dict_type)`, `iterate(dict_type)` and `reader(dict_type)` give the
    entries of a type oldest first, as a list, an iterator, or a text stream
    with one entry per line.
  - `import_entries(dict_type, source, with_cleanup)` reads comma-separated
    entries, one or more per line, from a string, bytes or a stream. Quoted
    fields may hold commas and doubled quotes. With `with_cleanup`, entries of
    the same type are removed first. Malformed input raises `ValueError` and
    changes nothing. Returns the new `stats()`.
  - `stats()` counts entries by type.

### `spamkeeper.backup`

`backup_db(db_file, version, max_backups)` copies `db_file` to
`<db_file>.<version>`, with dots in the version turned into underscores,
unless that backup already exists or the database file is missing. It then
keeps only the `max_backups` newest `<db_file>.*` files. A backup is dated by
a `YYYYMMDDTHH:MM:SS` timestamp at the end of its version, and otherwise by
the file's modification time. A `max_backups` of 0 turns backups off.

### `spamkeeper.paths`

- `expand_path(path)` expands a leading `~` to the home directory and makes
  the path absolute; an empty path stays empty.
- `check_volume_mount(dynamic_data_path)`: when the environment variable
  `TGSPAM_IN_DOCKER` is `1`, it logs a warning and returns `False` if the
  directory is missing, or if it holds a `.not_mounted` marker and does not
  appear in the output of `mount`. In every other case it returns `True`.

### `spamkeeper.spamlog`

- `parse_size(value)` parses sizes such as `100`, `10k`, `1M`, `2G` or `1T`,
  in powers of 1024, into bytes.
- `make_spam_log_writer(enabled, file_name, max_size, max_backups)` returns a
  writer that throws everything away when `enabled` is false. Otherwise the
  writer appends to `file_name` and rotates it once it would grow beyond
  `max_size`, which is rounded down to whole megabytes (100 MB when that comes
  to 0). Rotated files are gzipped, and the newest `max_backups` of them are
  kept.
- `SpamUser(id, user_name="", display_name="")`.
- `make_spam_logger(gid, writer, store)` returns a function
  `save(user, text, checks)`. The function writes one JSON line (`ts`,
  `display_name`, `user_name`, `user_id`, `text`) to `writer` and a
  `DetectedSpamInfo` to `store`, such as a `DetectedSpam`. Newlines in the
  text become spaces and the text is trimmed. Failures of either write are
  logged, not raised.

### `spamkeeper.migration`

`migrate_dicts(samples_data_path, dictionary, convert="enabled")` loads the
legacy `stop-words.txt` and `exclude-tokens.txt` files from
`samples_data_path` into a `Dictionary`. Each file found replaces the entries
of its type and is then renamed with a `.loaded` suffix. It does nothing when
`convert` is `"disabled"` and raises `ValueError` when `dictionary` is `None`.

## Example

```python
import sqlite3

from spamkeeper.approved_users import ApprovedUsers, UserInfo
from spamkeeper.dictionary import Dictionary, DictionaryType

conn = sqlite3.connect("tg-spam.db", check_same_thread=False)

users = ApprovedUsers(conn, "my-group")
users.write(UserInfo(user_id="123", user_name="john"))
print([u.user_id for u in users.read()])

words = Dictionary(conn, "my-group")
words.add(DictionaryType.STOP_PHRASE, "buy now")
print(words.stats())  # stop phrases: 1, ignored words: 0
```

## What it does not do

This is a library of storage and maintenance pieces. It has no command-line
program and no bot that connects to a chat service. It does not detect spam
itself, keep spam and ham samples, or serve a web interface. The only
database it supports is SQLite.

## Tests

```
pip install -e ".[test]"
pytest
```