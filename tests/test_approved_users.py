import sqlite3
import threading
from datetime import datetime, timedelta, timezone

import pytest

from spamkeeper.approved_users import ApprovedUsers, UserInfo

OLD_SCHEMA = """
CREATE TABLE approved_users (
    id TEXT PRIMARY KEY,
    name TEXT,
    timestamp DATETIME DEFAULT CURRENT_TIMESTAMP
)
"""


@pytest.fixture
def conn():
    connection = sqlite3.connect(":memory:", check_same_thread=False)
    yield connection
    connection.close()


def test_create_new_table(conn):
    ApprovedUsers(conn, "gr1")
    assert conn.execute("SELECT COUNT(*) FROM approved_users").fetchone()[0] == 0


def test_table_already_exists_keeps_structure(conn):
    conn.execute(
        """CREATE TABLE approved_users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            uid TEXT NOT NULL UNIQUE,
            gid TEXT DEFAULT '',
            name TEXT,
            timestamp DATETIME DEFAULT CURRENT_TIMESTAMP
        )"""
    )
    ApprovedUsers(conn, "gr1")
    count = conn.execute("SELECT COUNT(*) FROM pragma_table_info('approved_users')").fetchone()[0]
    assert count == 5


def test_nil_connection():
    with pytest.raises(ValueError, match="db connection is nil"):
        ApprovedUsers(None, "gr1")


def test_migration_preserves_data(conn):
    conn.execute(OLD_SCHEMA)
    old_time = (datetime.now(timezone.utc) - timedelta(hours=1)).replace(microsecond=0)
    conn.execute(
        "INSERT INTO approved_users (id, name, timestamp) VALUES (?, ?, ?)",
        ("user1", "test", old_time.strftime("%Y-%m-%d %H:%M:%S")),
    )
    conn.commit()
    au = ApprovedUsers(conn, "gr1")
    users = au.read()
    assert len(users) == 1
    assert users[0].user_id == "user1"
    assert users[0].user_name == "test"
    assert users[0].timestamp.timestamp() == old_time.timestamp()


@pytest.mark.parametrize(
    "user",
    [UserInfo(user_id="123", user_name="John Doe"), UserInfo(user_id="456", user_name="Jane Doe")],
)
def test_write(conn, user):
    au = ApprovedUsers(conn, "gr1")
    au.write(user)
    row = conn.execute("SELECT uid, name FROM approved_users WHERE uid = ?", (user.user_id,)).fetchone()
    assert row == (user.user_id, user.user_name)


def test_read(conn):
    au = ApprovedUsers(conn, "gr1")
    test_time = datetime(2023, 10, 2, tzinfo=timezone.utc)
    au.write(UserInfo(user_id="123", user_name="John", timestamp=test_time))
    au.write(UserInfo(user_id="456", user_name="Jane", timestamp=test_time))
    users = au.read()
    assert len(users) == 2
    assert users[0].user_id == "123"
    assert users[0].timestamp == test_time


def test_read_only_own_group(conn):
    ApprovedUsers(conn, "other").write(UserInfo(user_id="1", user_name="a"))
    au = ApprovedUsers(conn, "gr1")
    au.write(UserInfo(user_id="2", user_name="b"))
    assert [u.user_id for u in au.read()] == ["2"]


def test_delete(conn):
    au = ApprovedUsers(conn, "gr1")
    au.write(UserInfo(user_id="123", user_name="John"))
    au.delete("123")
    count = conn.execute("SELECT COUNT(*) FROM approved_users WHERE uid = ?", ("123",)).fetchone()[0]
    assert count == 0


@pytest.mark.parametrize(
    "ids, expected",
    [
        ([], []),
        (["12345"], ["12345"]),
        (["123", "456", "789"], ["123", "456", "789"]),
        (["123", "456"], ["123", "456"]),
    ],
)
def test_store_and_read(conn, ids, expected):
    au = ApprovedUsers(conn, "gr1")
    for uid in ids:
        au.write(UserInfo(user_id=uid, user_name="name_" + uid))
    assert [u.user_id for u in au.read()] == expected


def test_empty_user_id_write(conn):
    au = ApprovedUsers(conn, "gr1")
    with pytest.raises(ValueError, match="user id can't be empty"):
        au.write(UserInfo(user_id="", user_name="test"))


def test_empty_username_is_valid(conn):
    au = ApprovedUsers(conn, "gr1")
    au.write(UserInfo(user_id="123"))
    assert [u.user_id for u in au.read()] == ["123"]


def test_delete_non_existent(conn):
    au = ApprovedUsers(conn, "gr1")
    with pytest.raises(LookupError, match="failed to get approved user"):
        au.delete("non-existent")


def test_delete_empty_id(conn):
    au = ApprovedUsers(conn, "gr1")
    with pytest.raises(ValueError, match="user id can't be empty"):
        au.delete("")


def test_concurrent_write_same_user(conn):
    au = ApprovedUsers(conn, "gr1")
    user = UserInfo(user_id="456", user_name="test", timestamp=datetime.now(timezone.utc))
    errors = []

    def worker():
        try:
            au.write(user)
        except Exception as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert errors == []
    users = au.read()
    assert len(users) == 1
    assert users[0].user_id == "456"
    assert users[0].user_name == "test"


def test_cleanup_on_migration(conn):
    ApprovedUsers(conn, "gr1")
    conn.execute("INSERT INTO approved_users (uid, name) VALUES (?, ?)", ("", "invalid"))
    conn.commit()
    au2 = ApprovedUsers(conn, "gr1")
    assert au2.read() == []


def test_invalid_data_outside_group_is_skipped(conn):
    au = ApprovedUsers(conn, "gr1")
    conn.execute(
        "INSERT INTO approved_users (uid, name, timestamp) VALUES (?, ?, ?)",
        ("123", "test", "invalid-time"),
    )
    conn.commit()
    assert au.read() == []


def test_migrate_from_old_schema(conn):
    conn.execute(OLD_SCHEMA)
    conn.execute("INSERT INTO approved_users (id, name) VALUES (?, ?)", ("123", "test1"))
    conn.execute("INSERT INTO approved_users (id, name) VALUES (?, ?)", ("456", "test2"))
    conn.commit()
    au = ApprovedUsers(conn, "gr1")
    users = au.read()
    assert [(u.user_id, u.user_name) for u in users] == [("123", "test1"), ("456", "test2")]
    cols = [row[1] for row in conn.execute("PRAGMA table_info(approved_users)")]
    for col in ("id", "uid", "gid", "name", "timestamp"):
        assert col in cols


def test_no_migration_needed_for_new_schema(conn):
    ApprovedUsers(conn, "gr1").write(UserInfo(user_id="123", user_name="test"))
    users = ApprovedUsers(conn, "gr1").read()
    assert [(u.user_id, u.user_name) for u in users] == [("123", "test")]


def test_double_migration(conn):
    conn.execute(OLD_SCHEMA)
    conn.execute("INSERT INTO approved_users (id, name) VALUES ('123', 'test')")
    conn.commit()
    ApprovedUsers(conn, "gr1")
    users = ApprovedUsers(conn, "gr1").read()
    assert [(u.user_id, u.user_name) for u in users] == [("123", "test")]


def test_indices_created(conn):
    ApprovedUsers(conn, "gr1")
    names = {
        row[0]
        for row in conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'index' AND tbl_name = 'approved_users'"
        )
    }
    for expected in (
        "idx_approved_users_uid",
        "idx_approved_users_gid",
        "idx_approved_users_name",
        "idx_approved_users_timestamp",
    ):
        assert expected in names