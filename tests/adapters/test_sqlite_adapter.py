import sqlite3

import pytest

from quarry.adapters import (
    AdapterConnectionError,
    AdapterExecutionError,
    ConnectionConfig,
    ConstraintViolationError,
    SQLiteAdapter,
)


@pytest.fixture
def adapter(tmp_path):
    adapter = SQLiteAdapter()
    config = ConnectionConfig(url=f"sqlite:///{tmp_path / 'test.db'}")
    adapter.connect(config)
    yield adapter
    adapter.close()


def test_connect_creates_database(tmp_path):
    adapter = SQLiteAdapter()
    config = ConnectionConfig(url=f"sqlite:///{tmp_path / 'connect.db'}")
    connection = adapter.connect(config)
    assert isinstance(connection, sqlite3.Connection)
    assert (tmp_path / "connect.db").exists()
    adapter.close()


def test_execute_and_last_insert_id(adapter):
    adapter.execute("CREATE TABLE example (id INTEGER PRIMARY KEY, name TEXT NOT NULL)")
    cursor = adapter.execute("INSERT INTO example (name) VALUES (?)", ("Alice",))
    inserted_id = adapter.last_insert_id(cursor, "example", "id")
    assert inserted_id == 1
    rows = adapter.execute("SELECT name FROM example WHERE id = ?", (inserted_id,)).fetchall()
    assert rows[0]["name"] == "Alice"


def test_transaction_commit_and_rollback(adapter):
    adapter.execute("CREATE TABLE item (id INTEGER PRIMARY KEY, value INTEGER)")

    adapter.begin()
    adapter.execute("INSERT INTO item (value) VALUES (?)", (10,))
    adapter.commit()
    count = adapter.execute("SELECT COUNT(*) FROM item").fetchone()[0]
    assert count == 1

    adapter.begin()
    adapter.execute("INSERT INTO item (value) VALUES (?)", (20,))
    adapter.rollback()
    count_after = adapter.execute("SELECT COUNT(*) FROM item").fetchone()[0]
    assert count_after == 1


def test_begin_joins_implicit_transaction(adapter):
    adapter.execute("CREATE TABLE item (id INTEGER PRIMARY KEY, value INTEGER)")
    adapter.execute("INSERT INTO item (value) VALUES (?)", (1,))
    adapter.begin()
    adapter.rollback()
    assert adapter.execute("SELECT COUNT(*) FROM item").fetchone()[0] == 0


def test_constraint_violation_is_classified(adapter):
    adapter.execute("CREATE TABLE person (id INTEGER PRIMARY KEY, email TEXT UNIQUE)")
    adapter.execute("INSERT INTO person (email) VALUES (?)", ("a@example.com",))
    with pytest.raises(ConstraintViolationError) as excinfo:
        adapter.execute("INSERT INTO person (email) VALUES (?)", ("a@example.com",))
    assert excinfo.value.retryable is False
    assert isinstance(excinfo.value.__cause__, sqlite3.IntegrityError)


def test_bad_sql_is_an_execution_error(adapter):
    with pytest.raises(AdapterExecutionError):
        adapter.execute("SELECT * FROM missing_table")


def test_execute_requires_connection():
    adapter = SQLiteAdapter()
    with pytest.raises(AdapterConnectionError) as excinfo:
        adapter.execute("SELECT 1")
    assert excinfo.value.retryable is False


def test_in_memory_database():
    adapter = SQLiteAdapter()
    adapter.connect(ConnectionConfig(url="sqlite:///:memory:"))
    adapter.execute("CREATE TABLE sample (value TEXT)")
    adapter.execute("INSERT INTO sample (value) VALUES (?)", ("hello",))
    row = adapter.execute("SELECT value FROM sample").fetchone()
    assert row[0] == "hello"
    adapter.close()
