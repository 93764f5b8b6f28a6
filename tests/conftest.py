import sqlite3
from typing import Iterator

import pytest

from scdmerge import merge_logic
from scdmerge.store import SQLiteStore

SOURCE_COLUMNS = ("customer_id", "name", "email", "address", "updated_at")


@pytest.fixture()
def conn() -> Iterator[sqlite3.Connection]:
    connection = sqlite3.connect(":memory:")
    connection.row_factory = sqlite3.Row
    yield connection
    connection.close()


@pytest.fixture()
def store(conn) -> SQLiteStore:
    return SQLiteStore(conn)


@pytest.fixture()
def tables(conn) -> None:
    conn.execute(
        """
        CREATE TABLE src (
            customer_id TEXT,
            name TEXT,
            email TEXT,
            address TEXT,
            updated_at TIMESTAMP
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE dim (
            customer_id TEXT,
            name TEXT,
            email TEXT,
            address TEXT,
            updated_at TIMESTAMP,
            valid_from TIMESTAMP NOT NULL,
            valid_to TIMESTAMP NOT NULL,
            is_current BOOLEAN NOT NULL DEFAULT 0
        )
        """
    )
    conn.commit()


@pytest.fixture()
def load_source(conn, tables):
    """Replace the contents of ``src`` with the given row dictionaries."""

    def _load(*rows):
        conn.execute("DELETE FROM src")
        conn.executemany(
            "INSERT INTO src (customer_id, name, email, address, updated_at) "
            "VALUES (?, ?, ?, ?, ?)",
            [tuple(row.get(column) for column in SOURCE_COLUMNS) for row in rows],
        )
        conn.commit()

    return _load


@pytest.fixture()
def versions(conn):
    """Return the rows of ``dim``, oldest version first."""

    def _versions(key=None):
        query = "SELECT * FROM dim"
        params = ()
        if key is not None:
            query += " WHERE customer_id = ?"
            params = (key,)
        query += " ORDER BY customer_id, valid_from, is_current"
        return [dict(row) for row in conn.execute(query, params).fetchall()]

    return _versions


@pytest.fixture()
def merge(conn, tables):
    """Run the standard merge: Type-2 on name/email, Type-1 on address."""

    def _merge(timestamp_spec=None, delete_missing=False, *, now=None, type2="name, email", type1="address"):
        return merge_logic.run_merge(
            conn,
            "dim",
            "src",
            "customer_id",
            type2,
            type1,
            timestamp_spec,
            delete_missing,
            now=now,
        )

    return _merge
