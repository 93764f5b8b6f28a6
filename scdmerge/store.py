"""Store driver and schema introspection used by the merge.

The merge only talks to the store through the small :class:`Store` surface:
statements, queries, a scoped transaction and column lookups. The SQLite
implementation below is the one the project ships with.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Protocol, Sequence

from .columns import quote_identifier, quote_table
from .errors import ExecutionError

_LOG = logging.getLogger(__name__)

Params = Sequence[Any]


class Store(Protocol):
    def execute(self, sql: str, params: Params = ()) -> int: ...

    def executemany(self, sql: str, rows: Iterable[Params]) -> int: ...

    def query(self, sql: str, params: Params = ()) -> List[Any]: ...

    def transaction(self) -> Any: ...

    def table_exists(self, table: str) -> bool: ...

    def columns(self, table: str) -> Dict[str, str]: ...

    def column_type(self, table: str, column: str) -> Optional[str]: ...


class SQLiteStore:
    """:class:`Store` backed by a :class:`sqlite3.Connection`."""

    _SAVEPOINT = "scd_merge"

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def execute(self, sql: str, params: Params = ()) -> int:
        _LOG.debug("Executing: %s %s", sql, tuple(params))
        try:
            cursor = self.conn.execute(sql, params)
        except sqlite3.Error as exc:
            raise ExecutionError(f"statement failed: {exc}", statement=sql) from exc
        return cursor.rowcount

    def executemany(self, sql: str, rows: Iterable[Params]) -> int:
        rows = list(rows)
        if not rows:
            return 0
        _LOG.debug("Executing for %s rows: %s", len(rows), sql)
        try:
            cursor = self.conn.executemany(sql, rows)
        except sqlite3.Error as exc:
            raise ExecutionError(f"statement failed: {exc}", statement=sql) from exc
        return cursor.rowcount

    def query(self, sql: str, params: Params = ()) -> List[sqlite3.Row]:
        _LOG.debug("Querying: %s %s", sql, tuple(params))
        try:
            cursor = self.conn.cursor()
            cursor.row_factory = sqlite3.Row
            return list(cursor.execute(sql, params).fetchall())
        except sqlite3.Error as exc:
            raise ExecutionError(f"query failed: {exc}", statement=sql) from exc

    @contextmanager
    def transaction(self) -> Iterator["SQLiteStore"]:
        """Run the block atomically.

        A savepoint is used rather than ``BEGIN`` so the block also nests
        inside a transaction the caller already has open. Any exception rolls
        the block back and is re-raised.
        """

        self.execute(f"SAVEPOINT {self._SAVEPOINT}")
        try:
            yield self
        except BaseException:
            # Some errors make SQLite roll the whole transaction back itself.
            if self.conn.in_transaction:
                try:
                    self.conn.execute(f"ROLLBACK TO SAVEPOINT {self._SAVEPOINT}")
                    self.conn.execute(f"RELEASE SAVEPOINT {self._SAVEPOINT}")
                except sqlite3.Error:
                    _LOG.exception("Rollback of savepoint %s failed", self._SAVEPOINT)
            raise
        self.execute(f"RELEASE SAVEPOINT {self._SAVEPOINT}")

    def table_exists(self, table: str) -> bool:
        return bool(self.columns(table))

    def columns(self, table: str) -> Dict[str, str]:
        """Return ``{column: declared type}`` for ``table`` in definition order."""

        schema, _, name = table.rpartition(".")
        pragma = "PRAGMA "
        if schema:
            pragma += quote_identifier(schema) + "."
        pragma += f"table_info({quote_identifier(name)})"
        return {row[1]: (row[2] or "").upper() for row in self.query(pragma)}

    def column_type(self, table: str, column: str) -> Optional[str]:
        return self.columns(table).get(column)

    def row_count(self, table: str) -> int:
        return self.query(f"SELECT COUNT(*) FROM {quote_table(table)}")[0][0]

    def close(self) -> None:
        self.conn.close()


def connect(db_path: str | Path) -> SQLiteStore:
    """Create a SQLite-backed store with sensible defaults."""

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return SQLiteStore(conn)


def as_store(store_or_conn: Any) -> Store:
    """Accept either a store or a raw :class:`sqlite3.Connection`."""

    if isinstance(store_or_conn, sqlite3.Connection):
        return SQLiteStore(store_or_conn)
    return store_or_conn
