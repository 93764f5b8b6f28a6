"""Load plain records (e.g. CSV rows) into a source table."""

import logging
from typing import Any, List, Mapping, Optional, Sequence

from .columns import quote_identifier, quote_table
from .errors import ConfigError
from .store import as_store

_LOG = logging.getLogger(__name__)


def stage_records(
    store: Any,
    table: str,
    records: Sequence[Mapping[str, Any]],
    *,
    column_types: Optional[Mapping[str, str]] = None,
) -> int:
    """Replace ``table`` with ``records`` and return the number of rows loaded.

    Columns are taken from the records in first-seen order and declared
    ``TEXT`` unless ``column_types`` says otherwise. Empty strings are stored
    as NULL, which is how CSV files spell a missing value.
    """

    store = as_store(store)
    column_types = dict(column_types or {})

    columns: List[str] = []
    for record in records:
        for name in record:
            if name not in columns:
                columns.append(name)
    for name in column_types:
        if name not in columns:
            columns.append(name)
    if not columns:
        raise ConfigError(f"no columns to stage into {table}")

    definitions = ", ".join(
        f"{quote_identifier(name)} {column_types.get(name, 'TEXT')}" for name in columns
    )
    placeholders = ", ".join("?" for _ in columns)
    rows = [[_clean(record.get(name)) for name in columns] for record in records]

    with store.transaction():
        store.execute(f"DROP TABLE IF EXISTS {quote_table(table)}")
        store.execute(f"CREATE TABLE {quote_table(table)} ({definitions})")
        store.executemany(
            f"INSERT INTO {quote_table(table)} "
            f"({', '.join(quote_identifier(n) for n in columns)}) VALUES ({placeholders})",
            rows,
        )

    _LOG.info("Staged %s records into %s", len(rows), table)
    return len(rows)


def _clean(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value

