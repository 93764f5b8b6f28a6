"""Core Type-1 / Type-2 merge logic for dimension tables.

This module merges a full snapshot of a source table into a target table
that keeps every version of a record using the Slowly Changing Dimension
(SCD) pattern on top of a relational store.

Key concepts
------------
* Each target row carries ``valid_from``/``valid_to`` (a half-open interval)
  and an ``is_current`` flag. The current version of a key is open-ended:
  its ``valid_to`` is :data:`~scdmerge.timestamps.OPEN_ENDED`.
* A change in a Type-2 column closes the current version and opens a new
  one starting at the same instant, so history stays contiguous.
* A change in a Type-1 column only is written over every version of the
  key, historical ones included. No new version is created.
* Keys absent from the source are optionally closed ("deletion-close").
  When such a key shows up again it starts a new, disjoint series.
* The whole run, checks included, is one transaction. Any failure leaves the
  target exactly as it was.

Re-running a merge with an unchanged source changes nothing.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .columns import (
    BOOKKEEPING_COLUMNS,
    IS_CURRENT,
    VALID_FROM,
    VALID_TO,
    ColumnList,
    ColumnSpec,
    quote_identifier,
    quote_table,
)
from .errors import ConfigError, DuplicateKeyError
from .preflight import (
    check_configuration,
    check_ordering,
    check_source_keys,
    current_version,
    stored_timestamp,
)
from .store import Store, as_store
from .timestamps import OPEN_ENDED, ResolvedTimestamp, format_timestamp, parse_timestamp, resolve_timestamp

_LOG = logging.getLogger(__name__)

# Extra fields carried on each source row by _load_source.
_TARGET_KEY = "scd_target_key"
_TYPE2_CHANGED = "scd_type2_changed"
_TYPE1_CHANGED = "scd_type1_changed"


class ChangeKind(Enum):
    NEW = "new"
    REOPENED = "reopened"
    TYPE2 = "type2"
    TYPE1 = "type1"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class MergeRunConfig:
    """Immutable settings of a single merge run."""

    target: str
    source: str
    key_column: str
    columns: ColumnSpec
    timestamp: ResolvedTimestamp
    delete_missing: bool = False


@dataclass
class MergeSummary:
    """High level merge statistics returned by :func:`run_merge`."""

    inserted: int = 0
    type2_updates: int = 0
    type1_updates: int = 0
    deleted: int = 0
    run_timestamp: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[object]]:
        """Return a serialisable representation of the summary."""

        return {
            "inserted": self.inserted,
            "type2_updates": self.type2_updates,
            "type1_updates": self.type1_updates,
            "deleted": self.deleted,
            "run_timestamp": self.run_timestamp,
        }


def build_config(
    store: Store,
    target: str,
    source: str,
    key_column: str,
    type2_columns: ColumnList,
    type1_columns: ColumnList = None,
    timestamp_spec: Optional[str] = None,
    delete_missing: bool = False,
    *,
    now: Optional[datetime] = None,
) -> MergeRunConfig:
    """Validate the raw run parameters and freeze them into a config."""

    for name, value in (
        ("target_table", target),
        ("source_table", source),
        ("key_column", key_column),
    ):
        if value is None or not str(value).strip():
            raise ConfigError(f"parameter {name} cannot be empty")

    target, source, key_column = target.strip(), source.strip(), key_column.strip()
    columns = ColumnSpec.parse(type2_columns, type1_columns, key_column)
    timestamp = resolve_timestamp(timestamp_spec, store, source, now=now)

    return MergeRunConfig(
        target=target,
        source=source,
        key_column=key_column,
        columns=columns,
        timestamp=timestamp,
        delete_missing=bool(delete_missing),
    )


def run_merge(
    store: Any,
    target: str,
    source: str,
    key_column: str,
    type2_columns: ColumnList,
    type1_columns: ColumnList = None,
    timestamp_spec: Optional[str] = None,
    delete_missing: bool = False,
    *,
    now: Optional[datetime] = None,
) -> MergeSummary:
    """Merge the ``source`` snapshot into the versioned ``target`` table.

    Parameters
    ----------
    store:
        A :class:`~scdmerge.store.Store` or a raw ``sqlite3.Connection``.
    target, source:
        Table names, optionally schema-qualified (``schema.table``).
    key_column:
        Business key. Must be unique and non-NULL in the source.
    type2_columns:
        Columns whose changes open a new version. Comma separated string or
        sequence of names. Cannot be empty.
    type1_columns:
        Columns whose changes overwrite every version of the key.
    timestamp_spec:
        ``None``/blank for "now", a ``YYYY-MM-DD[ hh:mm:ss]`` literal, or the
        name of a timestamp column of the source table.
    delete_missing:
        Close current versions whose key is absent from the source. Use this
        only when the source always holds the full set of records.
    now:
        Override for "now", mostly useful in tests.
    """

    store = as_store(store)
    config = build_config(
        store,
        target,
        source,
        key_column,
        type2_columns,
        type1_columns,
        timestamp_spec,
        delete_missing,
        now=now,
    )
    _LOG.info(
        "Merging %s into %s on %s (Type-2: %s, Type-1: %s, timestamp: %s, delete_missing: %s)",
        config.source,
        config.target,
        config.key_column,
        ", ".join(config.columns.type2),
        ", ".join(config.columns.type1) or "-",
        config.timestamp.column or config.timestamp.value,
        config.delete_missing,
    )

    with store.transaction():  # the whole run is a single transaction
        summary = _merge(store, config)

    _LOG.info("Merge summary: %s", summary.to_dict())
    return summary


def classify(
    history: Sequence[Mapping[str, Any]],
    type2_changed: bool,
    type1_changed: bool,
) -> ChangeKind:
    """Decide what a source row does to the versions of its key.

    The two flags say whether the row's Type-2 and Type-1 values differ from
    the key's current version. They are computed by the store, so values are
    compared with the target columns' own types.
    """

    if not history:
        return ChangeKind.NEW
    if current_version(history) is None:
        return ChangeKind.REOPENED
    if type2_changed:
        return ChangeKind.TYPE2
    if type1_changed:
        return ChangeKind.TYPE1
    return ChangeKind.UNCHANGED


def create_target_table(store: Any, target: str, source: str, key_column: str) -> bool:
    """Create ``target`` from the columns of ``source`` plus the bookkeeping columns.

    Returns ``False`` when the target already exists.
    """

    store = as_store(store)
    if store.table_exists(target):
        return False

    source_columns = store.columns(source)
    if not source_columns:
        raise ConfigError(f"source table {source} does not exist")
    if key_column not in source_columns:
        raise ConfigError(f"key column '{key_column}' does not exist in {source}")

    definitions = [
        f"{quote_identifier(name)} {declared}".rstrip()
        for name, declared in source_columns.items()
        if name not in BOOKKEEPING_COLUMNS
    ]
    definitions += [
        f"{quote_identifier(VALID_FROM)} TIMESTAMP NOT NULL",
        f"{quote_identifier(VALID_TO)} TIMESTAMP NOT NULL",
        f"{quote_identifier(IS_CURRENT)} BOOLEAN NOT NULL DEFAULT 0",
    ]

    schema, _, name = target.rpartition(".")
    prefix = f"{quote_identifier(schema)}." if schema else ""
    key = quote_identifier(key_column)

    with store.transaction():
        store.execute(
            f"CREATE TABLE {quote_table(target)} (\n    " + ",\n    ".join(definitions) + "\n)"
        )
        store.execute(
            f"CREATE INDEX {prefix}{quote_identifier(f'idx_{name}_key_valid')} "
            f"ON {quote_identifier(name)} ({key}, {quote_identifier(VALID_FROM)})"
        )
        store.execute(
            f"CREATE INDEX {prefix}{quote_identifier(f'idx_{name}_current')} "
            f"ON {quote_identifier(name)} ({key}, {quote_identifier(IS_CURRENT)})"
        )
    _LOG.info("Created target table %s from %s", target, source)
    return True


def query_as_of(
    store: Any,
    target: str,
    key_column: str,
    at: object,
    *,
    keys: Optional[Iterable[object]] = None,
) -> List[Dict[str, object]]:
    """Return the versions of ``target`` that were valid at ``at``."""

    store = as_store(store)
    at_iso = format_timestamp(parse_timestamp(at))
    key = quote_identifier(key_column)

    params: List[object] = [at_iso, at_iso]
    filters = ""
    if keys is not None:
        keys = list(keys)
        if not keys:
            return []
        placeholders = ",".join("?" for _ in keys)
        filters = f" AND {key} IN ({placeholders})"
        params.extend(keys)

    query = (
        f"SELECT * FROM {quote_table(target)} "
        f"WHERE {quote_identifier(VALID_FROM)} <= ? AND {quote_identifier(VALID_TO)} > ?"
        f"{filters} "
        f"ORDER BY {key}"
    )
    rows = []
    for row in store.query(query, params):
        record = dict(row)
        record[IS_CURRENT] = bool(record[IS_CURRENT])
        rows.append(record)
    return rows


# Helper functions


def _merge(store: Store, config: MergeRunConfig) -> MergeSummary:
    check_configuration(store, config)
    check_source_keys(store, config.source, config.key_column)

    source_rows = _load_source(store, config)
    versions = _load_versions(store, config)
    stamps = {
        key: config.timestamp.for_row(row, key) for key, row in source_rows.items()
    }
    check_ordering(
        config.timestamp, stamps, versions, delete_missing=config.delete_missing
    )

    changes: Dict[ChangeKind, List[object]] = {kind: [] for kind in ChangeKind}
    for key, row in source_rows.items():
        kind = classify(versions.get(key, ()), row[_TYPE2_CHANGED], row[_TYPE1_CHANGED])
        changes[kind].append(key)
    _LOG.info(
        "Classified %s source keys: %s",
        len(source_rows),
        ", ".join(f"{kind.value}={len(keys)}" for kind, keys in changes.items()),
    )

    summary = MergeSummary(run_timestamp=config.timestamp.value)

    type2_keys = changes[ChangeKind.TYPE2]
    _close_versions(store, config, [(stamps[key], key) for key in type2_keys])
    _insert_versions(store, config, [(source_rows[key], stamps[key]) for key in type2_keys])
    summary.type2_updates = len(type2_keys)

    overwrite_keys = (
        changes[ChangeKind.TYPE1] + type2_keys + changes[ChangeKind.REOPENED]
    )
    _overwrite_type1(store, config, [source_rows[key] for key in overwrite_keys])
    summary.type1_updates = len(changes[ChangeKind.TYPE1])

    new_keys = changes[ChangeKind.NEW] + changes[ChangeKind.REOPENED]
    _insert_versions(store, config, [(source_rows[key], stamps[key]) for key in new_keys])
    summary.inserted = len(new_keys)

    if config.delete_missing:
        missing = [
            key
            for key, history in versions.items()
            if key not in source_rows and current_version(history) is not None
        ]
        delete_at = config.timestamp.delete_value
        _close_versions(store, config, [(delete_at, key) for key in missing])
        summary.deleted = len(missing)
        _LOG.info("Closed %s keys missing from %s at %s", len(missing), config.source, delete_at)

    return summary


def _changed_flag(names: Sequence[str]) -> str:
    if not names:
        return "0"
    differs = " OR ".join(
        f"s.{quote_identifier(n)} IS NOT c.{quote_identifier(n)}" for n in names
    )
    return f"CASE WHEN c.{quote_identifier(IS_CURRENT)} IS NULL THEN 0 WHEN {differs} THEN 1 ELSE 0 END"


def _load_source(store: Store, config: MergeRunConfig) -> Dict[object, Dict[str, Any]]:
    """Read the source rows keyed by the key value as the target stores it.

    Key matching and change detection run in SQL against the target columns,
    so a ``'1'`` in a TEXT source column matches a ``1`` in an INTEGER target
    column, exactly as the UPDATE statements of the merge will see it.
    """

    key = quote_identifier(config.key_column)
    target = quote_table(config.target)
    names = [config.key_column, *config.columns.attributes]
    if config.timestamp.per_row and config.timestamp.column not in names:
        names.append(config.timestamp.column)

    selected = [f"s.{quote_identifier(n)}" for n in names]
    selected.append(f"(SELECT t.{key} FROM {target} t WHERE t.{key} = s.{key} LIMIT 1)")
    selected.append(_changed_flag(config.columns.type2))
    selected.append(_changed_flag(config.columns.type1))
    rows = store.query(
        f"SELECT {', '.join(selected)} "
        f"FROM {quote_table(config.source)} s "
        f"LEFT JOIN {target} c ON c.{key} = s.{key} "
        f"AND c.{quote_identifier(IS_CURRENT)} = 1"
    )

    records: Dict[object, Dict[str, Any]] = {}
    fields = [*names, _TARGET_KEY, _TYPE2_CHANGED, _TYPE1_CHANGED]
    for row in rows:
        record = dict(zip(fields, row))
        canonical = record[_TARGET_KEY]
        if canonical is None:
            canonical = record[config.key_column]
        if canonical in records:
            raise DuplicateKeyError(1, [canonical])
        records[canonical] = record
    return records


def _load_versions(store: Store, config: MergeRunConfig) -> Dict[object, List[Dict[str, Any]]]:
    names = [config.key_column, *config.columns.attributes, *BOOKKEEPING_COLUMNS]
    rows = store.query(
        f"SELECT {', '.join(quote_identifier(n) for n in names)} "
        f"FROM {quote_table(config.target)}"
    )
    records = [dict(zip(names, row)) for row in rows]
    records.sort(
        key=lambda record: (
            stored_timestamp(record, VALID_FROM, record[config.key_column]),
            bool(record[IS_CURRENT]),
        )
    )

    grouped: Dict[object, List[Dict[str, Any]]] = {}
    for record in records:
        grouped.setdefault(record[config.key_column], []).append(record)
    return grouped


def _close_versions(
    store: Store, config: MergeRunConfig, closes: Sequence[Tuple[str, object]]
) -> int:
    """Close the current version of each key at the paired timestamp."""

    closed = store.executemany(
        f"UPDATE {quote_table(config.target)} "
        f"SET {quote_identifier(VALID_TO)} = ?, {quote_identifier(IS_CURRENT)} = 0 "
        f"WHERE {quote_identifier(config.key_column)} = ? "
        f"AND {quote_identifier(IS_CURRENT)} = 1",
        closes,
    )
    if closes:
        _LOG.info("Closed %s current versions", closed)
    return closed


def _insert_versions(
    store: Store,
    config: MergeRunConfig,
    rows: Sequence[Tuple[Mapping[str, Any], str]],
) -> int:
    """Insert a new current version per ``(source row, valid_from)`` pair."""

    names = [config.key_column, *config.columns.attributes]
    columns = ", ".join(quote_identifier(n) for n in [*names, *BOOKKEEPING_COLUMNS])
    placeholders = ", ".join("?" for _ in names)
    inserted = store.executemany(
        f"INSERT INTO {quote_table(config.target)} ({columns}) "
        f"VALUES ({placeholders}, ?, ?, 1)",
        [[row[n] for n in names] + [valid_from, OPEN_ENDED] for row, valid_from in rows],
    )
    if rows:
        _LOG.info("Inserted %s new current versions", inserted)
    return inserted


def _overwrite_type1(
    store: Store, config: MergeRunConfig, rows: Sequence[Mapping[str, Any]]
) -> int:
    """Write the Type-1 values of each source row over every version of its key.

    Only versions that actually differ are touched, so versions that were
    just inserted from the same source row are left alone.
    """

    type1 = config.columns.type1
    if not type1 or not rows:
        return 0

    assignments = ", ".join(f"{quote_identifier(n)} = ?" for n in type1)
    differs = " OR ".join(f"{quote_identifier(n)} IS NOT ?" for n in type1)
    params = []
    for row in rows:
        values = [row[n] for n in type1]
        params.append(values + [row[config.key_column]] + values)

    updated = store.executemany(
        f"UPDATE {quote_table(config.target)} SET {assignments} "
        f"WHERE {quote_identifier(config.key_column)} = ? AND ({differs})",
        params,
    )
    _LOG.info("Overwrote Type-1 columns on %s versions", updated)
    return updated
