"""Checks that gate a merge run before anything is written.

Every check raises a :class:`~scdmerge.errors.MergeError`; none of them
modifies the store, so a failed run needs no cleanup.
"""

import logging
from datetime import datetime
from typing import Any, Mapping, Optional, Sequence

from .columns import BOOKKEEPING_COLUMNS, IS_CURRENT, VALID_FROM, VALID_TO, quote_identifier, quote_table
from .errors import ConfigError, DuplicateKeyError, NullKeyError, OrderingError
from .timestamps import format_timestamp, parse_timestamp

_LOG = logging.getLogger(__name__)

DUPLICATE_SAMPLE_SIZE = 5


def check_configuration(store: Any, config: Any) -> None:
    """Make sure both tables exist and carry every column the run touches."""

    source_columns = store.columns(config.source)
    if not source_columns:
        raise ConfigError(f"source table {config.source} does not exist")
    target_columns = store.columns(config.target)
    if not target_columns:
        raise ConfigError(f"target table {config.target} does not exist")

    required = (config.key_column,) + config.columns.attributes
    for table, present in ((config.source, source_columns), (config.target, target_columns)):
        missing = [name for name in required if name not in present]
        if missing:
            raise ConfigError(f"columns {', '.join(missing)} do not exist in {table}")

    missing = [name for name in BOOKKEEPING_COLUMNS if name not in target_columns]
    if missing:
        raise ConfigError(
            f"target table {config.target} lacks bookkeeping columns {', '.join(missing)}"
        )


def check_source_keys(store: Any, source: str, key_column: str) -> None:
    """Reject sources with NULL or repeated keys."""

    key = quote_identifier(key_column)
    table = quote_table(source)

    nulls = store.query(f"SELECT COUNT(*) FROM {table} WHERE {key} IS NULL")[0][0]
    if nulls:
        raise NullKeyError(nulls, key_column)

    duplicates = store.query(
        f"SELECT {key} FROM {table} GROUP BY {key} HAVING COUNT(*) > 1 ORDER BY {key}"
    )
    if duplicates:
        raise DuplicateKeyError(
            len(duplicates), [row[0] for row in duplicates[:DUPLICATE_SAMPLE_SIZE]]
        )


def check_ordering(
    timestamp: Any,
    stamps: Mapping[Any, str],
    versions: Mapping[Any, Sequence[Mapping[str, Any]]],
    *,
    delete_missing: bool = False,
) -> None:
    """Reject runs whose stamps would fall before recorded history.

    ``stamps`` maps each source key to its resolved ``valid_from`` and
    ``versions`` maps each target key to its versions ordered by
    ``valid_from``.
    """

    if timestamp.per_row:
        _check_per_row(stamps, versions)
    else:
        _check_shared(timestamp.value, versions)

    for key, stamp in stamps.items():
        history = versions.get(key)
        if not history or current_version(history) is not None:
            continue
        # Reopened key: the new series has to start after the last close.
        last_close = max(stored_timestamp(row, VALID_TO, key) for row in history)
        if parse_timestamp(stamp) < last_close:
            raise OrderingError(
                f"key {key!r} was closed at {format_timestamp(last_close)} but would reopen at {stamp}",
                key=key,
            )

    if delete_missing and timestamp.per_row:
        closing_at = parse_timestamp(timestamp.delete_value)
        for key, history in versions.items():
            if key in stamps:
                continue
            current = current_version(history)
            if current is not None and stored_timestamp(current, VALID_FROM, key) > closing_at:
                raise OrderingError(
                    f"current version of key {key!r} starts at {current[VALID_FROM]}, "
                    f"after the delete timestamp {timestamp.delete_value}",
                    key=key,
                )

    _LOG.debug("Ordering check passed for %s source keys", len(stamps))


def _check_per_row(
    stamps: Mapping[Any, str], versions: Mapping[Any, Sequence[Mapping[str, Any]]]
) -> None:
    for key, stamp in stamps.items():
        current = current_version(versions.get(key, ()))
        if current is None:
            continue
        if parse_timestamp(stamp) < stored_timestamp(current, VALID_FROM, key):
            raise OrderingError(
                f"valid_from {stamp} for key {key!r} is before the current version's "
                f"valid_from {current[VALID_FROM]}",
                key=key,
            )


def _check_shared(stamp: str, versions: Mapping[Any, Sequence[Mapping[str, Any]]]) -> None:
    run_ts = parse_timestamp(stamp)
    for key, history in versions.items():
        latest = history[-1]
        if stored_timestamp(latest, VALID_FROM, key) > run_ts:
            raise OrderingError(
                f"valid_from {stamp} is before existing version of key {key!r} "
                f"starting at {latest[VALID_FROM]}",
                key=key,
            )


def current_version(history: Sequence[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
    for row in history:
        if row[IS_CURRENT]:
            return row
    return None



def stored_timestamp(row: Mapping[str, Any], column: str, key: Any) -> datetime:
    """Parse a bookkeeping timestamp read back from the target."""

    value = row[column]
    try:
        return parse_timestamp(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise ConfigError(
            f"target {column} {value!r} of key {key!r} is not a timestamp"
        ) from exc
