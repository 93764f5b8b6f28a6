"""Resolution of the run timestamp used to stamp ``valid_from``/``valid_to``.

A run is stamped in one of three ways, chosen from the raw specifier:

* a literal date (``YYYY-MM-DD``) or date-time (``YYYY-MM-DD hh:mm:ss``);
* nothing at all, meaning "now", captured once and shared by the whole run;
* the name of a timestamp column of the source table, read per row. Rows
  closed because they vanished from the source have no such value and are
  stamped with "now" instead.

Timestamps are stored as ``YYYY-MM-DD HH:MM:SS`` text in UTC, which sorts in
time order.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional

from .errors import ConfigError, OrderingError

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_TZ = timezone.utc
OPEN_ENDED = "9999-12-31 00:00:00"

_LITERAL_RE = re.compile(r"^\d{4}-\d{2}-\d{2}( \d{2}:\d{2}:\d{2})?$")
_TIMESTAMP_TYPES = ("TIMESTAMP", "DATETIME", "DATE")


class TimestampMode(Enum):
    LITERAL = "literal"
    NOW = "now"
    COLUMN = "column"


@dataclass(frozen=True)
class ResolvedTimestamp:
    """The stamps of one run.

    ``value`` is the shared stamp in ``LITERAL``/``NOW`` mode and ``None`` in
    ``COLUMN`` mode, where ``column`` names the per-row source column.
    ``delete_value`` always holds the stamp used for deletion-closes.
    """

    mode: TimestampMode
    delete_value: str
    value: Optional[str] = None
    column: Optional[str] = None

    @property
    def per_row(self) -> bool:
        return self.mode is TimestampMode.COLUMN

    def for_row(self, row: Mapping[str, Any], key: Optional[object] = None) -> str:
        """Return the ``valid_from`` stamp for a source row."""

        if not self.per_row:
            return self.value
        raw = row[self.column]
        if raw is None or raw == "":
            raise OrderingError(
                f"source row for key {key!r} has no value in timestamp column '{self.column}'",
                key=key,
            )
        try:
            return format_timestamp(parse_timestamp(raw))
        except (TypeError, ValueError) as exc:
            raise OrderingError(
                f"source row for key {key!r} has an unreadable timestamp {raw!r} "
                f"in column '{self.column}'",
                key=key,
            ) from exc


def resolve_timestamp(
    spec: Optional[str],
    store: Any = None,
    source: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> ResolvedTimestamp:
    """Work out how the run is stamped from the raw specifier ``spec``."""

    now_iso = format_timestamp(now if now is not None else datetime.now(tz=DEFAULT_TZ))

    spec = spec.strip() if spec is not None else ""
    if not spec:
        return ResolvedTimestamp(TimestampMode.NOW, delete_value=now_iso, value=now_iso)

    if _LITERAL_RE.match(spec):
        try:
            literal = format_timestamp(parse_timestamp(spec))
        except ValueError as exc:
            raise ConfigError(f"update date {spec!r} is not a valid date") from exc
        return ResolvedTimestamp(TimestampMode.LITERAL, delete_value=literal, value=literal)

    if store is None or source is None:
        raise ConfigError(
            f"update date {spec!r} names a column but no source table was given"
        )
    declared = store.column_type(source, spec)
    if declared is None:
        raise ConfigError(f"update date column '{spec}' does not exist in {source}")
    if not declared.startswith(_TIMESTAMP_TYPES):
        raise ConfigError(
            f"update date column '{spec}' in {source} has type {declared or 'untyped'}, "
            "expected a timestamp"
        )
    return ResolvedTimestamp(TimestampMode.COLUMN, delete_value=now_iso, column=spec)


def timestamp_column(spec: Optional[str]) -> Optional[str]:
    """Return the source column named by ``spec``, or ``None`` for literal/now."""

    spec = spec.strip() if spec is not None else ""
    if not spec or _LITERAL_RE.match(spec):
        return None
    return spec


def parse_timestamp(value: object) -> datetime:
    """Convert stored or user supplied values into UTC datetimes."""

    if isinstance(value, datetime):
        return _ensure_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=DEFAULT_TZ)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=DEFAULT_TZ)
    if not isinstance(value, str):
        raise TypeError(f"Unsupported timestamp type: {type(value)!r}")

    value = value.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return _ensure_utc(datetime.fromisoformat(value))


def format_timestamp(value: datetime) -> str:
    value = _ensure_utc(value)
    return value.strftime(TIMESTAMP_FORMAT)


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=DEFAULT_TZ)
    return value.astimezone(DEFAULT_TZ)
