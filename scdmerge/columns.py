"""Column list parsing for the Type-1 and Type-2 attribute sets."""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple, Union

from .errors import ConfigError

_LOG = logging.getLogger(__name__)

VALID_FROM = "valid_from"
VALID_TO = "valid_to"
IS_CURRENT = "is_current"
BOOKKEEPING_COLUMNS = (VALID_FROM, VALID_TO, IS_CURRENT)

_STRIP_RE = re.compile(r"[\s\x00-\x1f\x7f]+")

ColumnList = Union[str, Iterable[str], None]


def clean_column_list(raw: ColumnList) -> List[str]:
    """Normalise a delimited column list into an ordered, de-duplicated list.

    Whitespace and control characters are removed before splitting on commas,
    so ``"name,\\n\\temail"`` and ``["name", " email "]`` give the same result.
    """

    if raw is None:
        return []
    if isinstance(raw, str):
        parts = _STRIP_RE.sub("", raw).split(",")
    else:
        parts = [_STRIP_RE.sub("", str(item)) for item in raw]

    columns: List[str] = []
    for name in parts:
        if name and name not in columns:
            columns.append(name)
    return columns


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def quote_table(name: str) -> str:
    """Quote a possibly schema-qualified table name (``schema.table``)."""

    return ".".join(quote_identifier(part) for part in name.split("."))


@dataclass(frozen=True)
class ColumnSpec:
    """Ordered Type-2 and Type-1 attribute columns of a merge run."""

    type2: Tuple[str, ...]
    type1: Tuple[str, ...] = ()

    @property
    def attributes(self) -> Tuple[str, ...]:
        return self.type2 + self.type1

    @classmethod
    def parse(
        cls,
        type2_columns: ColumnList,
        type1_columns: ColumnList,
        key_column: Optional[str] = None,
    ) -> "ColumnSpec":
        reserved = set(BOOKKEEPING_COLUMNS)
        if key_column:
            reserved.add(key_column)

        type2 = _drop_reserved(clean_column_list(type2_columns), reserved, "Type-2")
        if not type2:
            raise ConfigError("at least one Type-2 column is required")

        type1 = []
        for name in _drop_reserved(clean_column_list(type1_columns), reserved, "Type-1"):
            if name in type2:
                _LOG.warning(
                    "Column %s is listed as both Type-2 and Type-1; treating it as Type-2",
                    name,
                )
                continue
            type1.append(name)

        return cls(type2=tuple(type2), type1=tuple(type1))


def _drop_reserved(columns: List[str], reserved: set, label: str) -> List[str]:
    kept = []
    for name in columns:
        if name in reserved:
            _LOG.warning("Ignoring %s column %s: key and bookkeeping columns are not tracked", label, name)
            continue
        kept.append(name)
    return kept
