"""Exceptions raised by the SCD merge.

Every error raised by :func:`scdmerge.merge_logic.run_merge` derives from
:class:`MergeError`, so callers can catch the whole family at once.
"""

from typing import Optional, Sequence


class MergeError(Exception):
    """Base class for merge failures."""


class ConfigError(MergeError):
    """A run parameter is empty, unknown or of the wrong type."""


class NullKeyError(ConfigError):
    """The source holds rows without a business key."""

    def __init__(self, count: int, key_column: str) -> None:
        self.count = count
        self.key_column = key_column
        super().__init__(
            f"{count} source rows have a NULL value in key column '{key_column}'"
        )


class DuplicateKeyError(MergeError):
    """The source holds more than one row for at least one key."""

    def __init__(self, count: int, keys: Sequence[object] = ()) -> None:
        self.count = count
        self.keys = list(keys)
        sample = ", ".join(repr(key) for key in self.keys)
        message = f"{count} duplicate keys found in source table"
        if sample:
            message = f"{message} (e.g. {sample})"
        super().__init__(message)


class OrderingError(MergeError):
    """Applying the run timestamp would break the version timeline."""

    def __init__(self, message: str, key: Optional[object] = None) -> None:
        self.key = key
        super().__init__(message)


class ExecutionError(MergeError):
    """The store rejected a statement."""

    def __init__(self, message: str, statement: Optional[str] = None) -> None:
        self.statement = statement
        super().__init__(message)
