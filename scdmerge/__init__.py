"""Type-1 / Type-2 slowly changing dimension merge package."""

from .errors import (
    ConfigError,
    DuplicateKeyError,
    ExecutionError,
    MergeError,
    NullKeyError,
    OrderingError,
)
from .merge_logic import (
    MergeRunConfig,
    MergeSummary,
    create_target_table,
    query_as_of,
    run_merge,
)
from .store import SQLiteStore, connect

__all__ = [
    "ConfigError",
    "DuplicateKeyError",
    "ExecutionError",
    "MergeError",
    "NullKeyError",
    "OrderingError",
    "MergeRunConfig",
    "MergeSummary",
    "SQLiteStore",
    "connect",
    "create_target_table",
    "query_as_of",
    "run_merge",
]
