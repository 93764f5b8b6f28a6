"""Timeline checks for a versioned target table."""

from typing import Any, Dict, List

from .columns import IS_CURRENT, VALID_FROM, VALID_TO, quote_identifier, quote_table
from .store import as_store
from .timestamps import OPEN_ENDED, parse_timestamp


def find_interval_violations(store: Any, target: str, key_column: str) -> List[str]:
    """Describe every key whose versions break the interval rules.

    An empty list means that, for every key, versions do not overlap, each
    one ends no earlier than it starts, and at most one is current, namely the
    latest, open-ended one.
    """

    store = as_store(store)
    names = [key_column, VALID_FROM, VALID_TO, IS_CURRENT]
    rows = store.query(
        f"SELECT {', '.join(quote_identifier(n) for n in names)} FROM {quote_table(target)}"
    )

    grouped: Dict[Any, List[Dict[str, Any]]] = {}
    for row in rows:
        record = dict(zip(names, row))
        grouped.setdefault(record[key_column], []).append(record)

    errors: List[str] = []
    open_ended = parse_timestamp(OPEN_ENDED)
    for key, versions in grouped.items():
        versions.sort(key=lambda v: (parse_timestamp(v[VALID_FROM]), bool(v[IS_CURRENT])))

        for version in versions:
            if parse_timestamp(version[VALID_TO]) < parse_timestamp(version[VALID_FROM]):
                errors.append(
                    f"Key {key!r}: version ends at {version[VALID_TO]} "
                    f"before it starts at {version[VALID_FROM]}"
                )

        for prev, nxt in zip(versions, versions[1:]):
            if parse_timestamp(prev[VALID_TO]) > parse_timestamp(nxt[VALID_FROM]):
                errors.append(
                    f"Key {key!r}: [{prev[VALID_FROM]}, {prev[VALID_TO]}) overlaps "
                    f"[{nxt[VALID_FROM]}, {nxt[VALID_TO]})"
                )

        current = [v for v in versions if v[IS_CURRENT]]
        if len(current) > 1:
            errors.append(f"Key {key!r}: {len(current)} current versions")
        for version in current:
            if parse_timestamp(version[VALID_TO]) != open_ended:
                errors.append(
                    f"Key {key!r}: current version ends at {version[VALID_TO]}, not open-ended"
                )
            if version is not versions[-1]:
                errors.append(
                    f"Key {key!r}: current version starting at {version[VALID_FROM]} "
                    "is not the latest"
                )

    return errors
