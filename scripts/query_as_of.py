"""CLI helper to query the SCD target as it was valid at a given time."""

from __future__ import annotations

import argparse
from pathlib import Path

from scdmerge import merge_logic
from scdmerge.store import connect

ROOT_DIR = Path(__file__).resolve().parents[1]
DB_PATH = ROOT_DIR / "scd.db"


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "at",
        help="Timestamp in ISO-8601 format (e.g. 2025-03-01 or 2025-03-01T00:00:00Z)",
    )
    parser.add_argument("--db-path", type=Path, default=DB_PATH)
    parser.add_argument("--target-table", default="customers_scd")
    parser.add_argument("--key-column", default="customer_id")
    parser.add_argument(
        "--key",
        action="append",
        dest="keys",
        help="Filter to specific keys (may be provided multiple times)",
    )
    args = parser.parse_args()

    store = connect(args.db_path)
    try:
        rows = merge_logic.query_as_of(
            store,
            args.target_table,
            args.key_column,
            args.at,
            keys=args.keys,
        )
    finally:
        store.close()
    for row in rows:
        print(row)
    if not rows:
        print("No records found for the provided snapshot.")


if __name__ == "__main__":  # pragma: no cover
    main()
