"""Load a CSV snapshot and merge it into the SCD target table."""

from __future__ import annotations

import argparse
import csv
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from scdmerge import MergeError, merge_logic
from scdmerge.staging import stage_records
from scdmerge.store import connect
from scdmerge.timestamps import timestamp_column

ROOT_DIR = Path(__file__).resolve().parents[1]
DATA_PATH = ROOT_DIR / "data" / "customers.csv"
DB_PATH = ROOT_DIR / "scd.db"

_LOG = logging.getLogger(__name__)


def extract(path: Path) -> List[Dict[str, str]]:
    records: List[Dict[str, str]] = []
    with path.open("r", encoding="utf-8", newline="") as handle:
        reader = csv.DictReader(handle)
        for row in reader:
            records.append(dict(row))
    return records


def load(
    records: List[Dict[str, Any]],
    *,
    db_path: Path,
    source_table: str,
    target_table: str,
    key_column: str,
    type2_columns: str,
    type1_columns: Optional[str] = None,
    update_date: Optional[str] = None,
    delete_missing: bool = False,
) -> merge_logic.MergeSummary:
    """Stage ``records`` as the source table and merge them into the target."""

    column_types = {}
    per_row_column = timestamp_column(update_date)
    if per_row_column:
        column_types[per_row_column] = "TIMESTAMP"

    store = connect(db_path)
    try:
        stage_records(store, source_table, records, column_types=column_types)
        merge_logic.create_target_table(store, target_table, source_table, key_column)
        summary = merge_logic.run_merge(
            store,
            target_table,
            source_table,
            key_column,
            type2_columns,
            type1_columns,
            update_date,
            delete_missing,
        )
    finally:
        store.close()
    return summary


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--data-path",
        type=Path,
        default=DATA_PATH,
        help=f"Path to the input CSV (default: {DATA_PATH})",
    )
    parser.add_argument(
        "--db-path",
        type=Path,
        default=DB_PATH,
        help=f"Location of the SQLite database (default: {DB_PATH})",
    )
    parser.add_argument("--source-table", default="customers_source")
    parser.add_argument("--target-table", default="customers_scd")
    parser.add_argument("--key-column", default="customer_id")
    parser.add_argument(
        "--type2-columns",
        default="name, email_address, country",
        help="Comma separated columns that open a new version when they change",
    )
    parser.add_argument(
        "--type1-columns",
        default="address",
        help="Comma separated columns overwritten on every version when they change",
    )
    parser.add_argument(
        "--update-date",
        help="YYYY-MM-DD[ hh:mm:ss] literal or a timestamp column of the CSV "
        "(default: now)",
    )
    parser.add_argument(
        "--delete-missing",
        action="store_true",
        help="Close keys that are absent from the CSV (use for full snapshots only)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log every statement sent to the database",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    records = extract(args.data_path)
    _LOG.info("Extracted %s records from %s", len(records), args.data_path)
    try:
        summary = load(
            records,
            db_path=args.db_path,
            source_table=args.source_table,
            target_table=args.target_table,
            key_column=args.key_column,
            type2_columns=args.type2_columns,
            type1_columns=args.type1_columns,
            update_date=args.update_date,
            delete_missing=args.delete_missing,
        )
    except MergeError as exc:
        _LOG.error("Merge failed: %s", exc)
        return 1

    print("Processed:", summary.to_dict())
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
