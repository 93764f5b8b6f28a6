from datetime import datetime, timezone

import pytest

from scdmerge import merge_logic
from scdmerge.errors import ConfigError
from scdmerge.timestamps import OPEN_ENDED


def _dt(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00")).astimezone(timezone.utc)


def test_query_as_of_returns_the_version_valid_at_a_time(conn, merge, load_source):
    load_source({"customer_id": "K1", "name": "ACTIVE"}, {"customer_id": "K2", "name": "NEW"})
    merge(now=_dt("2025-01-01T00:00:00Z"))
    load_source({"customer_id": "K1", "name": "INACTIVE"}, {"customer_id": "K2", "name": "NEW"})
    merge(now=_dt("2025-03-01T00:00:00Z"))

    before = merge_logic.query_as_of(conn, "dim", "customer_id", "2025-02-15")
    assert [(row["customer_id"], row["name"]) for row in before] == [
        ("K1", "ACTIVE"),
        ("K2", "NEW"),
    ]
    assert before[0]["is_current"] is False

    after = merge_logic.query_as_of(conn, "dim", "customer_id", _dt("2025-03-01T00:00:00Z"))
    assert after[0]["name"] == "INACTIVE"
    assert after[0]["is_current"] is True

    assert merge_logic.query_as_of(conn, "dim", "customer_id", "2024-12-31") == []

    only_k2 = merge_logic.query_as_of(conn, "dim", "customer_id", "2025-04-01", keys=["K2"])
    assert [row["customer_id"] for row in only_k2] == ["K2"]
    assert merge_logic.query_as_of(conn, "dim", "customer_id", "2025-04-01", keys=[]) == []


def test_create_target_table_mirrors_the_source(conn, store, tables):
    assert merge_logic.create_target_table(store, "customers_scd", "src", "customer_id")
    assert not merge_logic.create_target_table(store, "customers_scd", "src", "customer_id")

    columns = store.columns("customers_scd")
    assert list(columns) == [
        "customer_id",
        "name",
        "email",
        "address",
        "updated_at",
        "valid_from",
        "valid_to",
        "is_current",
    ]
    assert columns["valid_from"] == "TIMESTAMP"
    assert columns["is_current"] == "BOOLEAN"

    indexes = {row["name"] for row in conn.execute("PRAGMA index_list('customers_scd')")}
    assert indexes == {"idx_customers_scd_key_valid", "idx_customers_scd_current"}

    conn.execute("INSERT INTO src (customer_id, name) VALUES ('K1', 'A')")
    conn.commit()
    summary = merge_logic.run_merge(
        store, "customers_scd", "src", "customer_id", "name", "address", "2025-01-01"
    )
    assert summary.inserted == 1
    row = conn.execute("SELECT * FROM customers_scd").fetchone()
    assert row["valid_to"] == OPEN_ENDED


def test_create_target_table_needs_the_key_column(store, tables):
    with pytest.raises(ConfigError):
        merge_logic.create_target_table(store, "customers_scd", "src", "id")
    with pytest.raises(ConfigError):
        merge_logic.create_target_table(store, "customers_scd", "missing", "customer_id")
