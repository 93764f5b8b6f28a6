from datetime import datetime, timezone

import pytest

from scdmerge.errors import OrderingError
from scdmerge.integrity import find_interval_violations
from scdmerge.timestamps import OPEN_ENDED

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)
T1 = datetime(2025, 2, 1, tzinfo=timezone.utc)
T2 = datetime(2025, 3, 1, tzinfo=timezone.utc)


def _seed(merge, load_source):
    load_source(
        {"customer_id": "K1", "name": "A", "address": "x"},
        {"customer_id": "K2", "name": "B", "address": "y"},
    )
    merge(now=T0)


def test_missing_key_is_closed_when_enabled(merge, load_source, versions):
    _seed(merge, load_source)

    load_source({"customer_id": "K1", "name": "A", "address": "x"})
    summary = merge(delete_missing=True, now=T1)

    assert summary.deleted == 1
    assert summary.inserted == 0
    (k2,) = versions("K2")
    assert k2["valid_to"] == "2025-02-01 00:00:00"
    assert k2["is_current"] == 0
    (k1,) = versions("K1")
    assert k1["valid_to"] == OPEN_ENDED
    assert k1["is_current"] == 1


def test_missing_key_is_untouched_when_disabled(merge, load_source, versions):
    _seed(merge, load_source)
    before = versions("K2")

    load_source({"customer_id": "K1", "name": "A", "address": "x"})
    summary = merge(delete_missing=False, now=T1)

    assert summary.deleted == 0
    assert versions("K2") == before


def test_closed_key_is_not_closed_again(merge, load_source, versions):
    _seed(merge, load_source)
    load_source({"customer_id": "K1", "name": "A", "address": "x"})
    merge(delete_missing=True, now=T1)

    summary = merge(delete_missing=True, now=T2)

    assert summary.deleted == 0
    (k2,) = versions("K2")
    assert k2["valid_to"] == "2025-02-01 00:00:00"


def test_literal_mode_closes_missing_keys_at_the_literal(merge, load_source, versions):
    _seed(merge, load_source)

    load_source({"customer_id": "K1", "name": "A", "address": "x"})
    summary = merge("2025-02-05", delete_missing=True, now=T2)

    assert summary.deleted == 1
    (k2,) = versions("K2")
    assert k2["valid_to"] == "2025-02-05 00:00:00"
    assert k2["is_current"] == 0


def test_per_row_mode_closes_missing_keys_at_now(merge, load_source, versions):
    load_source(
        {"customer_id": "K1", "name": "A", "updated_at": "2025-01-01 08:00:00"},
        {"customer_id": "K2", "name": "B", "updated_at": "2025-01-02 08:00:00"},
    )
    merge("updated_at", now=T0)

    load_source({"customer_id": "K1", "name": "A", "updated_at": "2025-01-20 08:00:00"})
    summary = merge("updated_at", delete_missing=True, now=T2)

    assert summary.deleted == 1
    (k2,) = versions("K2")
    assert k2["valid_from"] == "2025-01-02 08:00:00"
    assert k2["valid_to"] == "2025-03-01 00:00:00"


def test_per_row_mode_rejects_closing_a_future_version(merge, load_source, versions):
    load_source({"customer_id": "K1", "name": "A", "updated_at": "2025-06-01 00:00:00"})
    merge("updated_at", now=T0)

    load_source({"customer_id": "K9", "name": "Z", "updated_at": "2025-01-01 00:00:00"})
    with pytest.raises(OrderingError) as excinfo:
        merge("updated_at", delete_missing=True, now=T1)

    assert excinfo.value.key == "K1"
    assert versions("K9") == []


def test_reappearing_key_starts_a_new_series(conn, merge, load_source, versions):
    _seed(merge, load_source)
    load_source({"customer_id": "K1", "name": "A", "address": "x"})
    merge(delete_missing=True, now=T1)

    load_source(
        {"customer_id": "K1", "name": "A", "address": "x"},
        {"customer_id": "K2", "name": "B", "address": "z"},
    )
    summary = merge(delete_missing=True, now=T2)

    assert summary.inserted == 1
    assert summary.type2_updates == 0
    old, new = versions("K2")
    assert (old["valid_from"], old["valid_to"], old["is_current"]) == (
        "2025-01-01 00:00:00",
        "2025-02-01 00:00:00",
        0,
    )
    assert (new["valid_from"], new["valid_to"], new["is_current"]) == (
        "2025-03-01 00:00:00",
        OPEN_ENDED,
        1,
    )
    # Type-1 values follow the key into its closed history as well.
    assert [old["address"], new["address"]] == ["z", "z"]
    assert find_interval_violations(conn, "dim", "customer_id") == []


def test_reappearing_key_cannot_start_before_its_close(merge, load_source, versions):
    _seed(merge, load_source)
    load_source({"customer_id": "K1", "name": "A", "address": "x"})
    merge(delete_missing=True, now=T2)

    load_source(
        {"customer_id": "K1", "name": "A", "address": "x"},
        {"customer_id": "K2", "name": "B", "address": "y"},
    )
    with pytest.raises(OrderingError) as excinfo:
        merge(now=T1)

    assert excinfo.value.key == "K2"
    assert len(versions("K2")) == 1
