import pytest

from scdmerge.columns import ColumnSpec, clean_column_list, quote_identifier, quote_table
from scdmerge.errors import ConfigError


def test_clean_column_list_strips_whitespace_and_control_characters():
    raw = "name,\n\temail_address , job_position,\r\nlead_country"

    assert clean_column_list(raw) == ["name", "email_address", "job_position", "lead_country"]


def test_clean_column_list_keeps_first_occurrence_order():
    assert clean_column_list("b, a, b, , c, a") == ["b", "a", "c"]
    assert clean_column_list([" b", "a\t", "b"]) == ["b", "a"]
    assert clean_column_list(None) == []
    assert clean_column_list("") == []


def test_column_spec_drops_key_and_bookkeeping_columns(caplog):
    spec = ColumnSpec.parse(
        "customer_id, name, valid_from, email",
        "address, is_current, name",
        key_column="customer_id",
    )

    assert spec.type2 == ("name", "email")
    assert spec.type1 == ("address",)
    assert spec.attributes == ("name", "email", "address")
    assert "both Type-2 and Type-1" in caplog.text


def test_column_spec_requires_a_type2_column():
    with pytest.raises(ConfigError):
        ColumnSpec.parse("", "address")
    with pytest.raises(ConfigError):
        ColumnSpec.parse("customer_id", None, key_column="customer_id")


def test_identifiers_are_quoted():
    assert quote_identifier("name") == '"name"'
    assert quote_identifier('odd"name') == '"odd""name"'
    assert quote_table("main.dim") == '"main"."dim"'
