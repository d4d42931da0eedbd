"""Unit tests for vetrecord_etl.fields."""

from pathlib import Path

import pytest

from vetrecord_etl.fields import (
    AliasTableValidationError,
    default_alias_table,
    load_alias_table,
    normalize_header,
    resolve,
    resolve_key,
    resolve_str,
)


class TestResolve:
    def test_exact_match(self):
        assert resolve({"Name": "Saad"}, ["Name", "name"]) == "Saad"

    def test_first_alias_with_data_wins(self):
        row = {"Name": "", "Client Name": "Saad", "Owner": "Fahad"}
        assert resolve(row, ["Name", "Client Name", "Owner"]) == "Saad"

    def test_alias_order_not_column_order(self):
        row = {"Owner": "Fahad", "Client Name": "Saad"}
        assert resolve(row, ["Client Name", "Owner"]) == "Saad"

    def test_placeholders_are_skipped(self):
        row = {"Phone": "-", "Mobile": "0501234567"}
        assert resolve(row, ["Phone", "Mobile"]) == "0501234567"

    def test_none_value_skipped(self):
        assert resolve({"Phone": None}, ["Phone"]) is None

    def test_case_and_whitespace_insensitive_fallback(self):
        row = {"  CLIENT   name ": "Saad"}
        assert resolve(row, ["Client Name"]) == "Saad"

    def test_exact_match_preferred_over_lenient(self):
        row = {"name": "lenient", "Name": "exact"}
        assert resolve(row, ["Name"]) == "exact"

    def test_arabic_alias(self):
        assert resolve({"رقم الهاتف": "0501234567"}, ["Phone", "رقم الهاتف"]) == "0501234567"

    def test_strings_are_stripped(self):
        assert resolve({"Name": "  Saad "}, ["Name"]) == "Saad"

    def test_numbers_pass_through(self):
        assert resolve({"Sheep": 12}, ["Sheep"]) == 12

    def test_nothing_found(self):
        assert resolve({"Other": "x"}, ["Name"]) is None

    def test_bom_prefixed_header(self):
        assert resolve({"\ufeffName": "Saad"}, ["Name"]) == "Saad"


class TestResolveKey:
    def test_exact_key(self):
        assert resolve_key({"Name": "", "Owner": "Saad"}, ["Name", "Owner"]) == "Owner"

    def test_lenient_key_is_the_original_header(self):
        assert resolve_key({"  CLIENT   name ": "Saad"}, ["Client Name"]) == "  CLIENT   name "

    def test_no_key(self):
        assert resolve_key({"Name": "-"}, ["Name"]) is None

    def test_consumed_columns(self):
        table = default_alias_table()
        row = {"Name": "Saad", "Owner": "Fahad", "Phone": "0501234567", "Tribe": "Harb"}
        assert table.consumed_columns(row, ["client_name", "client_phone"]) == {"Name", "Phone"}


class TestResolveStr:
    def test_integral_float_renders_as_integer(self):
        assert resolve_str({"ID": 1004458947.0}, ["ID"]) == "1004458947"

    def test_non_integral_float(self):
        assert resolve_str({"N": 24.5}, ["N"]) == "24.5"


def test_normalize_header():
    assert normalize_header(" F. Sheep ") == normalize_header("f.sheep")


# ---------------------------------------------------------------------------
# Alias table
# ---------------------------------------------------------------------------

class TestDefaultAliasTable:
    def test_loads(self):
        table = default_alias_table()
        assert "client_name" in table.fields
        assert len(table.yaml_hash) == 64

    def test_resolves_canonical_field(self):
        table = default_alias_table()
        assert table.resolve_str({"اسم المربي": "سعد"}, "client_name") == "سعد"

    def test_herd_alias_with_misspelling(self):
        table = default_alias_table()
        assert table.resolve({"Cattel": "4"}, "cattle_total") == "4"

    def test_is_mapped(self):
        table = default_alias_table()
        assert table.is_mapped("Holding Code")
        assert table.is_mapped("holding  code")
        assert not table.is_mapped("Tribe")

    def test_unknown_field_name(self):
        with pytest.raises(KeyError):
            default_alias_table().aliases("does_not_exist")


class TestLoadAliasTable:
    def _write(self, tmp_path: Path, text: str) -> Path:
        path = tmp_path / "aliases.yml"
        path.write_text(text, encoding="utf-8")
        return path

    def test_custom_table(self, tmp_path):
        path = self._write(tmp_path, "version: 2\nfields:\n  tribe:\n    aliases: [Tribe, القبيلة]\n")
        table = load_alias_table(path)
        assert table.version == "2"
        assert table.resolve({"القبيلة": "x"}, "tribe") == "x"

    def test_missing_fields_key(self, tmp_path):
        path = self._write(tmp_path, "version: 1\n")
        with pytest.raises(AliasTableValidationError, match="fields"):
            load_alias_table(path)

    def test_empty_alias_list(self, tmp_path):
        path = self._write(tmp_path, "version: 1\nfields:\n  tribe:\n    aliases: []\n")
        with pytest.raises(AliasTableValidationError, match="tribe"):
            load_alias_table(path)

    def test_bad_type(self, tmp_path):
        path = self._write(tmp_path, "version: 1\nfields:\n  tribe:\n    type: blob\n    aliases: [Tribe]\n")
        with pytest.raises(AliasTableValidationError, match="blob"):
            load_alias_table(path)

    def test_root_not_mapping(self, tmp_path):
        path = self._write(tmp_path, "- a\n- b\n")
        with pytest.raises(AliasTableValidationError):
            load_alias_table(path)
