"""
Tests for procurement settings and the field-alias table.

Covers:
- Defaults and validation in the schema dataclasses
- YAML loading, unknown-key rejection, checksums
- Alias rule parsing (list and ``sum`` forms)
"""

import dataclasses

import pytest
import yaml

from procure_config import (
    CollectionNames,
    FieldRule,
    ProcurementSettings,
    compute_checksum,
    load_field_aliases,
    load_settings,
)
from procure_config.loader import parse_field_aliases, parse_settings
from procure_kernel.exceptions import ConfigurationError


class TestSchema:
    def test_defaults(self):
        settings = ProcurementSettings()
        assert settings.indent_number_prefix == "S-8/25-"
        assert settings.sequence_retry_limit == 100
        assert settings.collections.stock_records == "stock-records"
        assert settings.enforce_stock_on_indent

    @pytest.mark.parametrize(
        "overrides, key",
        [
            ({"indent_number_prefix": ""}, "indent_number_prefix"),
            ({"serial_width": 0}, "serial_width"),
            ({"sequence_retry_limit": 0}, "sequence_retry_limit"),
        ],
    )
    def test_invalid_values(self, overrides, key):
        with pytest.raises(ConfigurationError) as exc_info:
            ProcurementSettings(**overrides)
        assert exc_info.value.key == key

    def test_duplicate_collection_names(self):
        with pytest.raises(ConfigurationError, match="unique"):
            CollectionNames(indents="shared", purchase_orders="shared")

    def test_empty_collection_name(self):
        with pytest.raises(ConfigurationError, match="empty"):
            CollectionNames(items="")

    def test_field_rule_validation(self):
        with pytest.raises(ConfigurationError):
            FieldRule(keys=())
        with pytest.raises(ConfigurationError, match="combine"):
            FieldRule(keys=("a",), combine="max")
        assert FieldRule(keys=("qty", "quantity")).primary == "qty"


class TestLoadSettings:
    def test_no_path_gives_defaults(self):
        assert load_settings() == ProcurementSettings()

    def test_yaml_file(self, tmp_path, captured_logs):
        path = tmp_path / "procure.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "procurement": {
                        "indent_number_prefix": "S-9/26-",
                        "sequence_retry_limit": 10,
                        "collections": {"indents": "indents"},
                    }
                }
            )
        )
        settings = load_settings(path)

        assert settings.indent_number_prefix == "S-9/26-"
        assert settings.sequence_retry_limit == 10
        assert settings.collections.indents == "indents"
        assert settings.collections.purchase_orders == "purchaseOrders"
        loaded = [r for r in captured_logs() if r["message"] == "settings_loaded"]
        assert loaded[0]["checksum"] == compute_checksum(dataclasses.asdict(settings))

    def test_unknown_key_rejected(self):
        with pytest.raises(ConfigurationError, match="unknown settings keys"):
            parse_settings({"indent_prefix": "x"})

    def test_unknown_collection_rejected(self):
        with pytest.raises(ConfigurationError, match="unknown collection keys"):
            parse_settings({"collections": {"ledger": "x"}})

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_settings(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "absent.yaml")

    def test_checksum_is_deterministic(self):
        assert compute_checksum({"a": 1, "b": [2]}) == compute_checksum({"b": [2], "a": 1})


class TestFieldAliases:
    def test_packaged_table_loads(self):
        aliases = load_field_aliases()
        assert aliases.primary_key("purchase_entry", "purchase_qty") == "purchaseQty"
        assert aliases.rule("stock_record", "incoming_quantity").combine == "sum"
        assert aliases.has_rule("indent", "lines")
        assert not aliases.has_rule("indent", "document_id")

    def test_sum_rule_parsing(self):
        aliases = parse_field_aliases({"stock_record": {"incoming_quantity": {"sum": ["a", "b"]}}})
        rule = aliases.rule("stock_record", "incoming_quantity")
        assert rule.keys == ("a", "b")
        assert rule.combine == "sum"

    def test_bad_rule_shape(self):
        with pytest.raises(ConfigurationError, match="item.code"):
            parse_field_aliases({"item": {"code": "itemCode"}})

    def test_entity_must_be_mapping(self):
        with pytest.raises(ConfigurationError):
            parse_field_aliases({"item": ["code"]})

    def test_unknown_rule_lookup(self):
        with pytest.raises(ConfigurationError) as exc_info:
            load_field_aliases().rule("item", "colour")
        assert exc_info.value.key == "item.colour"
