"""
Tests for Sync Configuration

These tests validate table spec parsing, settings from DAG params and from
an appsettings-style JSON file, and settings validation.
"""

import json
import logging
import os
import pytest

from warehouse_sync.config import (
    ConfigurationError,
    SyncSettings,
    TableKind,
    TableSpec,
    MAX_PK_BATCH_SIZE,
    load_settings_file,
    parse_table_specs,
    resolve_settings,
)

EXAMPLE_SETTINGS = os.path.join(
    os.path.dirname(__file__), "..", "..", "include", "appsettings.example.json"
)


class TestTableSpec:
    """Test TableSpec.from_dict."""

    def test_full_record(self):
        spec = TableSpec.from_dict({
            "table_name": "orders",
            "table_type": "fact",
            "date_column": "order_date",
            "update_date_column": "modified_at",
            "primary_key": "order_id",
            "window_copy": "Before",
        })

        assert spec.name == "orders"
        assert spec.kind == TableKind.FACT
        assert spec.date_column == "order_date"
        assert spec.update_date_column == "modified_at"
        assert spec.primary_key == "order_id"
        assert spec.window_copy == "before"

    def test_blank_optional_fields_are_absent(self):
        spec = TableSpec.from_dict({
            "table_name": "customers",
            "table_type": "dim",
            "date_column": "",
            "primary_key": "   ",
        })
        assert spec.date_column is None
        assert spec.primary_key is None

    @pytest.mark.parametrize("raw,expected", [
        ("dim", TableKind.DIMENSION),
        ("Dimension", TableKind.DIMENSION),
        ("sproc", TableKind.STORED_PROC),
        ("storedProc", TableKind.STORED_PROC),
        ("HISTORICAL", TableKind.HISTORICAL),
    ])
    def test_table_type_aliases(self, raw, expected):
        assert TableKind.parse(raw) == expected

    def test_unknown_table_type_is_config_error(self):
        with pytest.raises(ConfigurationError):
            TableSpec.from_dict({"table_name": "orders", "table_type": "view"})

    def test_invalid_window_copy_is_config_error(self):
        with pytest.raises(ConfigurationError):
            TableSpec.from_dict({"table_name": "orders", "table_type": "fact", "window_copy": "during"})

    def test_spec_is_immutable(self):
        spec = TableSpec(name="orders", kind=TableKind.FACT)
        with pytest.raises(AttributeError):
            spec.name = "other"


class TestParseTableSpecs:
    """Test parse_table_specs input handling."""

    def test_json_string(self):
        raw = json.dumps([
            {"table_name": "orders", "table_type": "fact", "date_column": "order_date"},
            {"table_name": "customers", "table_type": "dim"},
        ])
        specs = parse_table_specs(raw)
        assert [s.name for s in specs] == ["orders", "customers"]

    def test_entries_without_name_are_skipped(self):
        specs = parse_table_specs([
            {"table_type": "fact"},
            {"table_name": "", "table_type": "dim"},
            {"table_name": "customers", "table_type": "dim"},
        ])
        assert [s.name for s in specs] == ["customers"]

    def test_unknown_table_type_is_skipped_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING):
            specs = parse_table_specs([
                {"table_name": "orders", "table_type": "fact", "date_column": "order_date"},
                {"table_name": "typo_tbl", "table_type": "facts"},
                {"table_name": "customers", "table_type": "dim"},
            ])

        assert [s.name for s in specs] == ["orders", "customers"]
        assert "Skipping table typo_tbl" in caplog.text
        assert "Unknown table_type 'facts'" in caplog.text

    def test_invalid_window_copy_is_skipped_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING):
            specs = parse_table_specs([
                {"table_name": "orders", "table_type": "fact", "window_copy": "during"},
                {"table_name": "customers", "table_type": "dim"},
            ])

        assert [s.name for s in specs] == ["customers"]
        assert "Skipping table orders" in caplog.text

    @pytest.mark.parametrize("raw", [None, "", "  "])
    def test_empty_inputs(self, raw):
        assert parse_table_specs(raw) == []

    def test_invalid_json_is_config_error(self):
        with pytest.raises(ConfigurationError):
            parse_table_specs("[{not json")

    def test_non_list_is_config_error(self):
        with pytest.raises(ConfigurationError):
            parse_table_specs({"table_name": "orders"})


class TestSyncSettings:
    """Test SyncSettings construction and validation."""

    def test_from_params(self):
        settings = SyncSettings.from_params({
            "source_conn_id": "mssql_prod",
            "target_conn_id": "pg_dw",
            "source_schema": "dbo",
            "target_schema": "bronze",
            "schedule_mode": "weekly",
            "date_from": "",
            "tables": [{"table_name": "orders", "table_type": "fact"}],
            "pk_batch_size": "500",
            "audit_schema": "ops",
        })

        assert settings.source_conn_id == "mssql_prod"
        assert settings.target_conn_id == "pg_dw"
        assert settings.schedule_mode == "weekly"
        assert settings.date_from is None
        assert settings.pk_batch_size == 500
        assert settings.audit_schema == "ops"
        assert [t.name for t in settings.tables] == ["orders"]

    def test_from_params_keeps_default_conn_ids(self):
        settings = SyncSettings.from_params({"source_schema": "dbo", "target_schema": "bronze"})
        assert settings.source_conn_id == "mssql_source"
        assert settings.target_conn_id == "postgres_target"

    @pytest.mark.parametrize("field,value", [
        ("source_schema", None),
        ("target_schema", "  "),
        ("source_conn_id", ""),
        ("target_conn_id", None),
        ("pk_batch_size", 0),
        ("pk_batch_size", 2100),
        ("max_parallel_dimensions", 0),
        ("max_retries", -1),
    ])
    def test_validate_rejects(self, settings, field, value):
        setattr(settings, field, value)
        with pytest.raises(ConfigurationError):
            settings.validate()

    def test_validate_returns_settings(self, settings):
        assert settings.validate() is settings

    def test_largest_pk_batch_fits_one_statement(self, settings):
        settings.pk_batch_size = MAX_PK_BATCH_SIZE
        assert MAX_PK_BATCH_SIZE == 2099
        assert settings.validate() is settings


class TestLoadSettingsFile:
    """Test loading appsettings-style JSON."""

    def test_loads_bulk_copy_section(self, tmp_path):
        path = tmp_path / "appsettings.json"
        path.write_text(json.dumps({
            "BulkCopyConfig": {
                "SourceSchema": "dbo",
                "TargetSchema": "bronze",
                "ScheduleMode": "daily",
                "DateFrom": "",
                "DateTo": "",
                "Tables": [
                    {"table_name": "tbl_transaction_master", "table_type": "fact",
                     "date_column": "transaction_date"},
                    {"table_name": "tbl_customer", "table_type": "dim"},
                ],
            }
        }))

        settings = load_settings_file(str(path), source_conn_id="mssql_prod")

        assert settings.source_schema == "dbo"
        assert settings.target_schema == "bronze"
        assert settings.schedule_mode == "daily"
        assert settings.date_from is None
        assert settings.source_conn_id == "mssql_prod"
        assert [t.name for t in settings.tables] == ["tbl_transaction_master", "tbl_customer"]

    def test_missing_file_is_config_error(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_settings_file(str(tmp_path / "missing.json"))

    def test_missing_section_is_config_error(self, tmp_path):
        path = tmp_path / "appsettings.json"
        path.write_text(json.dumps({"ConnectionStrings": {}}))
        with pytest.raises(ConfigurationError):
            load_settings_file(str(path))


class TestResolveSettings:
    """Test layering DAG params over a settings file or defaults."""

    @pytest.fixture
    def settings_file(self, tmp_path):
        path = tmp_path / "appsettings.json"
        path.write_text(json.dumps({
            "BulkCopyConfig": {
                "SourceSchema": "dbo",
                "TargetSchema": "bronze",
                "ScheduleMode": "weekly",
                "Tables": [
                    {"table_name": "tbl_customer", "table_type": "dim"},
                ],
            }
        }))
        return str(path)

    def test_unset_params_keep_file_values(self, settings_file):
        settings = resolve_settings(
            {"source_schema": None, "schedule_mode": None, "tables": None},
            settings_file=settings_file,
        )

        assert settings.source_schema == "dbo"
        assert settings.target_schema == "bronze"
        assert settings.schedule_mode == "weekly"
        assert [t.name for t in settings.tables] == ["tbl_customer"]

    def test_params_override_file(self, settings_file):
        settings = resolve_settings(
            {
                "source_conn_id": "mssql_prod",
                "target_schema": "silver",
                "tables": [{"table_name": "orders", "table_type": "fact"}],
            },
            settings_file=settings_file,
        )

        assert settings.source_conn_id == "mssql_prod"
        assert settings.source_schema == "dbo"
        assert settings.target_schema == "silver"
        assert [t.name for t in settings.tables] == ["orders"]

    def test_empty_schedule_mode_clears_file_value(self, settings_file):
        settings = resolve_settings(
            {"schedule_mode": "", "date_from": "2025-07-01", "date_to": "2025-07-03"},
            settings_file=settings_file,
        )

        assert settings.schedule_mode is None
        assert settings.date_from == "2025-07-01"
        assert settings.date_to == "2025-07-03"

    def test_defaults_used_without_file(self):
        defaults = SyncSettings(source_schema="dbo", target_schema="bronze", schedule_mode="daily")

        settings = resolve_settings({"schedule_mode": None}, defaults=defaults)

        assert settings.source_schema == "dbo"
        assert settings.schedule_mode == "daily"
        assert settings.tables == []

    def test_missing_file_is_config_error(self, tmp_path):
        with pytest.raises(ConfigurationError):
            resolve_settings({}, settings_file=str(tmp_path / "missing.json"))

    def test_shipped_example_loads(self):
        settings = resolve_settings({}, settings_file=EXAMPLE_SETTINGS).validate()

        assert settings.schedule_mode == "daily"
        assert len(settings.tables) == 6
        assert settings.tables[1].window_copy == "before"
