"""
Sync Configuration Module

This module turns the external configuration into typed objects:

- TableSpec: one configured table ({table_name, table_type, date_column, ...})
- SyncSettings: connection ids, schemas, schedule mode, explicit dates and
  runtime tuning for a whole run

Settings can come from Airflow DAG params (SyncSettings.from_params), from
an appsettings-style JSON document (load_settings_file), or from both with
the params on top (resolve_settings). Defaults for runtime
tuning are read from SYNC_* environment variables.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional
import json
import logging
import os

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_SCHEMA = "bronze"
DEFAULT_AUDIT_TABLE = "tbl_dw_copy_logs"

DEFAULT_PK_BATCH_SIZE = int(os.environ.get('SYNC_PK_BATCH_SIZE', '2000'))
DEFAULT_FETCH_SIZE = int(os.environ.get('SYNC_FETCH_SIZE', '10000'))
DEFAULT_NOTIFY_AFTER = int(os.environ.get('SYNC_NOTIFY_AFTER', '100000'))
DEFAULT_STATEMENT_TIMEOUT = int(os.environ.get('SYNC_STATEMENT_TIMEOUT_SECONDS', '14400'))
DEFAULT_MAX_RETRIES = int(os.environ.get('SYNC_MAX_RETRIES', '2'))
DEFAULT_RETRY_DELAY = float(os.environ.get('SYNC_RETRY_DELAY_SECONDS', '30'))
DEFAULT_MAX_PARALLEL_DIMENSIONS = int(os.environ.get('SYNC_MAX_PARALLEL_DIMENSIONS', '4'))
DEFAULT_TABLE_LOG_DIR = os.environ.get('SYNC_TABLE_LOG_DIR') or None

# SQL Server accepts at most 2100 parameters per statement; each key binds one.
MAX_PK_BATCH_SIZE = 2099


class ConfigurationError(ValueError):
    """Fatal configuration problem. Raised before any table is touched."""


class TableKind(str, Enum):
    FACT = "fact"
    DIMENSION = "dim"
    STORED_PROC = "sproc"
    HISTORICAL = "historical"

    @classmethod
    def parse(cls, value: str) -> "TableKind":
        """Parse a config table_type, accepting a few spellings."""
        normalized = (value or "").strip().lower()
        aliases = {
            "fact": cls.FACT,
            "dim": cls.DIMENSION,
            "dimension": cls.DIMENSION,
            "sproc": cls.STORED_PROC,
            "storedproc": cls.STORED_PROC,
            "stored_proc": cls.STORED_PROC,
            "historical": cls.HISTORICAL,
        }
        if normalized not in aliases:
            raise ConfigurationError(
                f"Unknown table_type '{value}': expected one of fact, dim, sproc, historical"
            )
        return aliases[normalized]


WINDOW_COPY_BEFORE = "before"
WINDOW_COPY_AFTER = "after"


def _blank_to_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


@dataclass(frozen=True)
class TableSpec:
    name: str
    kind: TableKind
    date_column: Optional[str] = None
    update_date_column: Optional[str] = None
    primary_key: Optional[str] = None
    window_copy: Optional[str] = None       # "before" | "after" | None (incremental facts only)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "TableSpec":
        """
        Build a TableSpec from a config record.

        Args:
            raw: Dict with keys table_name, table_type and optionally
                 date_column, update_date_column, primary_key, window_copy

        Raises:
            ConfigurationError: If table_name is missing or a value is invalid
        """
        name = _blank_to_none(raw.get("table_name"))
        if not name:
            raise ConfigurationError(f"Table entry is missing table_name: {raw}")

        window_copy = _blank_to_none(raw.get("window_copy"))
        if window_copy is not None:
            window_copy = window_copy.lower()
            if window_copy not in (WINDOW_COPY_BEFORE, WINDOW_COPY_AFTER):
                raise ConfigurationError(
                    f"Invalid window_copy '{window_copy}' for {name}: expected 'before' or 'after'"
                )

        return cls(
            name=name,
            kind=TableKind.parse(raw.get("table_type")),
            date_column=_blank_to_none(raw.get("date_column")),
            update_date_column=_blank_to_none(raw.get("update_date_column")),
            primary_key=_blank_to_none(raw.get("primary_key")),
            window_copy=window_copy,
        )


def parse_table_specs(raw_tables) -> List[TableSpec]:
    """
    Parse the configured table list, preserving declared order.

    Handles:
    - List of dicts: [{"table_name": "orders", "table_type": "fact"}, ...]
    - JSON string of the same list
    - None / empty string: no tables

    Entries without a table_name, or with a table_type or window_copy that
    does not parse, are skipped with a warning; the rest of the run goes on.
    """
    if raw_tables is None:
        return []

    if isinstance(raw_tables, str):
        raw_tables = raw_tables.strip()
        if not raw_tables:
            return []
        try:
            raw_tables = json.loads(raw_tables)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Tables parameter is not valid JSON: {e}")

    if not isinstance(raw_tables, list):
        raise ConfigurationError(
            f"Tables must be a list of table records, got {type(raw_tables).__name__}"
        )

    specs = []
    for entry in raw_tables:
        if isinstance(entry, TableSpec):
            specs.append(entry)
            continue
        if not isinstance(entry, dict) or not _blank_to_none(entry.get("table_name")):
            logger.warning(f"Skipping table entry without table_name: {entry!r}")
            continue
        try:
            specs.append(TableSpec.from_dict(entry))
        except ConfigurationError as e:
            logger.warning(f"Skipping table {entry['table_name']}: {e}")

    return specs


@dataclass
class SyncSettings:
    """Everything one sync run needs besides live connections."""

    source_conn_id: str = "mssql_source"
    target_conn_id: str = "postgres_target"
    source_schema: Optional[str] = None
    target_schema: Optional[str] = None
    schedule_mode: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    tables: List[TableSpec] = field(default_factory=list)

    audit_schema: str = DEFAULT_AUDIT_SCHEMA
    audit_table: str = DEFAULT_AUDIT_TABLE
    create_audit_table: bool = True

    pk_batch_size: int = DEFAULT_PK_BATCH_SIZE
    fetch_size: int = DEFAULT_FETCH_SIZE
    notify_after: int = DEFAULT_NOTIFY_AFTER
    statement_timeout_seconds: int = DEFAULT_STATEMENT_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay_seconds: float = DEFAULT_RETRY_DELAY
    max_parallel_dimensions: int = DEFAULT_MAX_PARALLEL_DIMENSIONS
    table_log_dir: Optional[str] = DEFAULT_TABLE_LOG_DIR

    sproc_start_param: str = "StartDateParam"
    sproc_end_param: str = "EndDateParam"

    def validate(self) -> "SyncSettings":
        """
        Check the settings that every run depends on.

        Raises:
            ConfigurationError: On the first missing or invalid value
        """
        if not self.source_conn_id:
            raise ConfigurationError("Missing source connection id")
        if not self.target_conn_id:
            raise ConfigurationError("Missing target connection id")
        if not self.source_schema or not self.source_schema.strip():
            raise ConfigurationError("Missing 'SourceSchema' in configuration")
        if not self.target_schema or not self.target_schema.strip():
            raise ConfigurationError("Missing 'TargetSchema' in configuration")
        if not 0 < self.pk_batch_size <= MAX_PK_BATCH_SIZE:
            raise ConfigurationError(
                f"pk_batch_size must be between 1 and {MAX_PK_BATCH_SIZE}, got {self.pk_batch_size}"
            )
        if self.max_parallel_dimensions <= 0:
            raise ConfigurationError(
                f"max_parallel_dimensions must be positive, got {self.max_parallel_dimensions}"
            )
        if self.max_retries < 0:
            raise ConfigurationError(f"max_retries cannot be negative, got {self.max_retries}")
        return self

    @classmethod
    def from_params(cls, params: Dict[str, Any], base: Optional["SyncSettings"] = None) -> "SyncSettings":
        """
        Build settings from Airflow DAG params.

        Args:
            params: DAG params. Unknown keys are ignored.
            base: Settings the params are applied on top of (default: cls()).
                  A param that is missing or None keeps the base value; an
                  empty string clears an optional value such as schedule_mode.
        """
        settings = base if base is not None else cls()
        overrides: Dict[str, Any] = {}

        for key in ("source_conn_id", "target_conn_id"):
            if _blank_to_none(params.get(key)):
                overrides[key] = params[key].strip()
        for key in ("source_schema", "target_schema", "schedule_mode", "date_from", "date_to"):
            if params.get(key) is not None:
                overrides[key] = _blank_to_none(params[key])
        if params.get("tables") is not None:
            overrides["tables"] = parse_table_specs(params["tables"])

        for key in ("pk_batch_size", "fetch_size", "notify_after",
                    "statement_timeout_seconds", "max_retries", "max_parallel_dimensions"):
            if params.get(key) is not None:
                overrides[key] = int(params[key])
        if params.get("retry_delay_seconds") is not None:
            overrides["retry_delay_seconds"] = float(params["retry_delay_seconds"])
        for key in ("audit_schema", "audit_table", "table_log_dir",
                    "sproc_start_param", "sproc_end_param"):
            if _blank_to_none(params.get(key)):
                overrides[key] = params[key].strip()

        return replace(settings, **overrides) if overrides else settings


def load_settings_file(path: str, **overrides) -> SyncSettings:
    """
    Load settings from an appsettings-style JSON file.

    Expected shape:
        {
          "BulkCopyConfig": {
            "SourceSchema": "dbo",
            "TargetSchema": "bronze",
            "ScheduleMode": "daily",
            "DateFrom": "",
            "DateTo": "",
            "Tables": [{"table_name": "orders", "table_type": "fact", ...}]
          }
        }

    Args:
        path: Path to the JSON file
        **overrides: SyncSettings fields to set (e.g. connection ids)

    Raises:
        ConfigurationError: If the file is missing, unreadable or lacks the
            BulkCopyConfig section
    """
    try:
        with open(path, encoding="utf-8") as f:
            document = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read settings file {path}: {e}")

    section = document.get("BulkCopyConfig")
    if not isinstance(section, dict):
        raise ConfigurationError(f"Settings file {path} has no 'BulkCopyConfig' section")

    settings = SyncSettings(
        source_schema=_blank_to_none(section.get("SourceSchema")),
        target_schema=_blank_to_none(section.get("TargetSchema")),
        schedule_mode=_blank_to_none(section.get("ScheduleMode")),
        date_from=_blank_to_none(section.get("DateFrom")),
        date_to=_blank_to_none(section.get("DateTo")),
        tables=parse_table_specs(section.get("Tables")),
    )
    return replace(settings, **overrides) if overrides else settings


def resolve_settings(
    params: Dict[str, Any],
    settings_file: Optional[str] = None,
    defaults: Optional[SyncSettings] = None,
) -> SyncSettings:
    """
    Settings for one DAG run.

    Starts from the appsettings file when one is given, else from
    `defaults`, then applies the DAG params that are set (see
    SyncSettings.from_params).

    Args:
        params: DAG params
        settings_file: Optional path to an appsettings-style JSON file
        defaults: Base settings when there is no file
    """
    if settings_file:
        base = load_settings_file(settings_file)
        logger.info(f"Loaded settings from {settings_file}")
    else:
        base = defaults
    return SyncSettings.from_params(params, base=base)
