"""
Audit Trail Module

Every table run is recorded in an audit table on the target database
(bronze.tbl_dw_copy_logs by default):

1. begin() inserts a row with Status 'In Progress' before any data moves
2. finish() sets EndTime, the final Status, RecordsCopied and ErrorMessage

Both calls use their own fresh connection and commit immediately, so the
audit trail survives a rolled-back load and concurrent table runs do not
interfere with each other.
"""

from dataclasses import asdict, dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional
import logging

import psycopg2

from warehouse_sync.identifiers import POSTGRES, qualified_name, quote_identifier

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    FAILED = "Failed"


PROCESS_TABLE_COPY = "Table Copy"
PROCESS_TABLE_UPDATE = "Table Update"
PROCESS_STORED_PROC = "Stored Procedure"


AUDIT_TABLE_DDL = """
CREATE SCHEMA IF NOT EXISTS {schema};

CREATE TABLE IF NOT EXISTS {table} (
    "Id" SERIAL PRIMARY KEY,
    "TableName" VARCHAR(255) NOT NULL,
    "StartTime" TIMESTAMP NOT NULL,
    "EndTime" TIMESTAMP,
    "StartDateParam" DATE,
    "EndDateParam" DATE,
    "DateColumn" VARCHAR(128),
    "UpdateDateColumn" VARCHAR(128),
    "PrimaryKey" VARCHAR(128),
    "Process" VARCHAR(50),
    "Status" VARCHAR(20) NOT NULL,
    "RecordsCopied" BIGINT,
    "ErrorMessage" TEXT
);
"""


@dataclass
class AuditRecord:
    table_name: str
    start_time: datetime
    process: str
    start_date_param: Optional[date] = None
    end_date_param: Optional[date] = None
    date_column: Optional[str] = None
    update_date_column: Optional[str] = None
    primary_key: Optional[str] = None
    status: RunStatus = RunStatus.IN_PROGRESS
    end_time: Optional[datetime] = None
    records_copied: Optional[int] = None
    error_message: Optional[str] = None
    id: Optional[int] = None


@dataclass
class RunResult:
    """Outcome of one table (or procedure) run."""

    table_name: str
    process: str
    status: RunStatus
    records_copied: Optional[int] = None
    error_message: Optional[str] = None
    audit_id: Optional[int] = None
    elapsed_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.status == RunStatus.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result["status"] = self.status.value
        result["success"] = self.success
        return result


class AuditLogger:
    """Writes audit records to the target database."""

    def __init__(
        self,
        target,
        schema: str = "bronze",
        table: str = "tbl_dw_copy_logs",
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Args:
            target: TargetConnectionFactory (anything with a connect() context manager)
            schema: Audit table schema
            table: Audit table name
            clock: Source of EndTime values
        """
        self.target = target
        self.schema = schema
        self.table = table
        self.clock = clock
        self._qualified = qualified_name(schema, table, POSTGRES)

    def ensure_audit_table_exists(self) -> None:
        """
        Create the audit schema and table if they don't exist.

        Safe to call at the start of every run.
        """
        ddl = AUDIT_TABLE_DDL.format(
            schema=quote_identifier(self.schema, POSTGRES, "schema name"),
            table=self._qualified,
        )
        with self.target.connect() as conn:
            with conn.cursor() as cursor:
                cursor.execute(ddl)
            conn.commit()
        logger.info(f"Ensured audit table {self.schema}.{self.table} exists")

    def begin(self, record: AuditRecord) -> int:
        """
        Insert an 'In Progress' record.

        Returns:
            The generated audit Id
        """
        with self.target.connect() as conn:
            with conn.cursor() as cursor:
                cursor.execute(
                    f"""
                    INSERT INTO {self._qualified} (
                        "TableName", "StartTime", "EndTime",
                        "StartDateParam", "EndDateParam",
                        "DateColumn", "UpdateDateColumn", "PrimaryKey",
                        "Process", "Status"
                    ) VALUES (%s, %s, NULL, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING "Id"
                    """,
                    (
                        record.table_name,
                        record.start_time,
                        record.start_date_param,
                        record.end_date_param,
                        record.date_column,
                        record.update_date_column,
                        record.primary_key,
                        record.process,
                        RunStatus.IN_PROGRESS.value,
                    )
                )
                audit_id = cursor.fetchone()[0]
            conn.commit()

        record.id = audit_id
        logger.debug(f"Audit record {audit_id} started for {record.table_name} ({record.process})")
        return audit_id

    def finish(
        self,
        audit_id: int,
        status: RunStatus,
        records_copied: Optional[int] = None,
        error_message: Optional[str] = None,
        end_time: Optional[datetime] = None,
    ) -> None:
        """
        Close an audit record with its final status.

        Raises:
            ValueError: If status is still 'In Progress'
        """
        if status == RunStatus.IN_PROGRESS:
            raise ValueError("An audit record must finish as Completed or Failed")

        with self.target.connect() as conn:
            with conn.cursor() as cursor:
                cursor.execute(
                    f"""
                    UPDATE {self._qualified} SET
                        "EndTime" = %s,
                        "Status" = %s,
                        "RecordsCopied" = %s,
                        "ErrorMessage" = %s
                    WHERE "Id" = %s
                    """,
                    (
                        end_time or self.clock(),
                        status.value,
                        records_copied,
                        error_message,
                        audit_id,
                    )
                )
            conn.commit()
        logger.debug(f"Audit record {audit_id} finished: {status.value}")

    def safe_finish(self, audit_id: Optional[int], status: RunStatus, records_copied=None,
                    error_message=None, log=logger) -> None:
        """
        finish() for use in finally blocks.

        A failure to write the audit row is logged at error level and does not
        replace the table's own outcome.
        """
        if audit_id is None:
            log.error(f"No audit record to close (final status {status.value})")
            return
        try:
            self.finish(audit_id, status, records_copied, error_message)
        except psycopg2.Error as e:
            log.error(f"Could not update audit record {audit_id} to {status.value}: {e}")
