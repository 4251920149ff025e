"""
Full Replication Module

Reloads one table inside a single target transaction:

1. Record an 'In Progress' audit row
2. Clear the target: TRUNCATE, or DELETE the rows in the date window, or
   (no date column, no truncate) nothing at all
3. SELECT the matching rows from the source
4. COPY them into the target on the same transaction
5. Commit, then close the audit row as Completed or Failed

Without a date column and without truncate the target is never cleared, so
every run appends the full source table again. Only use that for
append-only targets. Such copies are not retried.
"""

from datetime import datetime
from typing import Any, Callable, List, Optional, Tuple
import logging
import time

from warehouse_sync.audit import (
    PROCESS_TABLE_COPY,
    AuditLogger,
    AuditRecord,
    RunResult,
    RunStatus,
)
from warehouse_sync.bulk_load import copy_rows, cursor_column_names, iter_cursor_rows
from warehouse_sync.config import SyncSettings
from warehouse_sync.connections import TRANSIENT_ERRORS
from warehouse_sync.identifiers import MSSQL, POSTGRES, qualified_name, quote_identifier
from warehouse_sync.retries import run_with_retries
from warehouse_sync.schedule import SyncWindow
from warehouse_sync import transactions

logger = logging.getLogger(__name__)


def build_clear_statement(
    target_schema: str,
    table_name: str,
    use_truncate: bool,
    date_column: Optional[str],
    window: SyncWindow,
) -> Optional[Tuple[str, List[Any]]]:
    """
    Build the statement that clears the target before the load.

    Returns:
        (sql, params), or None when nothing should be cleared
    """
    target = qualified_name(target_schema, table_name, POSTGRES)

    if use_truncate:
        return f"TRUNCATE TABLE {target}", []

    if date_column:
        lower, upper = window.bounds()
        column = quote_identifier(date_column, POSTGRES, "date column")
        return f"DELETE FROM {target} WHERE {column} BETWEEN %s AND %s", [lower, upper]

    return None


def build_source_select(
    source_schema: str,
    table_name: str,
    use_truncate: bool,
    date_column: Optional[str],
    window: SyncWindow,
) -> Tuple[str, List[Any]]:
    """
    Build the source SELECT for a full copy.

    The window filter applies only to windowed (non-truncate) copies of a
    table with a date column.
    """
    source = qualified_name(source_schema, table_name, MSSQL)

    if use_truncate or not date_column:
        return f"SELECT * FROM {source}", []

    lower, upper = window.bounds()
    column = quote_identifier(date_column, MSSQL, "date column")
    return f"SELECT * FROM {source} WHERE {column} BETWEEN ? AND ?", [lower, upper]


class FullReplicationEngine:
    """Truncate or window-delete a target table, then reload it from the source."""

    def __init__(
        self,
        source,
        target,
        audit: AuditLogger,
        settings: SyncSettings,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            source: SourceConnectionFactory
            target: TargetConnectionFactory
            audit: AuditLogger writing to the target
            settings: Run settings (fetch size, timeouts, retries)
            clock: Source of audit StartTime
            sleep: Used between retries
        """
        self.source = source
        self.target = target
        self.audit = audit
        self.settings = settings
        self.clock = clock
        self.sleep = sleep

    def copy(
        self,
        table_name: str,
        source_schema: str,
        target_schema: str,
        window: SyncWindow,
        use_truncate: bool,
        date_column: Optional[str] = None,
        log=logger,
    ) -> RunResult:
        """
        Reload one table.

        Errors are not raised: they roll back the load, mark the audit row
        Failed and come back in the RunResult.

        Args:
            table_name: Table name (same in source and target)
            source_schema: Source schema in SQL Server
            target_schema: Target schema in PostgreSQL
            window: Run window (unused when use_truncate)
            use_truncate: TRUNCATE and reload everything instead of the window
            date_column: Column the window applies to
            log: Table-scoped logger

        Returns:
            RunResult with status and copied row count
        """
        started = time.monotonic()
        status = RunStatus.FAILED
        records_copied = None
        error_message = None
        audit_id = None

        log.info(f"Starting: {table_name}")

        try:
            start_param, end_param = (None, None) if use_truncate else (window.start, window.end)
            audit_id = self.audit.begin(AuditRecord(
                table_name=table_name,
                start_time=self.clock(),
                process=PROCESS_TABLE_COPY,
                start_date_param=start_param,
                end_date_param=end_param,
                date_column=date_column,
            ))

            # No date column and no truncate: the load appends, so a retry after an
            # ambiguous commit would copy the table twice.
            appends_only = not use_truncate and not date_column
            records_copied = run_with_retries(
                lambda: self._copy_once(
                    table_name, source_schema, target_schema,
                    window, use_truncate, date_column, log,
                ),
                description=f"Copy of {table_name}",
                max_retries=0 if appends_only else self.settings.max_retries,
                delay_seconds=self.settings.retry_delay_seconds,
                retry_on=TRANSIENT_ERRORS,
                log=log,
                sleep=self.sleep,
            )
            status = RunStatus.COMPLETED
            log.info(f"Done with {table_name}. Rows inserted: {records_copied:,}")
        except Exception as e:
            status = RunStatus.FAILED
            records_copied = None
            error_message = str(e)
            log.error(f"Error processing {table_name}: {e}", exc_info=True)
        finally:
            self.audit.safe_finish(audit_id, status, records_copied, error_message, log=log)
            log.info(f"Finished processing {table_name}")

        return RunResult(
            table_name=table_name,
            process=PROCESS_TABLE_COPY,
            status=status,
            records_copied=records_copied,
            error_message=error_message,
            audit_id=audit_id,
            elapsed_seconds=time.monotonic() - started,
        )

    def _copy_once(
        self,
        table_name: str,
        source_schema: str,
        target_schema: str,
        window: SyncWindow,
        use_truncate: bool,
        date_column: Optional[str],
        log,
    ) -> int:
        """One complete attempt: clear + load + commit in a fresh transaction."""
        clear = build_clear_statement(target_schema, table_name, use_truncate, date_column, window)
        select_sql, select_params = build_source_select(
            source_schema, table_name, use_truncate, date_column, window
        )

        with self.source.connect() as source_conn, self.target.connect() as target_conn:
            try:
                transactions.apply_statement_timeout(target_conn, self.settings.statement_timeout_seconds)

                if clear is None:
                    log.warning(
                        f"Skipped delete/truncate for {table_name}: no date column. "
                        "Rows will be appended to the existing target data."
                    )
                else:
                    clear_sql, clear_params = clear
                    with target_conn.cursor() as cursor:
                        cursor.execute(clear_sql, clear_params or None)
                        if use_truncate:
                            log.info(f"Truncated table: {target_schema}.{table_name}")
                        else:
                            log.info(
                                f"Deleted {cursor.rowcount} rows from {target_schema}.{table_name} "
                                f"where {date_column} is between {window}"
                            )

                source_cursor = source_conn.cursor()
                try:
                    source_cursor.execute(select_sql, *select_params)
                    columns = cursor_column_names(source_cursor)

                    log.info(f"Starting bulk copy for {table_name}")
                    rows = copy_rows(
                        target_conn,
                        target_schema,
                        table_name,
                        columns,
                        iter_cursor_rows(source_cursor, self.settings.fetch_size),
                        notify_after=self.settings.notify_after,
                        log=log,
                    )
                finally:
                    source_cursor.close()
            except Exception:
                transactions.rollback(target_conn, table_name, log)
                raise

            transactions.commit(target_conn, table_name, log)
            return rows
