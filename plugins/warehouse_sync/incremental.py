"""
Incremental Diff Module

Refreshes rows that were modified inside the run window (per the update
date column) but whose business date falls outside it. A windowed reload
never sees these late corrections to older records.

Algorithm:
1. Record an 'In Progress' audit row
2. Open one target transaction for the whole run
3. Find the changed keys on the source:
       pk WHERE update_date_column IN window
          AND pk NOT IN (pk WHERE date_column IN window)
4. Split the keys into batches (2000 by default)
5. Per batch: DELETE the keys from the target, then SELECT the rows from the
   source and COPY them back, leaving out the target-generated columns
   (Id, insert_datetime)
6. Commit once every batch succeeded

All batches share the transaction: a failure in any batch rolls back the
whole run. Finding no changed keys is a successful run with zero records.
"""

from datetime import datetime
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple
import logging
import time

from warehouse_sync.audit import (
    PROCESS_TABLE_UPDATE,
    AuditLogger,
    AuditRecord,
    RunResult,
    RunStatus,
)
from warehouse_sync.bulk_load import copy_rows, iter_cursor_rows
from warehouse_sync.config import SyncSettings
from warehouse_sync.connections import TRANSIENT_ERRORS
from warehouse_sync.identifiers import (
    MSSQL,
    POSTGRES,
    qualified_name,
    quote_column_list,
    quote_identifier,
)
from warehouse_sync.retries import run_with_retries
from warehouse_sync.schedule import SyncWindow
from warehouse_sync import transactions

logger = logging.getLogger(__name__)

# Columns the target fills in itself; never copied from the source.
EXCLUDED_COLUMNS = ("Id", "insert_datetime")


def chunk_keys(keys: Sequence[Any], batch_size: int) -> List[List[Any]]:
    """
    Split keys into consecutive batches of at most batch_size.

    Examples:
        >>> chunk_keys([1, 2, 3, 4, 5], 2)
        [[1, 2], [3, 4], [5]]
    """
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    return [list(keys[i:i + batch_size]) for i in range(0, len(keys), batch_size)]


def build_column_mapping(
    columns: Iterable[str],
    exclude: Iterable[str] = EXCLUDED_COLUMNS,
) -> List[str]:
    """
    Columns to copy source -> target by name, without the excluded ones.

    Matching against the exclude list ignores case; source order is kept.
    """
    excluded = {c.lower() for c in exclude}
    return [c for c in columns if c.lower() not in excluded]


def build_changed_keys_query(
    source_schema: str,
    table_name: str,
    primary_key: str,
    update_date_column: str,
    date_column: Optional[str],
    window: SyncWindow,
) -> Tuple[str, List[Any]]:
    """
    Build the source query for keys updated in the window whose business
    date is outside it.

    Without a date column every key updated in the window qualifies.
    """
    lower, upper = window.bounds()
    source = qualified_name(source_schema, table_name, MSSQL)
    pk = quote_identifier(primary_key, MSSQL, "primary key")
    updated = quote_identifier(update_date_column, MSSQL, "update date column")

    query = f"SELECT {pk} FROM {source} WHERE {updated} BETWEEN ? AND ?"
    params: List[Any] = [lower, upper]

    if date_column:
        business = quote_identifier(date_column, MSSQL, "date column")
        query += (
            f" AND {pk} NOT IN ("
            f"SELECT {pk} FROM {source} WHERE {business} BETWEEN ? AND ?)"
        )
        params.extend([lower, upper])

    return query, params


def get_source_columns(source_conn, schema_name: str, table_name: str) -> List[str]:
    """Column names of a SQL Server table, in column order."""
    query = """
    SELECT c.name
    FROM sys.columns c
    INNER JOIN sys.tables t ON c.object_id = t.object_id
    INNER JOIN sys.schemas s ON t.schema_id = s.schema_id
    WHERE s.name = ? AND t.name = ?
    ORDER BY c.column_id
    """
    cursor = source_conn.cursor()
    try:
        cursor.execute(query, schema_name, table_name)
        return [row[0] for row in cursor.fetchall()]
    finally:
        cursor.close()


class IncrementalDiffEngine:
    """Replace exactly the rows whose keys changed outside the window."""

    def __init__(
        self,
        source,
        target,
        audit: AuditLogger,
        settings: SyncSettings,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.source = source
        self.target = target
        self.audit = audit
        self.settings = settings
        self.clock = clock
        self.sleep = sleep

    def update(
        self,
        table_name: str,
        source_schema: str,
        target_schema: str,
        window: SyncWindow,
        date_column: Optional[str],
        update_date_column: str,
        primary_key: str,
        log=logger,
    ) -> RunResult:
        """
        Refresh late-updated rows of one table.

        Errors are not raised: they roll back every batch, mark the audit
        row Failed and come back in the RunResult.

        Returns:
            RunResult; records_copied is the number of keys refreshed
        """
        started = time.monotonic()
        status = RunStatus.FAILED
        records_copied = None
        error_message = None
        audit_id = None

        log.info(f"Starting: {table_name}")

        try:
            audit_id = self.audit.begin(AuditRecord(
                table_name=table_name,
                start_time=self.clock(),
                process=PROCESS_TABLE_UPDATE,
                start_date_param=window.start,
                end_date_param=window.end,
                date_column=date_column,
                update_date_column=update_date_column,
                primary_key=primary_key,
            ))

            records_copied = run_with_retries(
                lambda: self._update_once(
                    table_name, source_schema, target_schema, window,
                    date_column, update_date_column, primary_key, log,
                ),
                description=f"Update of {table_name}",
                max_retries=self.settings.max_retries,
                delay_seconds=self.settings.retry_delay_seconds,
                retry_on=TRANSIENT_ERRORS,
                log=log,
                sleep=self.sleep,
            )
            status = RunStatus.COMPLETED
            log.info(f"Done with {table_name}. Keys refreshed: {records_copied:,}")
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
            process=PROCESS_TABLE_UPDATE,
            status=status,
            records_copied=records_copied,
            error_message=error_message,
            audit_id=audit_id,
            elapsed_seconds=time.monotonic() - started,
        )

    def _update_once(
        self,
        table_name: str,
        source_schema: str,
        target_schema: str,
        window: SyncWindow,
        date_column: Optional[str],
        update_date_column: str,
        primary_key: str,
        log,
    ) -> int:
        """One complete attempt: every batch in one fresh transaction."""
        keys_sql, keys_params = build_changed_keys_query(
            source_schema, table_name, primary_key, update_date_column, date_column, window
        )

        with self.source.connect() as source_conn, self.target.connect() as target_conn:
            try:
                transactions.apply_statement_timeout(target_conn, self.settings.statement_timeout_seconds)

                log.info(f"Identifying primary keys to update based on {update_date_column}")
                keys = self._fetch_keys(source_conn, keys_sql, keys_params)
                log.info(f"Total primary keys to update: {len(keys):,}")

                if keys:
                    self._replace_batches(
                        source_conn, target_conn, table_name,
                        source_schema, target_schema, primary_key, keys, log,
                    )
                else:
                    log.info(f"No rows to update for {table_name}")
            except Exception:
                transactions.rollback(target_conn, table_name, log)
                raise

            transactions.commit(target_conn, table_name, log)
            return len(keys)

    def _fetch_keys(self, source_conn, keys_sql: str, keys_params: List[Any]) -> List[Any]:
        cursor = source_conn.cursor()
        try:
            cursor.execute(keys_sql, *keys_params)
            # Keep first-seen order, drop duplicates
            return list(dict.fromkeys(row[0] for row in cursor.fetchall()))
        finally:
            cursor.close()

    def _replace_batches(
        self,
        source_conn,
        target_conn,
        table_name: str,
        source_schema: str,
        target_schema: str,
        primary_key: str,
        keys: List[Any],
        log,
    ) -> None:
        columns = build_column_mapping(get_source_columns(source_conn, source_schema, table_name))
        if not columns:
            raise ValueError(f"No copyable columns found for {source_schema}.{table_name}")

        target = qualified_name(target_schema, table_name, POSTGRES)
        source = qualified_name(source_schema, table_name, MSSQL)
        target_pk = quote_identifier(primary_key, POSTGRES, "primary key")
        source_pk = quote_identifier(primary_key, MSSQL, "primary key")
        source_columns = quote_column_list(columns, MSSQL)

        for batch_num, batch in enumerate(chunk_keys(keys, self.settings.pk_batch_size), start=1):
            with target_conn.cursor() as cursor:
                cursor.execute(f"DELETE FROM {target} WHERE {target_pk} = ANY(%s)", (batch,))
                log.info(f"Deleted {cursor.rowcount} rows in {table_name} (batch {batch_num})")

            placeholders = ', '.join('?' for _ in batch)
            source_cursor = source_conn.cursor()
            try:
                source_cursor.execute(
                    f"SELECT {source_columns} FROM {source} WHERE {source_pk} IN ({placeholders})",
                    *batch,
                )
                inserted = copy_rows(
                    target_conn,
                    target_schema,
                    table_name,
                    columns,
                    iter_cursor_rows(source_cursor, self.settings.fetch_size),
                    log=log,
                )
            finally:
                source_cursor.close()

            log.info(f"Inserted batch of {inserted:,} rows into {table_name} (batch {batch_num})")
