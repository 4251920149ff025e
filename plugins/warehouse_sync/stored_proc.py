"""
Stored Procedure Trigger

Calls a warehouse procedure with the run window as two named date
parameters (yyyy-MM-dd):

    CALL reporting.sp_refresh_summary("StartDateParam" => '2025-07-07',
                                      "EndDateParam" => '2025-07-13')

During the midnight hour the window is replaced by yesterday..yesterday,
whatever window the run resolved.

Unlike table loads, a failed procedure is re-raised after it is logged and
audited, which stops the rest of the run.
"""

from datetime import datetime
from typing import Callable, Tuple
import logging
import time

from warehouse_sync.audit import (
    PROCESS_STORED_PROC,
    AuditLogger,
    AuditRecord,
    RunResult,
    RunStatus,
)
from warehouse_sync.config import SyncSettings
from warehouse_sync.connections import TRANSIENT_ERRORS
from warehouse_sync.identifiers import POSTGRES, parse_qualified_name, qualified_name, quote_identifier
from warehouse_sync.retries import run_with_retries
from warehouse_sync.schedule import SyncWindow, yesterday_window

logger = logging.getLogger(__name__)


def effective_window(window: SyncWindow, now: datetime) -> SyncWindow:
    """The window a procedure runs with: yesterday during the midnight hour."""
    if now.hour == 0:
        return yesterday_window(now)
    return window


def build_call_statement(
    proc_name: str,
    default_schema: str,
    start_param: str,
    end_param: str,
) -> str:
    """CALL statement with named parameters bound as %s."""
    schema, name = parse_qualified_name(proc_name, default_schema)
    return (
        f"CALL {qualified_name(schema, name, POSTGRES)}("
        f"{quote_identifier(start_param, POSTGRES, 'parameter name')} => %s, "
        f"{quote_identifier(end_param, POSTGRES, 'parameter name')} => %s)"
    )


class StoredProcTrigger:
    """Runs warehouse stored procedures for the run window."""

    def __init__(
        self,
        target,
        audit: AuditLogger,
        settings: SyncSettings,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.target = target
        self.audit = audit
        self.settings = settings
        self.clock = clock
        self.sleep = sleep

    def execute(self, proc_name: str, window: SyncWindow, log=logger) -> RunResult:
        """
        Call one procedure.

        Returns:
            RunResult with status Completed

        Raises:
            Exception: Whatever the call raised, after logging and auditing it
        """
        started = time.monotonic()
        now = self.clock()
        window = effective_window(window, now)
        status = RunStatus.FAILED
        error_message = None
        audit_id = None

        try:
            audit_id = self.audit.begin(AuditRecord(
                table_name=proc_name,
                start_time=now,
                process=PROCESS_STORED_PROC,
                start_date_param=window.start,
                end_date_param=window.end,
            ))

            window.require(f"stored procedure {proc_name}")
            statement = build_call_statement(
                proc_name,
                self.settings.target_schema,
                self.settings.sproc_start_param,
                self.settings.sproc_end_param,
            )
            params = window.as_strings()

            run_with_retries(
                lambda: self._call(statement, params),
                description=f"Stored procedure {proc_name}",
                max_retries=self.settings.max_retries,
                delay_seconds=self.settings.retry_delay_seconds,
                retry_on=TRANSIENT_ERRORS,
                log=log,
                sleep=self.sleep,
            )
            status = RunStatus.COMPLETED
            log.info(
                f"Stored procedure {proc_name} executed successfully "
                f"for range {params[0]} to {params[1]}."
            )
        except Exception as e:
            error_message = str(e)
            log.error(f"Error executing stored procedure {proc_name}: {e}", exc_info=True)
            raise
        finally:
            self.audit.safe_finish(audit_id, status, None, error_message, log=log)

        return RunResult(
            table_name=proc_name,
            process=PROCESS_STORED_PROC,
            status=status,
            audit_id=audit_id,
            elapsed_seconds=time.monotonic() - started,
        )

    def _call(self, statement: str, params: Tuple[str, str]) -> None:
        with self.target.connect() as conn:
            # Procedures may manage their own transactions
            conn.autocommit = True
            with conn.cursor() as cursor:
                cursor.execute(
                    "SET statement_timeout = %s",
                    (int(self.settings.statement_timeout_seconds * 1000),),
                )
                cursor.execute(statement, params)
