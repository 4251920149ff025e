"""
Sync Orchestrator

Runs one sync: resolve the window, classify the configured tables, then
process the strategy buckets in a fixed order:

1. stored procedures        sequential, a failure aborts the run
2. incremental fact tables  sequential, diff update (+ optional windowed copy)
3. full-load fact tables    sequential, windowed delete + reload
4. dimension tables         parallel (bounded pool), truncate + reload

Historical tables are classified but not dispatched. Table failures are
isolated: each table is its own transaction and audit record, and the run
moves on to the next table.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List
import logging
import time

from warehouse_sync.audit import PROCESS_TABLE_COPY, AuditLogger, RunResult, RunStatus
from warehouse_sync.classifier import ClassifiedTables, Strategy, classify_tables
from warehouse_sync.config import WINDOW_COPY_AFTER, WINDOW_COPY_BEFORE, SyncSettings, TableSpec
from warehouse_sync.connections import SourceConnectionFactory, TargetConnectionFactory
from warehouse_sync.full_copy import FullReplicationEngine
from warehouse_sync.incremental import IncrementalDiffEngine
from warehouse_sync.logging_utils import table_logger
from warehouse_sync.schedule import SyncWindow, resolve_window
from warehouse_sync.stored_proc import StoredProcTrigger

logger = logging.getLogger(__name__)

RUN_ORDER = (
    Strategy.STORED_PROC,
    Strategy.INCREMENTAL_FACT,
    Strategy.FULL_FACT,
    Strategy.DIMENSION,
)


@dataclass
class RunPlan:
    window: SyncWindow
    tables: ClassifiedTables


@dataclass
class SyncSummary:
    window: SyncWindow
    results: List[RunResult] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def completed(self) -> int:
        return len([r for r in self.results if r.success])

    @property
    def failed(self) -> int:
        return len([r for r in self.results if not r.success])

    @property
    def status(self) -> str:
        return "success" if self.failed == 0 else "partial_failure"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "window": self.window.to_dict(),
            "tables_completed": self.completed,
            "tables_failed": self.failed,
            "tables_skipped": self.skipped,
            "total_records": sum(r.records_copied or 0 for r in self.results),
            "details": [r.to_dict() for r in self.results],
        }


def summarize_results(results: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Summarize RunResult dicts (e.g. collected from several tasks) and log it.
    """
    completed = [r for r in results if r.get("success")]
    failed = [r for r in results if not r.get("success")]
    total_records = sum(r.get("records_copied") or 0 for r in results)

    summary = {
        "status": "success" if not failed else "partial_failure",
        "tables_completed": len(completed),
        "tables_failed": len(failed),
        "total_records": total_records,
        "details": results,
    }

    logger.info(
        f"Sync complete: {len(completed)} succeeded, {len(failed)} failed. "
        f"Total records: {total_records:,}"
    )
    if failed:
        logger.error(f"Failed tables: {', '.join(r['table_name'] for r in failed)}")

    return summary


class SyncOrchestrator:
    """Composes window resolution, classification and the strategy engines."""

    def __init__(
        self,
        settings: SyncSettings,
        source=None,
        target=None,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            settings: Run settings; validated here, before any table is touched
            source: Source connection factory (default: from settings.source_conn_id)
            target: Target connection factory (default: from settings.target_conn_id)
            clock: Current time, for window resolution and audit timestamps
            sleep: Used between retries
        """
        self.settings = settings.validate()
        self.clock = clock
        self.source = source or SourceConnectionFactory(
            settings.source_conn_id, settings.statement_timeout_seconds
        )
        self.target = target or TargetConnectionFactory(settings.target_conn_id)

        self.audit = AuditLogger(self.target, settings.audit_schema, settings.audit_table, clock)
        self.full_copy = FullReplicationEngine(self.source, self.target, self.audit, settings, clock, sleep)
        self.incremental = IncrementalDiffEngine(self.source, self.target, self.audit, settings, clock, sleep)
        self.stored_procs = StoredProcTrigger(self.target, self.audit, settings, clock, sleep)

        self._handlers = {
            Strategy.STORED_PROC: self.run_stored_procedures,
            Strategy.INCREMENTAL_FACT: self.run_incremental_tables,
            Strategy.FULL_FACT: self.run_full_fact_tables,
            Strategy.DIMENSION: self.run_dimension_tables,
        }

    def resolve_window(self) -> SyncWindow:
        s = self.settings
        return resolve_window(s.schedule_mode, s.date_from, s.date_to, self.clock())

    def plan(self, window: SyncWindow) -> RunPlan:
        """Classify the configured tables for a given window."""
        return RunPlan(window=window, tables=classify_tables(self.settings.tables))

    def prepare(self) -> RunPlan:
        """
        Start a run: resolve the window, classify tables and make sure the
        audit table exists.
        """
        window = self.resolve_window()
        plan = self.plan(window)

        logger.info("Starting table sync run...")
        logger.info(f"Source Schema: {self.settings.source_schema}")
        logger.info(f"Target Schema: {self.settings.target_schema}")
        logger.info(f"Schedule Mode: {self.settings.schedule_mode or 'explicit dates'}")
        logger.info(f"Date Range: {window}")

        if self.settings.create_audit_table:
            self.audit.ensure_audit_table_exists()

        return plan

    def run(self) -> SyncSummary:
        """
        Execute a complete run in the fixed bucket order.

        Raises:
            ConfigurationError: Before any table is touched
            Exception: A stored procedure failure, after which no table buckets run
        """
        plan = self.prepare()
        summary = SyncSummary(window=plan.window, skipped=[t.name for t in plan.tables.unclassified])

        for strategy in RUN_ORDER:
            summary.results.extend(self._handlers[strategy](plan))
        self.run_historical_tables(plan)

        summarize_results([r.to_dict() for r in summary.results])
        return summary

    def run_stored_procedures(self, plan: RunPlan) -> List[RunResult]:
        """Run procedures in order. The first failure propagates."""
        procs = plan.tables.stored_procs
        if procs:
            logger.info(f"Starting stored procedures: {', '.join(p.name for p in procs)}")

        results = []
        for spec in procs:
            with table_logger(spec.name, self.settings.table_log_dir) as log:
                results.append(self.stored_procs.execute(spec.name, plan.window, log=log))
        return results

    def run_incremental_tables(self, plan: RunPlan) -> List[RunResult]:
        tables = plan.tables.incremental_facts
        if tables:
            logger.info(f"Starting update process for tables: {', '.join(t.name for t in tables)}")

        results = []
        for spec in tables:
            with table_logger(spec.name, self.settings.table_log_dir) as log:
                if spec.window_copy == WINDOW_COPY_BEFORE:
                    results.extend(self._window_copy_for(spec, plan.window, log))

                results.append(self.incremental.update(
                    spec.name,
                    self.settings.source_schema,
                    self.settings.target_schema,
                    plan.window,
                    spec.date_column,
                    spec.update_date_column,
                    spec.primary_key,
                    log=log,
                ))

                if spec.window_copy == WINDOW_COPY_AFTER:
                    results.extend(self._window_copy_for(spec, plan.window, log))
        return results

    def _window_copy_for(self, spec: TableSpec, window: SyncWindow, log) -> List[RunResult]:
        if not spec.date_column:
            log.warning(
                f"window_copy is set for {spec.name} but it has no date_column; "
                "skipping the windowed copy"
            )
            return []
        return [self._copy(spec, window, use_truncate=False, log=log)]

    def run_full_fact_tables(self, plan: RunPlan) -> List[RunResult]:
        tables = plan.tables.full_facts
        if tables:
            logger.info(f"Starting process for tables: {', '.join(t.name for t in tables)}")

        results = []
        for spec in tables:
            with table_logger(spec.name, self.settings.table_log_dir) as log:
                results.append(self._copy(spec, plan.window, use_truncate=False, log=log))
        return results

    def run_dimension_tables(self, plan: RunPlan) -> List[RunResult]:
        """
        Truncate and reload dimension tables in parallel.

        Each worker opens its own source and target connections. Results come
        back in completion order.
        """
        tables = plan.tables.dimensions
        if not tables:
            return []

        workers = min(self.settings.max_parallel_dimensions, len(tables))
        logger.info(
            f"Starting process for tables: {', '.join(t.name for t in tables)} "
            f"({workers} parallel workers)"
        )

        results = []
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="dim-sync") as executor:
            futures = {
                executor.submit(self._copy_dimension, spec, plan.window): spec
                for spec in tables
            }
            for future in as_completed(futures):
                spec = futures[future]
                try:
                    results.append(future.result())
                except Exception as e:
                    logger.error(f"Dimension task for {spec.name} failed: {e}", exc_info=True)
                    results.append(RunResult(
                        table_name=spec.name,
                        process=PROCESS_TABLE_COPY,
                        status=RunStatus.FAILED,
                        error_message=str(e),
                    ))
        return results

    def _copy_dimension(self, spec: TableSpec, window: SyncWindow) -> RunResult:
        with table_logger(spec.name, self.settings.table_log_dir) as log:
            return self._copy(spec, window, use_truncate=True, log=log)

    def run_historical_tables(self, plan: RunPlan) -> List[RunResult]:
        """Historical tables are reserved: classified, logged, not loaded."""
        tables = plan.tables.historical
        if tables:
            logger.info(
                f"Historical tables are not processed in this version: "
                f"{', '.join(t.name for t in tables)}"
            )
        return []

    def _copy(self, spec: TableSpec, window: SyncWindow, use_truncate: bool, log) -> RunResult:
        return self.full_copy.copy(
            spec.name,
            self.settings.source_schema,
            self.settings.target_schema,
            window,
            use_truncate=use_truncate,
            date_column=spec.date_column,
            log=log,
        )
