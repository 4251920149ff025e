"""
SQL Server to PostgreSQL Warehouse Table Sync DAG

This DAG replicates the configured tables from SQL Server into the
PostgreSQL warehouse for a date window:

1. Resolve the window from the schedule mode and classify the tables
2. Run the warehouse stored procedures (a failure stops the run here)
3. Refresh incremental fact tables (primary-key diff of late updates)
4. Reload full-load fact tables for the window
5. Truncate and reload dimension tables in parallel
6. Summarize the results

Settings come from the appsettings-style JSON file named by the settings_file
param or the SYNC_SETTINGS_FILE environment variable (BulkCopyConfig section).
DAG params that are set override the file.

Every table run is recorded in bronze.tbl_dw_copy_logs on the target.
A failed table does not fail its task; check the summary or the audit table.
"""

from airflow.sdk import dag, task
from airflow.models.param import Param
from pendulum import datetime
from datetime import timedelta
from typing import List, Dict, Any
import logging
import os

import pendulum

from warehouse_sync.config import SyncSettings, resolve_settings
from warehouse_sync.orchestrator import SyncOrchestrator, summarize_results
from warehouse_sync.schedule import SyncWindow

# Configuration from environment
SYNC_SCHEDULE = os.environ.get('SYNC_SCHEDULE') or None
SYNC_TIMEZONE = os.environ.get('SYNC_TIMEZONE', 'UTC')
SYNC_SETTINGS_FILE = os.environ.get('SYNC_SETTINGS_FILE') or None

# Used when no settings file is configured
DEFAULT_SETTINGS = SyncSettings(source_schema="dbo", target_schema="bronze", schedule_mode="daily")

BUCKET_TASK_IDS = (
    "run_stored_procedures",
    "sync_incremental_tables",
    "sync_full_fact_tables",
    "sync_dimension_tables",
)

logger = logging.getLogger(__name__)


def _orchestrator(context) -> SyncOrchestrator:
    params = context["params"]
    settings = resolve_settings(
        params,
        settings_file=params.get("settings_file") or SYNC_SETTINGS_FILE,
        defaults=DEFAULT_SETTINGS,
    )
    return SyncOrchestrator(settings, clock=lambda: pendulum.now(SYNC_TIMEZONE).naive())


def _plan(context, window: Dict[str, Any]):
    orchestrator = _orchestrator(context)
    return orchestrator, orchestrator.plan(SyncWindow.from_dict(window))


@dag(
    start_date=datetime(2025, 1, 1),
    schedule=SYNC_SCHEDULE,
    catchup=False,
    max_active_runs=1,
    is_paused_upon_creation=False,
    doc_md=__doc__,
    default_args={
        "owner": "data-team",
        "retries": 0,
        "retry_delay": timedelta(minutes=5),
    },
    params={
        "settings_file": Param(
            default=None,
            type=["null", "string"],
            description="appsettings-style JSON file (BulkCopyConfig); overrides SYNC_SETTINGS_FILE"
        ),
        "source_conn_id": Param(
            default="mssql_source",
            type="string",
            description="SQL Server connection ID"
        ),
        "target_conn_id": Param(
            default="postgres_target",
            type="string",
            description="PostgreSQL connection ID"
        ),
        "source_schema": Param(
            default=None,
            type=["null", "string"],
            description="Source schema in SQL Server (unset: settings file, else dbo)"
        ),
        "target_schema": Param(
            default=None,
            type=["null", "string"],
            description="Target schema in PostgreSQL (unset: settings file, else bronze)"
        ),
        "schedule_mode": Param(
            default=None,
            type=["null", "string"],
            description=(
                "hourly, daily or weekly; empty string uses date_from/date_to "
                "(unset: settings file, else daily)"
            )
        ),
        "date_from": Param(
            default=None,
            type=["null", "string"],
            description="Window start (yyyy-MM-dd) when no schedule mode is set"
        ),
        "date_to": Param(
            default=None,
            type=["null", "string"],
            description="Window end (yyyy-MM-dd) when no schedule mode is set"
        ),
        "tables": Param(
            default=None,
            type=["null", "array"],
            description=(
                "Tables to sync: [{table_name, table_type (fact|dim|sproc|historical), "
                "date_column, update_date_column, primary_key, window_copy}] "
                "(unset: settings file)"
            )
        ),
    },
    tags=["warehouse", "mssql", "postgres", "etl", "sync"],
)
def warehouse_table_sync():
    """
    Scheduled warehouse sync for SQL Server to PostgreSQL.
    """

    @task
    def prepare_run(**context) -> Dict[str, Any]:
        """
        Validate settings, ensure the audit table exists, resolve the window.

        Returns:
            Window dict and table names per strategy
        """
        plan = _orchestrator(context).prepare()
        buckets = plan.tables.names()
        logger.info(f"Window: {plan.window}; tables: {buckets}")
        return {"window": plan.window.to_dict(), "buckets": buckets}

    @task
    def run_stored_procedures(run_info: Dict[str, Any], **context) -> List[Dict[str, Any]]:
        """Run stored procedures; any failure fails this task and the run."""
        orchestrator, plan = _plan(context, run_info["window"])
        return [r.to_dict() for r in orchestrator.run_stored_procedures(plan)]

    @task
    def sync_incremental_tables(run_info: Dict[str, Any], **context) -> List[Dict[str, Any]]:
        orchestrator, plan = _plan(context, run_info["window"])
        return [r.to_dict() for r in orchestrator.run_incremental_tables(plan)]

    @task
    def sync_full_fact_tables(run_info: Dict[str, Any], **context) -> List[Dict[str, Any]]:
        orchestrator, plan = _plan(context, run_info["window"])
        return [r.to_dict() for r in orchestrator.run_full_fact_tables(plan)]

    @task
    def sync_dimension_tables(run_info: Dict[str, Any], **context) -> List[Dict[str, Any]]:
        orchestrator, plan = _plan(context, run_info["window"])
        orchestrator.run_historical_tables(plan)
        return [r.to_dict() for r in orchestrator.run_dimension_tables(plan)]

    @task(trigger_rule="all_done")
    def collect_results(**context) -> Dict[str, Any]:
        """
        Summarize the run, including buckets that never ran.

        Returns:
            Summary dict with per-table details
        """
        pulled = context["ti"].xcom_pull(task_ids=list(BUCKET_TASK_IDS))
        results = []
        for bucket in pulled or []:
            results.extend(bucket or [])

        if not results:
            return {
                "status": "no_tables",
                "message": "No tables were synced",
                "tables_completed": 0,
                "tables_failed": 0,
            }
        return summarize_results(results)

    # Define task flow
    run_info = prepare_run()
    sprocs = run_stored_procedures(run_info)
    incremental = sync_incremental_tables(run_info)
    facts = sync_full_fact_tables(run_info)
    dimensions = sync_dimension_tables(run_info)

    # Fixed order: procedures, incremental facts, full facts, dimensions
    sprocs >> incremental >> facts >> dimensions

    [sprocs, incremental, facts, dimensions] >> collect_results()


# Instantiate the DAG
warehouse_table_sync()
