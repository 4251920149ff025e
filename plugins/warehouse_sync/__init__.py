"""
SQL Server to PostgreSQL Warehouse Table Sync

This package replicates a configured set of tables from a SQL Server source
into a PostgreSQL warehouse on a schedule, recording every table run in an
audit table on the target.

Modules:
- config: Table specs, run settings and configuration errors
- schedule: Resolve the date window for a run from a schedule mode
- classifier: Partition table specs into replication strategies
- identifiers: Validate and quote SQL identifiers for both dialects
- connections: Source (pyodbc) and target (psycopg2) connection factories
- audit: Audit trail of table runs (bronze.tbl_dw_copy_logs)
- bulk_load: Stream source rows into PostgreSQL with COPY
- full_copy: Truncate or window-delete, then reload a table
- incremental: Primary-key diff refresh of late-arriving updates
- stored_proc: Trigger warehouse stored procedures for the window
- orchestrator: Run all strategies in their fixed order

Runtime Options (environment):
- SYNC_PK_BATCH_SIZE: Keys per delete+load batch for incremental updates
- SYNC_STATEMENT_TIMEOUT_SECONDS: Statement timeout (0 disables)
- SYNC_MAX_RETRIES: Retries for transient connection errors per table
- SYNC_MAX_PARALLEL_DIMENSIONS: Concurrent dimension table reloads
- SYNC_TABLE_LOG_DIR: Directory for per-table log files
"""

__version__ = "1.0.0"

from warehouse_sync import config
from warehouse_sync import schedule
from warehouse_sync import classifier
from warehouse_sync import identifiers

__all__ = [
    "config",
    "schedule",
    "classifier",
    "identifiers",
    "connections",
    "audit",
    "bulk_load",
    "full_copy",
    "incremental",
    "stored_proc",
    "orchestrator",
]
