"""
Target transaction helpers shared by the table engines.
"""

import logging

logger = logging.getLogger(__name__)


def apply_statement_timeout(target_conn, timeout_seconds: int) -> None:
    """
    Set the statement timeout for the current target transaction.

    0 disables the timeout. SET LOCAL ends with the transaction.
    """
    with target_conn.cursor() as cursor:
        cursor.execute("SET LOCAL statement_timeout = %s", (int(timeout_seconds * 1000),))


def rollback(target_conn, table_name: str, log=logger) -> None:
    """Roll back after a failed load. A failing rollback is logged, not raised."""
    try:
        target_conn.rollback()
        log.warning(f"Rolled back transaction for {table_name}")
    except Exception as rollback_error:
        log.error(f"Rollback failed for {table_name}: {rollback_error}")


def commit(target_conn, table_name: str, log=logger) -> None:
    """
    Commit the table's transaction.

    If the commit itself fails, a rollback is attempted, both failures are
    logged, and the commit error is re-raised.
    """
    try:
        target_conn.commit()
    except Exception as commit_error:
        log.error(f"Commit failed for {table_name}: {commit_error}")
        rollback(target_conn, table_name, log)
        raise
    log.info(f"Transaction committed for {table_name}")
