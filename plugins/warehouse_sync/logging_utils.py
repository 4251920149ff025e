"""
Per-table logging.

Each table run gets its own child logger (warehouse_sync.tables.<table>)
wrapped in an adapter that tags every message with the table name. When a
log directory is configured, the table's messages are also written to
<log_dir>/<yyyy-MM>/<table>/<table>-<yyyyMMdd_HHmmss>.log for the duration
of the run.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional
import logging
import os

TABLE_LOGGER_PREFIX = "warehouse_sync.tables"
TABLE_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
TABLE_LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


class TableLoggerAdapter(logging.LoggerAdapter):
    """Prefixes messages with [table] and carries the table name in `extra`."""

    def process(self, msg, kwargs):
        kwargs.setdefault("extra", {}).update(self.extra)
        return f"[{self.extra['table']}] {msg}", kwargs


def table_log_path(log_dir: str, table_name: str, now: datetime) -> str:
    return os.path.join(
        log_dir,
        now.strftime("%Y-%m"),
        table_name,
        f"{table_name}-{now.strftime('%Y%m%d_%H%M%S')}.log",
    )


@contextmanager
def table_logger(
    table_name: str,
    log_dir: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Iterator[TableLoggerAdapter]:
    """
    Yield a logger scoped to one table run.

    Args:
        table_name: Table (or procedure) being processed
        log_dir: Optional root directory for per-table log files
        now: Timestamp used for the log file name (defaults to now)
    """
    child = logging.getLogger(f"{TABLE_LOGGER_PREFIX}.{table_name}")
    handler = None

    if log_dir:
        path = table_log_path(log_dir, table_name, now or datetime.now())
        os.makedirs(os.path.dirname(path), exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter(TABLE_LOG_FORMAT, TABLE_LOG_DATEFMT))
        child.addHandler(handler)
        if child.getEffectiveLevel() > logging.INFO:
            child.setLevel(logging.INFO)

    try:
        yield TableLoggerAdapter(child, {"table": table_name})
    finally:
        if handler is not None:
            child.removeHandler(handler)
            handler.close()
