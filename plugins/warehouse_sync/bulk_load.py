"""
Bulk Load Module

Streams rows from a SQL Server cursor into a PostgreSQL table with
COPY ... FROM STDIN. The COPY runs on the caller's target connection, so it
belongs to whatever transaction the caller has open (the clearing
DELETE/TRUNCATE and the load commit or roll back together).

Rows are pulled from the source with fetchmany() and encoded lazily, so a
table of any size is loaded without buffering it in memory.
"""

from datetime import date, datetime, time as dt_time
from decimal import Decimal
from io import StringIO, TextIOBase
from typing import Any, Callable, Iterable, Iterator, List, Optional, Sequence, Tuple
import csv
import logging
import math

from warehouse_sync.identifiers import POSTGRES, qualified_name, quote_column_list

logger = logging.getLogger(__name__)

NULL_MARKER = '\\N'
COPY_DELIMITER = '\t'


def _encode_binary(value) -> str:
    return '\\x' + bytes(value).hex()


def _encode_float(value: float):
    return value if math.isfinite(value) else NULL_MARKER


# Checked in order: datetime is a date and bool is an int.
_COPY_ENCODERS = (
    (datetime, lambda v: v.isoformat(sep=' ')),
    ((date, dt_time), lambda v: v.isoformat()),
    (Decimal, str),
    (bool, lambda v: 't' if v else 'f'),
    ((bytes, bytearray, memoryview), _encode_binary),
    (float, _encode_float),
)


def normalize_copy_value(value: Any) -> Any:
    """
    Text form of one source value inside a COPY row.

    NULL becomes NULL_MARKER, so an empty string still loads as ''.
    Binary values use the bytea hex form; NaN and infinity load as NULL.
    Anything not listed in _COPY_ENCODERS is left to the csv writer.
    """
    if value is None:
        return NULL_MARKER
    for types, encode in _COPY_ENCODERS:
        if isinstance(value, types):
            return encode(value)
    return value


class CopyRowStream(TextIOBase):
    """
    File-like view over a row iterator, read by cursor.copy_expert().

    Rows are encoded only when copy_expert asks for more text, so no more
    than one read() worth of rows is held at a time.
    """

    def __init__(self, rows: Iterable[Sequence[Any]], normalizer: Callable[[Any], Any] = normalize_copy_value):
        self._rows = iter(rows)
        self._normalizer = normalizer
        self._line = StringIO()
        self._writer = csv.writer(
            self._line,
            delimiter=COPY_DELIMITER,
            quoting=csv.QUOTE_MINIMAL,
            lineterminator='\n',
        )
        self._pending = ''
        self._done = False

    def readable(self) -> bool:
        return True

    def read(self, size: Optional[int] = -1) -> str:
        if size is None:
            size = -1
        self._fill(size)
        if size < 0:
            text, self._pending = self._pending, ''
        else:
            text, self._pending = self._pending[:size], self._pending[size:]
        return text

    def _fill(self, size: int) -> None:
        parts = [self._pending]
        length = len(self._pending)
        while not self._done and (size < 0 or length < size):
            row = next(self._rows, None)
            if row is None:
                self._done = True
                break
            line = self._encode(row)
            parts.append(line)
            length += len(line)
        self._pending = ''.join(parts)

    def _encode(self, row: Sequence[Any]) -> str:
        self._line.seek(0)
        self._line.truncate()
        self._writer.writerow([self._normalizer(value) for value in row])
        return self._line.getvalue()


def iter_cursor_rows(cursor, fetch_size: int) -> Iterator[Tuple[Any, ...]]:
    """Yield rows from a DB-API cursor in fetchmany() chunks."""
    while True:
        rows = cursor.fetchmany(fetch_size)
        if not rows:
            return
        for row in rows:
            yield tuple(row)


class RowCounter:
    """
    Counts rows as they pass through and reports progress every
    `notify_after` rows.
    """

    def __init__(self, rows: Iterable[Sequence[Any]], notify_after: int = 0,
                 on_progress: Optional[Callable[[int], None]] = None):
        self._rows = rows
        self._notify_after = notify_after
        self._on_progress = on_progress
        self.count = 0

    def __iter__(self):
        for row in self._rows:
            self.count += 1
            if self._notify_after and self._on_progress and self.count % self._notify_after == 0:
                self._on_progress(self.count)
            yield row


def cursor_column_names(cursor) -> List[str]:
    """Column names from a DB-API cursor description."""
    if not cursor.description:
        return []
    return [column[0] for column in cursor.description]


def copy_rows(
    target_conn,
    schema_name: str,
    table_name: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    notify_after: int = 0,
    log=logger,
) -> int:
    """
    COPY rows into a target table on an open connection.

    The caller owns the transaction: nothing is committed here.

    Args:
        target_conn: Open psycopg2 connection
        schema_name: Target schema
        table_name: Target table
        columns: Target column names, in row order
        rows: Iterable of row tuples
        notify_after: Log progress every N rows (0 = never)
        log: Logger or LoggerAdapter for progress messages

    Returns:
        Number of rows written
    """
    if not columns:
        raise ValueError(f"No columns to load into {schema_name}.{table_name}")

    copy_sql = (
        f"COPY {qualified_name(schema_name, table_name, POSTGRES)} "
        f"({quote_column_list(columns, POSTGRES)}) "
        "FROM STDIN WITH (FORMAT CSV, DELIMITER E'\\t', QUOTE '\"', NULL '\\N')"
    )

    counter = RowCounter(
        rows,
        notify_after=notify_after,
        on_progress=lambda n: log.info(f"Processed {n:,} rows."),
    )
    with target_conn.cursor() as cursor:
        cursor.copy_expert(copy_sql, CopyRowStream(counter))

    return counter.count
