"""
Shared fixtures: fake connection factories and mocked DB-API connections.
"""

from contextlib import contextmanager
from datetime import datetime
from unittest.mock import MagicMock

import pytest


class FakeConnectionFactory:
    """
    Stands in for Source/TargetConnectionFactory.

    Connections queued with queue() are handed out in order; once the queue
    is empty a fresh MagicMock connection is used. Exceptions queued with
    fail_next() are raised by connect() instead of yielding a connection.
    """

    def __init__(self, name):
        self.name = name
        self._queued = []
        self._errors = []
        self.opened = []

    def queue(self, *connections):
        self._queued.extend(connections)
        return self

    def fail_next(self, error):
        self._errors.append(error)
        return self

    @contextmanager
    def connect(self):
        if self._errors:
            raise self._errors.pop(0)
        conn = self._queued.pop(0) if self._queued else make_target_connection()
        self.opened.append(conn)
        yield conn


def make_target_connection(copied=None):
    """
    Mock psycopg2 connection whose cursor context manager yields one cursor.

    copy_expert drains the stream it is given; the text lands in `copied`.
    """
    conn = MagicMock(name="target_conn")
    conn.autocommit = False
    cursor = MagicMock(name="target_cursor")
    cursor.rowcount = 0

    def _copy_expert(sql, stream):
        text = stream.read()
        if copied is not None:
            copied.append((sql, text))

    cursor.copy_expert.side_effect = _copy_expert
    conn.cursor.return_value.__enter__.return_value = cursor
    conn.test_cursor = cursor
    return conn


def make_source_cursor(columns=(), chunks=(), fetchall=None):
    """Mock pyodbc cursor with a description and fetchmany() chunks."""
    cursor = MagicMock(name="source_cursor")
    cursor.description = [(name, None, None, None, None, None, None) for name in columns]
    cursor.fetchmany.side_effect = list(chunks) + [[]]
    if fetchall is not None:
        cursor.fetchall.return_value = fetchall
    return cursor


def make_source_connection(*cursors):
    """Mock pyodbc connection returning the given cursors in order."""
    conn = MagicMock(name="source_conn")
    conn.cursor.side_effect = list(cursors)
    return conn


@pytest.fixture
def source_factory():
    return FakeConnectionFactory("source")


@pytest.fixture
def target_factory():
    return FakeConnectionFactory("target")


@pytest.fixture
def fixed_clock():
    """Clock fixed at 2025-07-14 10:15 (not the midnight hour)."""
    return lambda: datetime(2025, 7, 14, 10, 15, 0)


@pytest.fixture
def settings():
    from warehouse_sync.config import SyncSettings

    return SyncSettings(
        source_conn_id="mssql_test",
        target_conn_id="postgres_test",
        source_schema="dbo",
        target_schema="bronze",
        fetch_size=100,
        notify_after=0,
        statement_timeout_seconds=60,
        max_retries=0,
        retry_delay_seconds=1,
        max_parallel_dimensions=2,
        table_log_dir=None,
    )


@pytest.fixture
def helpers():
    """Connection/cursor builders for tests that need more than the factories."""

    class _Helpers:
        target_connection = staticmethod(make_target_connection)
        source_cursor = staticmethod(make_source_cursor)
        source_connection = staticmethod(make_source_connection)

    return _Helpers
