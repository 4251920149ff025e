"""
Connection Factories

Source: SQL Server through pyodbc. Connection details come from an Airflow
connection (host, port, schema=database, login/password); without a login
Windows authentication (Kerberos) is used.

Target: PostgreSQL through psycopg2, opened by PostgresHook.

Each table task opens its own connections; nothing is shared between
concurrently running tables.
"""

from contextlib import contextmanager
from typing import Dict, Iterator, Optional
import logging

from airflow.hooks.base import BaseHook
from airflow.providers.postgres.hooks.postgres import PostgresHook
import psycopg2
import psycopg2.extensions
import pyodbc

logger = logging.getLogger(__name__)

ODBC_DRIVER = '{ODBC Driver 18 for SQL Server}'
DEFAULT_MSSQL_PORT = 1433

# Errors worth retrying: dropped connections, failovers, statement timeouts.
TRANSIENT_ERRORS = (
    pyodbc.OperationalError,
    psycopg2.OperationalError,
    psycopg2.extensions.QueryCanceledError,
)


class SourceConnectionFactory:
    """Opens pyodbc connections to the SQL Server source."""

    def __init__(self, conn_id: str, query_timeout_seconds: int = 0):
        """
        Args:
            conn_id: Airflow connection ID for SQL Server
            query_timeout_seconds: pyodbc query timeout (0 = no timeout)
        """
        self.conn_id = conn_id
        self.query_timeout_seconds = query_timeout_seconds
        self._conn_config: Optional[Dict[str, str]] = None

    def _get_connection_config(self) -> Dict[str, str]:
        if self._conn_config is None:
            conn = BaseHook.get_connection(self.conn_id)

            port = conn.port or DEFAULT_MSSQL_PORT
            server = f"{conn.host},{port}" if port != DEFAULT_MSSQL_PORT else conn.host

            config = {
                'DRIVER': ODBC_DRIVER,
                'SERVER': server,
                'DATABASE': conn.schema,
                'TrustServerCertificate': 'yes',
            }
            if conn.login:
                config['UID'] = conn.login
                config['PWD'] = conn.password or ''
                config['Trusted_Connection'] = 'no'
            else:
                config['Trusted_Connection'] = 'yes'

            self._conn_config = config

        return self._conn_config

    def _build_connection_string(self) -> str:
        config = self._get_connection_config()
        return ';'.join([f"{k}={v}" for k, v in config.items() if v])

    def open(self) -> pyodbc.Connection:
        """Open a new source connection. Caller closes it."""
        conn = pyodbc.connect(self._build_connection_string(), timeout=30)
        if self.query_timeout_seconds:
            conn.timeout = self.query_timeout_seconds
        return conn

    @contextmanager
    def connect(self) -> Iterator[pyodbc.Connection]:
        conn = self.open()
        try:
            yield conn
        finally:
            try:
                conn.close()
            except pyodbc.Error as e:
                logger.warning(f"Error closing source connection {self.conn_id}: {e}")


class TargetConnectionFactory:
    """Opens psycopg2 connections to the PostgreSQL warehouse."""

    def __init__(self, conn_id: str):
        """
        Args:
            conn_id: Airflow connection ID for PostgreSQL
        """
        self.conn_id = conn_id
        self._hook = PostgresHook(postgres_conn_id=conn_id)

    def open(self):
        """Open a new target connection (autocommit off). Caller closes it."""
        return self._hook.get_conn()

    @contextmanager
    def connect(self):
        """
        Context manager for a target connection.

        Anything left uncommitted when the block exits is rolled back.
        """
        conn = self.open()
        try:
            yield conn
        finally:
            if not getattr(conn, "autocommit", False):
                try:
                    conn.rollback()
                except psycopg2.Error:
                    logger.exception(f"Rollback on release failed for {self.conn_id}")
            conn.close()
