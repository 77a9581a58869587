"""
PostgreSQL database adapter implementation.
"""

from __future__ import annotations

from typing import Any

from ..dialects.postgres import PostgresDialect
from ..utils import get_logger
from .base import AdapterConfigurationError, AdapterConnectionError, ConnectionConfig
from .dbapi import DBAPIAdapter


def _load_driver():
    try:
        import psycopg

        return psycopg
    except ImportError:
        return None


class PostgresAdapter(DBAPIAdapter):
    """
    Adapter wrapping the psycopg PostgreSQL driver.

    Inserts rely on ``RETURNING`` for generated keys.
    """

    label = "PostgreSQL"

    def __init__(self, slow_query_ms: int | None = None) -> None:
        self.dialect = PostgresDialect()
        super().__init__(get_logger("adapters.postgres"), slow_query_ms)

    def _load_driver(self) -> Any:
        driver = _load_driver()
        if driver is None:
            raise AdapterConfigurationError("psycopg is required to use PostgresAdapter.")
        return driver

    def _open_connection(self, driver: Any, config: ConnectionConfig) -> Any:
        options = dict(config.options or {})
        if config.ssl:
            for key, value in config.ssl.postgres_options().items():
                options.setdefault(key, value)
        if config.timeout and "connect_timeout" not in options:
            options["connect_timeout"] = int(config.timeout)
        connection = driver.connect(config.url, **options)
        connection.autocommit = bool(config.autocommit)
        return connection

    def last_insert_id(self, cursor: Any, table: str, pk_column: str) -> Any:
        row = cursor.fetchone()
        if not row:
            raise AdapterConnectionError(
                f"No RETURNING row available for generated key of '{table}'.", retryable=False
            )
        return row[0]
