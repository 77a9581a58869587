"""
MySQL database adapter implementation.
"""

from __future__ import annotations

from typing import Any

from ..dialects.mysql import MySQLDialect
from ..utils import get_logger
from .base import AdapterConfigurationError, ConnectionConfig
from .dbapi import DBAPIAdapter


def _load_driver():
    try:
        import pymysql  # type: ignore[import-untyped]

        return pymysql
    except ImportError:
        try:
            import MySQLdb

            return MySQLdb
        except ImportError:
            return None


class MySQLAdapter(DBAPIAdapter):
    """
    Adapter wrapping a MySQL DB-API driver (PyMySQL or mysqlclient).
    """

    label = "MySQL"
    begin_statement = "START TRANSACTION"

    def __init__(self, slow_query_ms: int | None = None) -> None:
        self.dialect = MySQLDialect()
        self._autocommit = False
        super().__init__(get_logger("adapters.mysql"), slow_query_ms)

    def _load_driver(self) -> Any:
        driver = _load_driver()
        if driver is None:
            raise AdapterConfigurationError(
                "PyMySQL or mysqlclient is required to use MySQLAdapter."
            )
        return driver

    def _open_connection(self, driver: Any, config: ConnectionConfig) -> Any:
        if not config.dsn:
            raise AdapterConfigurationError(
                "ConnectionConfig must be built from a DSN for MySQL connections."
            )
        options = dict(config.options or {})
        if config.ssl:
            for key, value in config.ssl.mysql_options().items():
                options.setdefault(key, value)
        if config.timeout and "connect_timeout" not in options:
            options["connect_timeout"] = int(config.timeout)

        dsn = config.dsn
        connect_kwargs = {
            "host": dsn.host or "localhost",
            "user": dsn.username,
            "password": dsn.password,
            "database": dsn.database,
            **options,
        }
        if dsn.port:
            connect_kwargs["port"] = dsn.port

        connection = driver.connect(**connect_kwargs)
        # Both PyMySQL and mysqlclient expose autocommit as a method.
        if callable(getattr(connection, "autocommit", None)):
            connection.autocommit(config.autocommit)
        self._autocommit = bool(config.autocommit)
        return connection

    def _autocommit_enabled(self, connection: Any) -> bool:
        return self._autocommit
