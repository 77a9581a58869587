"""
Shared plumbing for adapters built on a DB-API 2.0 driver module.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from ..dialects.base import Dialect
from ..security.redaction import redact_params
from ..utils import time_call
from ..utils.performance import resolve_slow_query_ms
from .base import (
    AdapterConnectionError,
    AdapterError,
    AdapterExecutionError,
    ConnectionConfig,
    ConstraintViolationError,
    StoreUnavailableError,
)


@dataclass
class DriverConnectionState:
    connection: Any
    config: ConnectionConfig
    driver: Any


def count_pyformat_placeholders(sql: str) -> int:
    count = 0
    idx = 0
    while idx < len(sql) - 1:
        if sql[idx] == "%" and sql[idx + 1] == "s":
            count += 1
            idx += 2
            continue
        if sql[idx] == "%" and sql[idx + 1] == "%":
            idx += 2
            continue
        idx += 1
    return count


def translate_driver_error(driver: Any, exc: Exception, *, action: str) -> AdapterError:
    """
    Map a DB-API exception onto the Quarry store-error hierarchy.

    Operational and interface errors (lost connections, timeouts, lock waits)
    are retryable; integrity errors never are.
    """

    def is_instance(name: str) -> bool:
        exc_type = getattr(driver, name, None)
        return isinstance(exc_type, type) and isinstance(exc, exc_type)

    message = f"{action} failed: {exc}"
    if is_instance("IntegrityError"):
        return ConstraintViolationError(message)
    if is_instance("OperationalError") or is_instance("InterfaceError"):
        return StoreUnavailableError(message)
    return AdapterExecutionError(message)


class DBAPIAdapter:
    """
    Base class for server-backed adapters using ``pyformat`` placeholders.

    Subclasses provide ``dialect``, ``label``, ``_load_driver`` and
    ``_open_connection``.
    """

    dialect: Dialect
    label = "database"
    begin_statement = "BEGIN"

    def __init__(self, logger: logging.Logger, slow_query_ms: int | None = None) -> None:
        self._state: DriverConnectionState | None = None
        self.logger = logger
        self.slow_query_ms = resolve_slow_query_ms(default=100, override=slow_query_ms)

    # ------------------------------------------------------------------ #
    # Hooks for subclasses
    # ------------------------------------------------------------------ #
    def _load_driver(self) -> Any:
        raise NotImplementedError

    def _open_connection(self, driver: Any, config: ConnectionConfig) -> Any:
        raise NotImplementedError

    def _autocommit_enabled(self, connection: Any) -> bool:
        return bool(getattr(connection, "autocommit", False))

    # ------------------------------------------------------------------ #
    # Connection management
    # ------------------------------------------------------------------ #
    def connect(self, config: ConnectionConfig) -> Any:
        driver = self._load_driver()
        self.logger.info(
            "Connecting to %s %s (autocommit=%s)",
            self.label,
            config.descriptive_label(),
            config.autocommit,
        )
        try:
            connection = self._open_connection(driver, config)
        except AdapterError:
            raise
        except Exception as exc:
            raise AdapterConnectionError(f"Failed to connect to {self.label}.") from exc
        if config.isolation_level:
            setattr(connection, "isolation_level", config.isolation_level)
        self._state = DriverConnectionState(connection, config, driver)
        return connection

    def close(self) -> None:
        if self._state:
            try:
                self._state.connection.close()
            finally:
                self._state = None

    def _ensure_connection(self) -> Any:
        if not self._state:
            raise AdapterConnectionError(f"{type(self).__name__} is not connected.")
        conn = self._state.connection
        if getattr(conn, "closed", False):
            self.logger.warning("%s connection closed; reconnecting.", self.label)
            conn = self.connect(self._state.config)
        return conn

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #
    def execute(self, sql: str, params: Sequence[Any] | None = None) -> Any:
        connection = self._ensure_connection()
        cursor = connection.cursor()
        params = tuple(params or ())
        self._validate_params(sql, params)
        with time_call(
            f"{self.dialect.name}.execute",
            self.logger,
            sql=sql,
            params=redact_params(params),
            threshold_ms=self.slow_query_ms,
        ):
            self._call(cursor.execute, sql, params, action="execute")
        return cursor

    def executemany(
        self,
        sql: str,
        seq_of_params: Sequence[Sequence[Any]] | Iterable[Sequence[Any]],
    ) -> Any:
        connection = self._ensure_connection()
        cursor = connection.cursor()
        seq = [tuple(params) for params in seq_of_params]
        for params in seq:
            self._validate_params(sql, params)
        with time_call(
            f"{self.dialect.name}.executemany",
            self.logger,
            sql=sql,
            params=["bulk"],
            threshold_ms=self.slow_query_ms,
        ):
            self._call(cursor.executemany, sql, seq, action="executemany")
        return cursor

    def _call(self, fn, *args: Any, action: str) -> Any:
        driver = self._state.driver if self._state else None
        try:
            return fn(*args)
        except AdapterError:
            raise
        except Exception as exc:
            if driver is None:
                raise
            raise translate_driver_error(driver, exc, action=action) from exc

    # ------------------------------------------------------------------ #
    # Transactions
    # ------------------------------------------------------------------ #
    def begin(self) -> None:
        connection = self._ensure_connection()
        if self._autocommit_enabled(connection):
            return
        self._call(connection.cursor().execute, self.begin_statement, action="begin")

    def commit(self) -> None:
        connection = self._ensure_connection()
        self._call(connection.commit, action="commit")

    def rollback(self) -> None:
        connection = self._ensure_connection()
        self._call(connection.rollback, action="rollback")

    def last_insert_id(self, cursor: Any, table: str, pk_column: str) -> Any:
        return cursor.lastrowid

    # ------------------------------------------------------------------ #
    def _validate_params(self, sql: str, params: Sequence[Any]) -> None:
        placeholder_count = count_pyformat_placeholders(sql)
        if placeholder_count == 0:
            if params:
                raise AdapterExecutionError(
                    "Parameters provided but SQL statement has no placeholders."
                )
            return
        if placeholder_count != len(params):
            raise AdapterExecutionError(
                f"Parameter count mismatch: expected {placeholder_count}, received {len(params)}."
            )
