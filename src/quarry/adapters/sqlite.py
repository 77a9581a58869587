"""
SQLite database adapter implementation.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from ..dialects.sqlite import SQLiteDialect
from ..security.redaction import redact_params
from ..utils import get_logger, time_call
from ..utils.performance import resolve_slow_query_ms
from .base import (
    AdapterConnectionError,
    AdapterError,
    AdapterExecutionError,
    ConnectionConfig,
    ConstraintViolationError,
    StoreUnavailableError,
)

# OperationalError messages that mean "try again later" rather than "bad SQL".
_TRANSIENT_MARKERS = ("database is locked", "database table is locked", "busy", "unable to open")


@dataclass(slots=True)
class SQLiteConnectionState:
    connection: sqlite3.Connection


def classify_sqlite_error(exc: sqlite3.Error, *, action: str) -> AdapterError:
    message = f"{action} failed: {exc}"
    if isinstance(exc, sqlite3.IntegrityError):
        return ConstraintViolationError(message)
    if isinstance(exc, sqlite3.OperationalError):
        lowered = str(exc).lower()
        if any(marker in lowered for marker in _TRANSIENT_MARKERS):
            return StoreUnavailableError(message)
    return AdapterExecutionError(message)


class SQLiteAdapter:
    """
    Adapter wrapping the Python stdlib sqlite3 module.
    """

    def __init__(self, slow_query_ms: int | None = None) -> None:
        self.dialect = SQLiteDialect()
        self._state: SQLiteConnectionState | None = None
        self.logger = get_logger("adapters.sqlite")
        self.slow_query_ms = resolve_slow_query_ms(default=100, override=slow_query_ms)

    # ------------------------------------------------------------------ #
    # Connection management
    # ------------------------------------------------------------------ #
    def connect(self, config: ConnectionConfig) -> sqlite3.Connection:
        path = self._normalize_path(config.url)
        timeout = config.timeout if config.timeout is not None else 5.0

        try:
            connection = sqlite3.connect(
                path,
                isolation_level=None if config.autocommit else "",
                timeout=timeout,
                detect_types=sqlite3.PARSE_DECLTYPES,
                check_same_thread=False,
            )
        except sqlite3.Error as exc:
            raise AdapterConnectionError(f"Failed to open SQLite database '{path}'.") from exc
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON")

        if config.isolation_level:
            connection.isolation_level = config.isolation_level

        self._state = SQLiteConnectionState(connection)
        return connection

    def close(self) -> None:
        if self._state:
            self._state.connection.close()
            self._state = None

    def _ensure_connection(self) -> sqlite3.Connection:
        if not self._state:
            raise AdapterConnectionError("SQLiteAdapter is not connected.", retryable=False)
        return self._state.connection

    # ------------------------------------------------------------------ #
    # Execution helpers
    # ------------------------------------------------------------------ #
    def execute(self, sql: str, params: Sequence[Any] | None = None) -> sqlite3.Cursor:
        connection = self._ensure_connection()
        cursor = connection.cursor()
        params = tuple(params or ())
        with time_call(
            "sqlite.execute",
            self.logger,
            sql=sql,
            params=redact_params(params),
            threshold_ms=self.slow_query_ms,
        ):
            try:
                cursor.execute(sql, params)
            except sqlite3.Error as exc:
                raise classify_sqlite_error(exc, action="execute") from exc
        return cursor

    def executemany(
        self, sql: str, seq_of_params: Sequence[Sequence[Any]] | Iterable[Sequence[Any]]
    ) -> sqlite3.Cursor:
        connection = self._ensure_connection()
        cursor = connection.cursor()
        with time_call("sqlite.executemany", self.logger, sql=sql, threshold_ms=self.slow_query_ms):
            try:
                cursor.executemany(sql, seq_of_params)
            except sqlite3.Error as exc:
                raise classify_sqlite_error(exc, action="executemany") from exc
        return cursor

    # ------------------------------------------------------------------ #
    # Transactions
    # ------------------------------------------------------------------ #
    def begin(self) -> None:
        connection = self._ensure_connection()
        # sqlite3 opens an implicit transaction before DML; join it instead of nesting.
        if connection.in_transaction:
            return
        try:
            connection.execute("BEGIN")
        except sqlite3.Error as exc:
            raise classify_sqlite_error(exc, action="begin") from exc

    def commit(self) -> None:
        connection = self._ensure_connection()
        try:
            connection.commit()
        except sqlite3.Error as exc:
            raise classify_sqlite_error(exc, action="commit") from exc

    def rollback(self) -> None:
        connection = self._ensure_connection()
        connection.rollback()

    # ------------------------------------------------------------------ #
    def last_insert_id(self, cursor: sqlite3.Cursor, table: str, pk_column: str) -> Any:
        return cursor.lastrowid

    @staticmethod
    def _normalize_path(url: str) -> str:
        if url == "sqlite:///:memory:":
            return ":memory:"
        prefix = "sqlite:///"
        if url.startswith(prefix):
            return url[len(prefix) :]
        return url
