"""
Adapter protocol definitions, connection configuration, and store errors.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Callable, Protocol, Sequence

from ..dialects.base import Dialect
from ..errors import QuarryError
from ..security.dsns import DSNConfig, parse_dsn


class AdapterError(QuarryError, RuntimeError):
    """
    Base error for store failures.

    ``retryable`` reflects the driver's classification: a retryable error may
    succeed if the whole unit of work is attempted again. Quarry never retries
    on its own.
    """

    retryable: bool = False

    def __init__(self, message: str, *, retryable: bool | None = None) -> None:
        super().__init__(message)
        if retryable is not None:
            self.retryable = retryable


class AdapterConfigurationError(AdapterError):
    """Raised when configuration or required dependencies are invalid."""


class AdapterConnectionError(AdapterError):
    """Raised when establishing or using a connection fails."""

    retryable = True


class StoreUnavailableError(AdapterConnectionError):
    """The store timed out, was busy, or dropped the connection."""


class AdapterExecutionError(AdapterError):
    """Raised when SQL execution or parameter validation fails."""


class ConstraintViolationError(AdapterExecutionError):
    """An integrity constraint rejected the statement."""


class AdapterTransactionError(AdapterError):
    """Raised when transaction operations fail."""


@dataclass
class SSLConfig:
    mode: str | None = None
    rootcert: str | None = None
    cert: str | None = None
    key: str | None = None
    ca: str | None = None
    check_hostname: bool | None = None

    def is_empty(self) -> bool:
        return all(
            value is None
            for value in (self.mode, self.rootcert, self.cert, self.key, self.ca, self.check_hostname)
        )

    def postgres_options(self) -> dict[str, Any]:
        pairs = {
            "sslmode": self.mode,
            "sslrootcert": self.rootcert,
            "sslcert": self.cert,
            "sslkey": self.key,
        }
        return {key: value for key, value in pairs.items() if value}

    def mysql_options(self) -> dict[str, Any]:
        ssl = {key: value for key, value in (("ca", self.ca), ("cert", self.cert), ("key", self.key)) if value}
        if self.check_hostname is not None:
            ssl["check_hostname"] = self.check_hostname
        return {"ssl": ssl} if ssl else {}


_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _parse_bool(value: str, *, key: str) -> bool:
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise AdapterConfigurationError(f"Invalid boolean value for '{key}': {value!r}")


def _parse_number(value: str, *, key: str, cast: Callable[[str], Any]) -> Any:
    try:
        return cast(value)
    except ValueError as exc:
        raise AdapterConfigurationError(f"Invalid {cast.__name__} value for '{key}': {value!r}") from exc


# DSN query keys copied onto SSLConfig attributes.
_SSL_KEYS = {
    "sslmode": "mode",
    "sslrootcert": "rootcert",
    "sslcert": "cert",
    "sslkey": "key",
    "ssl_ca": "ca",
    "ssl_cert": "cert",
    "ssl_key": "key",
}


def _pop_ssl(query: dict[str, str]) -> SSLConfig | None:
    ssl = SSLConfig()
    for key, attribute in _SSL_KEYS.items():
        if key in query:
            setattr(ssl, attribute, query.pop(key))
    if "ssl_check_hostname" in query:
        ssl.check_hostname = _parse_bool(query.pop("ssl_check_hostname"), key="ssl_check_hostname")
    return None if ssl.is_empty() else ssl


@dataclass
class ConnectionConfig:
    """
    Normalized connection configuration for adapters.

    ``timeout`` is handed to the driver (busy timeout for SQLite, connect
    timeout for server backends); expiring it surfaces as
    :class:`StoreUnavailableError`.
    """

    url: str
    autocommit: bool = False
    isolation_level: str | None = None
    timeout: float | None = None
    options: dict[str, Any] | None = None
    ssl: SSLConfig | None = None
    dsn: DSNConfig | None = None
    source: str | None = None

    @classmethod
    def from_dsn(cls, dsn: str, **kwargs: Any) -> "ConnectionConfig":
        """
        Build a connection config by parsing the DSN string. Keyword
        arguments take precedence over values found in the DSN query.
        """

        parsed = parse_dsn(dsn)
        query = dict(parsed.query)

        autocommit = query.pop("autocommit", None)
        timeout = query.pop("timeout", None)
        settings: dict[str, Any] = {
            "autocommit": _parse_bool(autocommit, key="autocommit") if autocommit is not None else False,
            "timeout": _parse_number(timeout, key="timeout", cast=float) if timeout is not None else None,
            "isolation_level": query.pop("isolation_level", None),
            "ssl": _pop_ssl(query),
        }
        options: dict[str, Any] = {
            key: _parse_number(value, key=key, cast=int) if key == "connect_timeout" else value
            for key, value in query.items()
        }
        options.update(kwargs.pop("options", None) or {})
        settings.update(kwargs)

        return cls(url=dsn, dsn=parsed, options=options or None, **settings)

    @classmethod
    def from_env(cls, env_var: str, **kwargs: Any) -> "ConnectionConfig":
        """
        Build a config from an environment variable containing a DSN.
        """

        value = os.getenv(env_var)
        if not value:
            raise AdapterConfigurationError(f"Environment variable {env_var} is not set")
        return cls.from_dsn(value, source=env_var, **kwargs)

    def redacted_dsn(self) -> str:
        if self.dsn:
            return self.dsn.redacted()
        return self.url

    def descriptive_label(self) -> str:
        redacted = self.redacted_dsn()
        if self.source:
            return f"{self.source} ({redacted})"
        return redacted


class DatabaseAdapter(Protocol):
    """
    Store boundary used by the session, query executor and bulk executor.
    """

    dialect: Dialect

    def connect(self, config: ConnectionConfig) -> Any:
        """
        Establish a connection handle using the supplied configuration.
        """

    def close(self) -> None:
        """
        Close underlying resources. Implementations should be idempotent.
        """

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> Any:
        """
        Execute a single SQL statement returning a cursor-like object that
        exposes ``fetchone``, ``fetchall``, ``rowcount`` and ``description``.
        """

    def executemany(self, sql: str, seq_of_params: Sequence[Sequence[Any]]) -> Any:
        """
        Execute a prepared statement against multiple parameter sets.
        """

    def begin(self) -> None:
        """
        Start a transaction.
        """

    def commit(self) -> None:
        """
        Commit the current transaction.
        """

    def rollback(self) -> None:
        """
        Roll back the current transaction.
        """

    def last_insert_id(self, cursor: Any, table: str, pk_column: str) -> Any:
        """
        Retrieve the primary key value generated by the previous insert.
        """
