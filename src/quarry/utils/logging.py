"""Structured logging helpers for Quarry."""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar
from typing import Any, Iterable, Optional

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

ROOT_LOGGER = "quarry"


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        return True


def configure_logging(level: int = logging.INFO) -> None:
    logger = logging.getLogger(ROOT_LOGGER)
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(correlation_id)s | %(name)s | %(message)s"
    )
    handler.setFormatter(formatter)
    handler.addFilter(CorrelationIdFilter())
    logger.addHandler(handler)
    logger.setLevel(level)


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def set_correlation_id(value: Optional[str] = None) -> str:
    token = value or str(uuid.uuid4())
    _correlation_id.set(token)
    return token


def get_correlation_id() -> str:
    cid = _correlation_id.get()
    if cid is None:
        cid = set_correlation_id()
    return cid


class _Timer:
    """
    Context manager logging the wall time of the wrapped block.

    ``elapsed_ms`` is available after exit so callers can feed statistics.
    """

    def __init__(
        self,
        name: str,
        logger: logging.Logger,
        *,
        sql: str | None,
        params: Iterable[Any] | None,
        threshold_ms: int,
    ) -> None:
        self.name = name
        self.logger = logger
        self.sql = sql
        self.params = params
        self.threshold_ms = threshold_ms
        self.elapsed_ms = 0.0
        self._start = 0.0

    def __enter__(self) -> "_Timer":
        self._start = time.monotonic()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.elapsed_ms = (time.monotonic() - self._start) * 1000
        level = logging.WARNING if self.elapsed_ms >= self.threshold_ms else logging.DEBUG
        extra = {"sql": self.sql, "params": self.params, "elapsed_ms": self.elapsed_ms}
        self.logger.log(level, "%s took %.2fms", self.name, self.elapsed_ms, extra=extra)


def time_call(
    name: str,
    logger: logging.Logger,
    *,
    sql: str | None = None,
    params: Iterable[Any] | None = None,
    threshold_ms: int = 100,
) -> _Timer:
    return _Timer(name, logger, sql=sql, params=params, threshold_ms=threshold_ms)
