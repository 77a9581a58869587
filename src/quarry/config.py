"""
Process-wide settings for Quarry.

Connection parameters live on :class:`~quarry.adapters.base.ConnectionConfig`;
this module only holds behaviour toggles for the persistence layer.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping

from .errors import QuarryError


class ConfigurationError(QuarryError):
    """Raised when a setting cannot be parsed."""


_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}

ENV_PREFIX = "QUARRY_"


def _parse_bool(raw: str, *, key: str) -> bool:
    normalized = raw.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"Invalid boolean value for '{key}': {raw!r}")


def _parse_int(raw: str, *, key: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid integer value for '{key}': {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    """
    Behaviour toggles.

    ``slow_query_ms``
        statements slower than this are logged at WARNING.
    ``n_plus_one_threshold``
        repeated executions of one statement shape before an N+1 warning.
    ``strict_audit_fields``
        reject (instead of ignore) writes to audit timestamps.
    ``clear_after_bulk``
        default for clearing the persistence context after bulk mutations.
    """

    slow_query_ms: int = 200
    n_plus_one_threshold: int = 5
    strict_audit_fields: bool = False
    clear_after_bulk: bool = False

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        environ = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for item in fields(cls):
            key = f"{ENV_PREFIX}{item.name.upper()}"
            raw = environ.get(key)
            if raw is None or raw == "":
                continue
            if item.type in ("bool", bool):
                values[item.name] = _parse_bool(raw, key=key)
            else:
                values[item.name] = _parse_int(raw, key=key)
        return cls(**values)


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def configure(**overrides: Any) -> Settings:
    """
    Replace selected settings for the current process and return the result.
    """

    global _settings
    _settings = replace(get_settings(), **overrides)
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None
