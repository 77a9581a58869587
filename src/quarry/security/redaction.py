"""Redaction helpers for DSNs and logged statement parameters."""

from __future__ import annotations

from typing import Any, Iterable

REDACTED_VALUE = "***"

_SENSITIVE_TOKENS = (
    "password",
    "passwd",
    "pwd",
    "secret",
    "token",
    "apikey",
    "accesskey",
    "privatekey",
    "bearer",
    "authorization",
)

# Connection options naming key material rather than carrying secrets in their value.
_SENSITIVE_KEYS = ("sslkey", "sslcert", "sslrootcert", "sslca")


def _compact(value: str) -> str:
    return "".join(ch for ch in value.lower() if ch.isalnum())


def is_sensitive_key(key: str) -> bool:
    compact = _compact(key)
    return any(token in compact for token in _SENSITIVE_TOKENS + _SENSITIVE_KEYS)


def is_sensitive_value(value: str) -> bool:
    compact = _compact(value)
    return any(token in compact for token in _SENSITIVE_TOKENS)


def redact_query_params(query: dict[str, str]) -> dict[str, str]:
    return {key: REDACTED_VALUE if is_sensitive_key(key) else val for key, val in query.items()}


def redact_value(value: Any, *, key: str | None = None) -> Any:
    if key is not None and is_sensitive_key(key):
        return REDACTED_VALUE
    if isinstance(value, dict):
        return {k: redact_value(v, key=str(k)) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(redact_value(item) for item in value)
    if isinstance(value, bytes):
        value_text = value.decode("utf-8", errors="ignore")
        return REDACTED_VALUE if value_text and is_sensitive_value(value_text) else value
    if isinstance(value, str) and is_sensitive_value(value):
        return REDACTED_VALUE
    return value


def redact_params(params: Iterable[Any]) -> list[Any]:
    return [redact_value(value) for value in params]
