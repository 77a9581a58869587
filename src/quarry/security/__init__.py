"""Security helpers for Quarry: DSN handling and log redaction."""

from .dsns import DSNConfig, dsn_from_env, parse_dsn
from .redaction import REDACTED_VALUE, redact_params, redact_value

__all__ = ["DSNConfig", "REDACTED_VALUE", "dsn_from_env", "parse_dsn", "redact_params", "redact_value"]
