"""
PostgreSQL dialect.
"""

from __future__ import annotations

from .base import Dialect, DialectCapabilities, LockMode


class PostgresDialect(Dialect):
    """
    Generated keys come back through ``RETURNING``.
    """

    name = "postgresql"
    param_style = "pyformat"
    placeholder = "%s"
    capabilities = DialectCapabilities(
        supports_returning=True,
        supports_row_locks=True,
        supports_schema_namespaces=True,
    )
    lock_clauses = {
        LockMode.PESSIMISTIC_READ: "FOR SHARE",
        LockMode.PESSIMISTIC_WRITE: "FOR UPDATE",
    }
    auto_primary_key_type = "BIGSERIAL PRIMARY KEY"
