"""
MySQL dialect.
"""

from __future__ import annotations

from .base import Dialect, DialectCapabilities, LockMode


class MySQLDialect(Dialect):
    name = "mysql"
    param_style = "pyformat"
    placeholder = "%s"
    quote_char = "`"
    capabilities = DialectCapabilities(supports_row_locks=True, supports_schema_namespaces=True)
    lock_clauses = {
        LockMode.PESSIMISTIC_READ: "LOCK IN SHARE MODE",
        LockMode.PESSIMISTIC_WRITE: "FOR UPDATE",
    }
    # no "no limit" keyword; the documented idiom is the largest BIGINT
    unbounded_limit = "18446744073709551615"
    auto_primary_key_type = "BIGINT AUTO_INCREMENT PRIMARY KEY"
    mutation_subquery_needs_derived_table = True
