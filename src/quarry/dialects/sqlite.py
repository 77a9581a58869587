"""
SQLite dialect.
"""

from __future__ import annotations

from .base import Dialect, DialectCapabilities


class SQLiteDialect(Dialect):
    """
    qmark placeholders. SQLite serializes writers at the database level, so
    row-lock hints render to nothing.
    """

    name = "sqlite"
    capabilities = DialectCapabilities()
    unbounded_limit = "-1"
    auto_primary_key_type = "INTEGER PRIMARY KEY AUTOINCREMENT"
