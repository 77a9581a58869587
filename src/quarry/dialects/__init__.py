"""
SQL dialects for the supported backends.
"""

from .base import Dialect, DialectCapabilities, LockMode
from .mysql import MySQLDialect
from .postgres import PostgresDialect
from .sqlite import SQLiteDialect

__all__ = [
    "Dialect",
    "DialectCapabilities",
    "LockMode",
    "SQLiteDialect",
    "PostgresDialect",
    "MySQLDialect",
]
