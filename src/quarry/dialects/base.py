"""
SQL dialects: the per-backend differences the compiler, the session and
the schema builder need to know about.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import ClassVar, Dict, Optional


class LockMode(enum.Enum):
    """
    Pessimistic lock hints a query may request from the store.
    """

    NONE = "none"
    PESSIMISTIC_READ = "pessimistic_read"
    PESSIMISTIC_WRITE = "pessimistic_write"


@dataclass(frozen=True)
class DialectCapabilities:
    supports_returning: bool = False
    supports_savepoints: bool = True
    supports_row_locks: bool = False
    supports_schema_namespaces: bool = False


class Dialect:
    """
    Base dialect. Subclasses describe a backend through class attributes and
    override the few renderings that cannot be expressed that way.
    """

    name: ClassVar[str] = "generic"
    param_style: ClassVar[str] = "qmark"
    placeholder: ClassVar[str] = "?"
    quote_char: ClassVar[str] = '"'
    capabilities: ClassVar[DialectCapabilities] = DialectCapabilities()
    lock_clauses: ClassVar[Dict[LockMode, str]] = {}
    # rendered before OFFSET when a query has an offset but no limit
    unbounded_limit: ClassVar[Optional[str]] = None
    auto_primary_key_type: ClassVar[str] = "INTEGER PRIMARY KEY"
    # UPDATE/DELETE may not read its own table in a subquery unless it is
    # materialized as a derived table first
    mutation_subquery_needs_derived_table: ClassVar[bool] = False

    def __repr__(self) -> str:
        return f"<{type(self).__name__}>"

    def quote_identifier(self, identifier: str) -> str:
        q = self.quote_char
        return f"{q}{identifier.replace(q, q * 2)}{q}"

    def format_table(self, table_name: str) -> str:
        if self.capabilities.supports_schema_namespaces and "." in table_name:
            return ".".join(self.quote_identifier(part) for part in table_name.split(".", 1))
        return self.quote_identifier(table_name)

    def limit_clause(self, limit: int | None, offset: int | None) -> str:
        if limit is None and offset is not None and self.unbounded_limit is not None:
            limit_sql: Optional[str] = f"LIMIT {self.unbounded_limit}"
        else:
            limit_sql = f"LIMIT {limit}" if limit is not None else None
        offset_sql = f"OFFSET {offset}" if offset is not None else None
        return " ".join(part for part in (limit_sql, offset_sql) if part)

    def lock_clause(self, mode: LockMode) -> str:
        if not self.capabilities.supports_row_locks:
            return ""
        return self.lock_clauses.get(mode, "")

    def returning_clause(self, column: str) -> str:
        if not self.capabilities.supports_returning:
            return ""
        return f"RETURNING {self.quote_identifier(column)}"

    def parameter_placeholder(self, position: int | None = None) -> str:
        return self.placeholder

    def render_column_definition(self, column: str, column_type: str, *, nullable: bool) -> str:
        definition = f"{self.quote_identifier(column)} {column_type}"
        return definition if nullable else f"{definition} NOT NULL"

    def render_auto_primary_key(self, column: str) -> str:
        return f"{self.quote_identifier(column)} {self.auto_primary_key_type}"
