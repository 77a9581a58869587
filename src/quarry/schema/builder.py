"""
Schema builder converting model metadata into DDL statements.

Meant for bootstrapping databases and tests, not for migrations.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Iterable, List, Sequence

from ..core.fields import AutoField, Field
from ..core.model import Model, ModelConfigurationError
from ..core.relations import ForeignKey
from ..dialects.base import Dialect
from ..utils import get_logger

if TYPE_CHECKING:
    from ..persistence.session import Session


class SchemaBuilder:
    """
    Produces dialect-specific SQL for schema manipulation.
    """

    def __init__(self, dialect: Dialect) -> None:
        self.dialect = dialect
        self.logger = get_logger("schema.builder")

    def create_table_sql(self, model: type[Model]) -> str:
        meta = model._meta
        if meta.abstract:
            raise ModelConfigurationError(f"Abstract model '{model.__name__}' has no table.")
        pieces = self._render_columns(model)
        pieces.extend(self._render_foreign_keys(model))
        table_name = self.dialect.format_table(meta.table)
        return f"CREATE TABLE IF NOT EXISTS {table_name} ({', '.join(pieces)})"

    def drop_table_sql(self, model: type[Model]) -> str:
        table_name = self.dialect.format_table(model._meta.table)
        self.logger.warning("DROP TABLE generated for %s", table_name)
        return f"DROP TABLE IF EXISTS {table_name}"

    def create_all(self, session: "Session", models: Iterable[type[Model]]) -> List[str]:
        """
        Create tables for ``models``, referenced tables first. Returns the
        executed statements.
        """
        statements = [self.create_table_sql(model) for model in dependency_order(models)]
        for statement in statements:
            session.execute(statement)
        return statements

    def drop_all(self, session: "Session", models: Iterable[type[Model]]) -> List[str]:
        statements = [self.drop_table_sql(model) for model in reversed(dependency_order(models))]
        for statement in statements:
            session.execute(statement)
        return statements

    # ------------------------------------------------------------------ #
    def _render_columns(self, model: type[Model]) -> List[str]:
        pieces: List[str] = []
        for field in model._meta.get_fields():
            column_name = field.column_name()
            if isinstance(field, AutoField):
                pieces.append(self.dialect.render_auto_primary_key(column_name))
                continue
            column_type = field.db_type
            if not column_type:
                raise ModelConfigurationError(
                    f"Field '{field.name}' of {model.__name__} has no db_type for schema generation."
                )
            column_def = self.dialect.render_column_definition(
                column_name,
                column_type,
                nullable=field.nullable and not field.primary_key,
            )
            extras: List[str] = []
            if field.primary_key:
                extras.append("PRIMARY KEY")
            if field.unique and not field.primary_key:
                extras.append("UNIQUE")
            default_sql = self._default_clause(field)
            if default_sql:
                extras.append(default_sql)
            if extras:
                column_def = f"{column_def} {' '.join(extras)}"
            pieces.append(column_def)
        return pieces

    def _render_foreign_keys(self, model: type[Model]) -> List[str]:
        constraints = []
        for fk in model._meta.foreign_keys:
            remote = fk.require_remote()
            remote_pk = remote._meta.require_primary_key()
            constraints.append(
                f"FOREIGN KEY ({self.dialect.quote_identifier(fk.column_name())}) "
                f"REFERENCES {self.dialect.format_table(remote._meta.table)} "
                f"({self.dialect.quote_identifier(remote_pk.column_name())}) "
                f"ON DELETE {fk.on_delete}"
            )
        return constraints

    def _default_clause(self, field: Field) -> str | None:
        if field.db_default is not None:
            return f"DEFAULT {field.db_default}"
        if field.default is None or callable(field.default):
            return None
        value = field.default
        if isinstance(value, bool):
            return f"DEFAULT {1 if value else 0}"
        if isinstance(value, str):
            escaped = value.replace("'", "''")
            return f"DEFAULT '{escaped}'"
        return f"DEFAULT {value}"


def dependency_order(models: Iterable[type[Model]]) -> List[type[Model]]:
    """
    Sort ``models`` so every table comes after the tables it references.
    Self references and references outside ``models`` are ignored.
    """
    pending: Dict[type[Model], None] = dict.fromkeys(models)
    ordered: List[type[Model]] = []
    placed: set = set()
    while pending:
        progress = False
        for model in list(pending):
            targets: Sequence[type[Model]] = [
                fk.require_remote() for fk in model._meta.foreign_keys if isinstance(fk, ForeignKey)
            ]
            if all(target is model or target in placed or target not in pending for target in targets):
                ordered.append(model)
                placed.add(model)
                del pending[model]
                progress = True
        if not progress:
            names = ", ".join(model.__name__ for model in pending)
            raise ModelConfigurationError(f"Circular foreign keys between: {names}")
    return ordered
