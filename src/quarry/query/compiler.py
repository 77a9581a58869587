"""
SQL compilation utilities translating query specs into SQL strings.

Placeholders are emitted in the order their values occur in the statement,
so the positional parameter list returned alongside the SQL can be handed
to any DB-API driver unchanged. Named parameters are resolved here: the
caller passes a mapping and the compiler looks each name up as it is
reached. An ``in`` lookup bound to an empty sequence compiles to a
predicate that is always false.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple

from ..core.fields import Field
from ..core.relations import ForeignKey
from ..dialects.base import Dialect
from ..errors import FetchPlanError, QueryParameterError, QuerySpecificationError
from .expressions import AND, Combined, Expression, F, Param, Q, Value, iter_paths, split_lookup
from .spec import Join, JoinKind, MutationKind, MutationSpec, ProjectionKind, QuerySpec

if TYPE_CHECKING:
    from ..core.model import Model


COMPARISON_OPERATORS = {
    "exact": "=",
    "ne": "<>",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
}

_LIKE_PATTERNS = {
    "contains": "%{}%",
    "startswith": "{}%",
    "endswith": "%{}",
}


@dataclass
class PathStep:
    name: str
    owner: type["Model"]
    target: type["Model"]
    field: ForeignKey
    collection: bool = False


@dataclass
class ResolvedPath:
    """
    A field path walked against the model graph.

    ``field`` is the terminal scalar field, or ``None`` when the path ends on
    an association (``model`` is then the associated entity type).
    """

    path: str
    steps: List[PathStep]
    field: Optional[Field]
    model: type["Model"]

    @property
    def relation_path(self) -> str:
        return "__".join(step.name for step in self.steps)

    @property
    def is_collection(self) -> bool:
        return any(step.collection for step in self.steps)


def resolve_path(model: type["Model"], path: str) -> ResolvedPath:
    segments = path.split("__") if path else []
    current = model
    steps: List[PathStep] = []
    for index, segment in enumerate(segments):
        last = index == len(segments) - 1
        meta = current._meta
        if meta.has_field(segment):
            field_obj = meta.get_field(segment)
            if isinstance(field_obj, ForeignKey):
                target = field_obj.require_remote()
                steps.append(PathStep(segment, current, target, field_obj))
                current = target
                continue
            if not last:
                raise QuerySpecificationError(
                    f"'{segment}' on {current.__name__} is not an association; cannot traverse '{path}'."
                )
            return ResolvedPath(path, steps, field_obj, current)
        if segment in meta.collections:
            child, fk = meta.collections[segment]
            steps.append(PathStep(segment, current, child, fk, collection=True))
            current = child
            continue
        raise QuerySpecificationError(
            f"Unknown field '{segment}' on {current.__name__} in path '{path}'."
        )
    return ResolvedPath(path, steps, None, current)


@dataclass
class CompiledQuery:
    sql: str
    params: List[Any]
    # result column aliases, in select-list order
    columns: List[str] = field(default_factory=list)


class _Scope:
    """
    Table aliases and joins needed by one statement.
    """

    def __init__(self, compiler: "SQLCompiler", model: type["Model"], *, qualified: bool = True) -> None:
        self.compiler = compiler
        self.model = model
        self.qualified = qualified
        self.aliases: Dict[str, str] = {"": "t0"}
        self.join_kinds: Dict[str, JoinKind] = {}
        # kind of joins that no declared join or predicate asked for
        self.implicit_kind = JoinKind.INNER
        self.join_sql: List[str] = []

    def declare(self, join: Join) -> None:
        self.join_kinds.setdefault(join.path, join.kind)
        resolved = resolve_path(self.model, join.path)
        if resolved.field is not None:
            raise QuerySpecificationError(f"Cannot join '{join.path}': it is not an association.")
        self.alias_for(resolved.steps)

    def alias_for(self, steps: List[PathStep]) -> str:
        prefix = ""
        for step in steps:
            key = f"{prefix}__{step.name}" if prefix else step.name
            if key not in self.aliases:
                if not self.qualified:
                    raise QuerySpecificationError("Association paths need a joined statement.")
                self._add_join(key, prefix, step)
            prefix = key
        return self.aliases[prefix]

    def _add_join(self, key: str, parent_key: str, step: PathStep) -> None:
        dialect = self.compiler.dialect
        alias = f"t{len(self.aliases)}"
        parent = self.aliases[parent_key]
        kind = self.join_kinds.get(key, self.implicit_kind)
        table = dialect.format_table(step.target._meta.table)
        if step.collection:
            on = f"{self.qualify(alias, step.field.column_name())} = {self.qualify(parent, _pk_column(step.owner))}"
        else:
            on = f"{self.qualify(parent, step.field.column_name())} = {self.qualify(alias, _pk_column(step.target))}"
        self.join_sql.append(f"{kind.value} JOIN {table} {alias} ON {on}")
        self.aliases[key] = alias

    def qualify(self, alias: str, column: str) -> str:
        quoted = self.compiler.dialect.quote_identifier(column)
        return f"{alias}.{quoted}" if self.qualified else quoted

    def column(self, path: str) -> Tuple[str, Optional[Field]]:
        """
        SQL column reference for ``path`` and the field describing its values.
        """
        resolved = resolve_path(self.model, path)
        steps = resolved.steps
        if resolved.field is not None:
            last = steps[-1] if steps else None
            if last is not None and not last.collection and resolved.field.primary_key:
                # team__id is the foreign key column itself
                owner = self.alias_for(steps[:-1])
                return self.qualify(owner, last.field.column_name()), last.field
            alias = self.alias_for(steps)
            return self.qualify(alias, resolved.field.column_name()), resolved.field
        if not steps:
            return self.qualify("t0", _pk_column(self.model)), self.model._meta.require_primary_key()
        last = steps[-1]
        if last.collection:
            raise QuerySpecificationError(f"'{path}' is a collection and has no column value.")
        owner = self.alias_for(steps[:-1])
        return self.qualify(owner, last.field.column_name()), last.field

    @property
    def from_clause(self) -> str:
        table = self.compiler.dialect.format_table(self.model._meta.table)
        parts = [f"{table} t0" if self.qualified else table]
        parts.extend(self.join_sql)
        return " ".join(parts)


def _pk_column(model: type["Model"]) -> str:
    pk = model._meta.primary_key
    if pk is None:
        raise QuerySpecificationError(f"Model '{model.__name__}' lacks a primary key.")
    return pk.column_name()


def _needs_join(model: type["Model"], path: str) -> bool:
    resolved = resolve_path(model, path)
    steps = resolved.steps
    if not steps:
        return False
    if len(steps) == 1 and not steps[0].collection:
        return resolved.field is not None and not resolved.field.primary_key
    return True


class SQLCompiler:
    """
    Compile query and mutation specs into SQL statements and parameters.
    """

    def __init__(self, dialect: Dialect) -> None:
        self.dialect = dialect

    # ------------------------------------------------------------------ #
    # SELECT
    # ------------------------------------------------------------------ #
    def compile(self, spec: QuerySpec, bindings: Mapping[str, Any] | None = None) -> CompiledQuery:
        bindings = bindings or {}
        scope = _Scope(self, spec.model)
        for join in spec.joins:
            if join.fetch and resolve_path(spec.model, join.path).is_collection:
                raise FetchPlanError(
                    f"'{join.path}' is a collection; fetch it with a batch directive, not a join."
                )
            scope.declare(join)

        params: List[Any] = []
        select_sql, columns = self._select_list(spec, scope, params)

        where_sql = ""
        if spec.where is not None and not spec.where.is_empty():
            where_sql, where_params = self._compile_q(spec.where, scope, bindings)
            params.extend(where_params)

        # sorting must not drop rows whose association is null
        scope.implicit_kind = JoinKind.LEFT
        order_sql = ", ".join(
            f"{scope.column(order.path)[0]}{' DESC' if order.descending else ''}"
            for order in spec.ordering
        )

        # the FROM clause is rendered last: compiling the rest may add joins
        sql_parts = [select_sql, "FROM", scope.from_clause]
        if where_sql:
            sql_parts.extend(["WHERE", where_sql])
        if order_sql:
            sql_parts.extend(["ORDER BY", order_sql])

        limit, offset = spec.limit, spec.offset
        if spec.projection.kind is ProjectionKind.EXISTS:
            limit, offset = 1, None
        limit_clause = self.dialect.limit_clause(limit, offset)
        if limit_clause:
            sql_parts.append(limit_clause)
        lock_clause = self.dialect.lock_clause(spec.lock)
        if lock_clause:
            sql_parts.append(lock_clause)
        return CompiledQuery(" ".join(sql_parts), params, columns)

    def _select_list(self, spec: QuerySpec, scope: _Scope, params: List[Any]) -> Tuple[str, List[str]]:
        projection = spec.projection
        keyword = "SELECT DISTINCT" if spec.distinct else "SELECT"
        columns: List[str] = []
        parts: List[str] = []

        if projection.kind is ProjectionKind.COUNT:
            distinct = "DISTINCT " if projection.distinct else ""
            if projection.paths:
                column, _ = scope.column(projection.paths[0])
                expr = f"COUNT({distinct}{column})"
            elif projection.distinct:
                expr = f"COUNT(DISTINCT {scope.qualify('t0', _pk_column(spec.model))})"
            else:
                expr = "COUNT(*)"
            return f"SELECT {expr}", ["count"]

        if projection.kind is ProjectionKind.EXISTS:
            return "SELECT 1", ["exists"]

        if projection.kind in (ProjectionKind.SCALAR, ProjectionKind.CONSTRUCTOR):
            for path in projection.paths:
                column, _ = scope.column(path)
                parts.append(column)
                columns.append(path)
            return f"{keyword} {', '.join(parts)}", columns

        prefix = projection.entity_path
        targets = [prefix] + [
            join.path for join in spec.fetch_joins if join.path != prefix
        ]
        for path in targets:
            resolved = resolve_path(spec.model, path)
            if resolved.field is not None:
                raise QuerySpecificationError(f"'{path}' is not an entity path.")
            alias = scope.alias_for(resolved.steps)
            for field_obj in resolved.model._meta.get_fields():
                name = field_obj.require_name()
                label = f"{path}__{name}" if path else name
                parts.append(
                    f"{scope.qualify(alias, field_obj.column_name())} AS {self.dialect.quote_identifier(label)}"
                )
                columns.append(label)
        return f"{keyword} {', '.join(parts)}", columns

    # ------------------------------------------------------------------ #
    # UPDATE / DELETE
    # ------------------------------------------------------------------ #
    def compile_mutation(
        self, spec: MutationSpec, bindings: Mapping[str, Any] | None = None
    ) -> CompiledQuery:
        bindings = bindings or {}
        model = spec.model
        table = self.dialect.format_table(model._meta.table)
        bare = _Scope(self, model, qualified=False)
        params: List[Any] = []

        if spec.kind is MutationKind.UPDATE:
            assignments = []
            for path, value in spec.assignments:
                if _needs_join(model, path):
                    raise QuerySpecificationError(f"Cannot assign to association path '{path}'.")
                column, field_obj = bare.column(path)
                if field_obj is not None and (field_obj.primary_key or not field_obj.updatable):
                    raise QuerySpecificationError(
                        f"Field '{field_obj.name}' of {model.__name__} is not updatable."
                    )
                value_sql, value_params = self._operand(value, field_obj, bare, bindings)
                assignments.append(f"{column} = {value_sql}")
                params.extend(value_params)
            head = f"UPDATE {table} SET {', '.join(assignments)}"
        else:
            head = f"DELETE FROM {table}"

        where = spec.where
        if where is None or where.is_empty():
            return CompiledQuery(head, params)

        if any(_needs_join(model, path) for path in iter_paths(where)):
            scope = _Scope(self, model)
            where_sql, where_params = self._compile_q(where, scope, bindings)
            pk = self.dialect.quote_identifier(_pk_column(model))
            inner = f"SELECT {scope.qualify('t0', _pk_column(model))} FROM {scope.from_clause} WHERE {where_sql}"
            if self.dialect.mutation_subquery_needs_derived_table:
                inner = f"SELECT {pk} FROM ({inner}) {self.dialect.quote_identifier('matched')}"
            params.extend(where_params)
            return CompiledQuery(f"{head} WHERE {pk} IN ({inner})", params)

        where_sql, where_params = self._compile_q(where, bare, bindings)
        params.extend(where_params)
        return CompiledQuery(f"{head} WHERE {where_sql}", params)

    # ------------------------------------------------------------------ #
    # Predicates
    # ------------------------------------------------------------------ #
    def _compile_q(self, q: Q, scope: _Scope, bindings: Mapping[str, Any]) -> Tuple[str, List[Any]]:
        if not q.children:
            return "", []

        parts: List[str] = []
        params: List[Any] = []

        for child in q.children:
            if isinstance(child, Q):
                child_sql, child_params = self._compile_q(child, scope, bindings)
                if child_sql:
                    parts.append(f"({child_sql})")
                    params.extend(child_params)
            elif isinstance(child, tuple):
                field_lookup, value = child
                sql, child_params = self._compile_lookup(field_lookup, value, scope, bindings)
                parts.append(sql)
                params.extend(child_params)

        if not parts:
            return "", []

        separator = f" {q.connector or AND} "
        sql = separator.join(parts)
        if q.negated:
            sql = f"NOT ({sql})"
        return sql, params

    def _compile_lookup(
        self, field_lookup: str, value: Any, scope: _Scope, bindings: Mapping[str, Any]
    ) -> Tuple[str, List[Any]]:
        path, lookup = split_lookup(field_lookup)
        column, field_obj = scope.column(path)
        placeholder = self.dialect.parameter_placeholder()

        if isinstance(value, (F, Combined, Value)):
            operator = COMPARISON_OPERATORS.get(lookup)
            if operator is None:
                raise QuerySpecificationError(f"Lookup '{lookup}' cannot compare against an expression.")
            rhs_sql, rhs_params = self._expression(value, field_obj, scope, bindings)
            return f"{column} {operator} {rhs_sql}", rhs_params

        raw = self._bind(value, bindings)

        if lookup == "isnull":
            return (f"{column} IS NULL" if raw else f"{column} IS NOT NULL"), []

        if lookup in ("in", "not_in"):
            if isinstance(raw, (str, bytes)) or not hasattr(raw, "__iter__"):
                raise QueryParameterError(f"Lookup '{field_lookup}' expects a sequence, got {raw!r}.")
            items = [self._db_value(field_obj, self._bind(item, bindings)) for item in raw]
            if not items:
                return ("1 = 0" if lookup == "in" else "1 = 1"), []
            marks = ", ".join(placeholder for _ in items)
            keyword = "IN" if lookup == "in" else "NOT IN"
            return f"{column} {keyword} ({marks})", items

        if lookup == "between":
            try:
                low, high = raw
            except (TypeError, ValueError) as exc:
                raise QueryParameterError(f"Lookup '{field_lookup}' expects a (low, high) pair.") from exc
            return f"{column} BETWEEN {placeholder} AND {placeholder}", [
                self._db_value(field_obj, self._bind(low, bindings)),
                self._db_value(field_obj, self._bind(high, bindings)),
            ]

        if raw is None:
            if lookup == "exact":
                return f"{column} IS NULL", []
            if lookup == "ne":
                return f"{column} IS NOT NULL", []
            raise QueryParameterError(f"Lookup '{field_lookup}' cannot compare against NULL.")

        if lookup in _LIKE_PATTERNS:
            return f"{column} LIKE {placeholder}", [_LIKE_PATTERNS[lookup].format(raw)]
        if lookup == "like":
            return f"{column} LIKE {placeholder}", [raw]
        if lookup == "not_like":
            return f"{column} NOT LIKE {placeholder}", [raw]
        if lookup == "iexact":
            return f"LOWER({column}) = LOWER({placeholder})", [raw]

        operator = COMPARISON_OPERATORS.get(lookup)
        if operator is None:
            raise QuerySpecificationError(f"Unsupported lookup '{lookup}'")
        return f"{column} {operator} {placeholder}", [self._db_value(field_obj, raw)]

    def _operand(
        self, value: Any, field_obj: Optional[Field], scope: _Scope, bindings: Mapping[str, Any]
    ) -> Tuple[str, List[Any]]:
        if isinstance(value, Expression):
            return self._expression(value, field_obj, scope, bindings)
        return self.dialect.parameter_placeholder(), [self._db_value(field_obj, value)]

    def _expression(
        self, expr: Expression, field_obj: Optional[Field], scope: _Scope, bindings: Mapping[str, Any]
    ) -> Tuple[str, List[Any]]:
        if isinstance(expr, F):
            return scope.column(expr.path)[0], []
        if isinstance(expr, Param):
            return self.dialect.parameter_placeholder(), [
                self._db_value(field_obj, self._bind(expr, bindings))
            ]
        if isinstance(expr, Value):
            return self.dialect.parameter_placeholder(), [self._db_value(field_obj, expr.value)]
        if isinstance(expr, Combined):
            lhs_sql, lhs_params = self._expression(expr.lhs, field_obj, scope, bindings)
            rhs_sql, rhs_params = self._expression(expr.rhs, field_obj, scope, bindings)
            return f"({lhs_sql} {expr.operator} {rhs_sql})", lhs_params + rhs_params
        raise QuerySpecificationError(f"Unsupported expression {expr!r}")

    @staticmethod
    def _bind(value: Any, bindings: Mapping[str, Any]) -> Any:
        if isinstance(value, Param):
            try:
                return bindings[value.name]
            except KeyError as exc:
                raise QueryParameterError(f"No value bound for parameter ':{value.name}'.") from exc
        return value

    @staticmethod
    def _db_value(field_obj: Optional[Field], value: Any) -> Any:
        from ..core.model import Model

        if isinstance(value, Model):
            return value.pk
        if field_obj is None or value is None:
            return value
        return field_obj.to_db(value)
