"""
Query execution and result reconciliation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from ..core.relations import ForeignKey
from ..dialects.base import LockMode
from ..errors import NonUniqueResultError, QueryParameterError, QuerySpecificationError
from ..utils import get_logger
from .compiler import CompiledQuery, SQLCompiler, resolve_path
from .fetch import load_batches
from .spec import ProjectionKind, QuerySpec

if TYPE_CHECKING:
    from ..core.model import Model
    from ..persistence.session import Session


def check_parameters(declared: tuple, params: Mapping[str, Any], description: str) -> None:
    unknown = sorted(set(params) - set(declared))
    if unknown:
        raise QueryParameterError(f"Unknown parameter(s) for {description}: {', '.join(unknown)}.")
    missing = [name for name in declared if name not in params]
    if missing:
        raise QueryParameterError(f"Missing parameter(s) for {description}: {', '.join(missing)}.")


class QueryExecutor:
    """
    Runs a :class:`QuerySpec` through a session.

    Entity rows are reconciled with the session's identity map, so an
    already-managed row yields the managed instance and its in-memory state
    wins over the row. Scalar, constructor and count projections never touch
    the identity map.
    """

    def __init__(self, session: "Session") -> None:
        self.session = session
        self.compiler = SQLCompiler(session.dialect)
        self.logger = get_logger("query.executor")

    # ------------------------------------------------------------------ #
    def fetch_all(self, spec: QuerySpec, params: Optional[Mapping[str, Any]] = None) -> List[Any]:
        params = dict(params or {})
        compiled = self._compile(spec, params)
        rows = self._run(spec, compiled)
        kind = spec.projection.kind
        if kind is ProjectionKind.ENTITY:
            results = self._entities(spec, compiled, rows)
            load_batches(self, spec, results)
            return results
        if kind is ProjectionKind.SCALAR:
            return self._scalars(spec, rows)
        if kind is ProjectionKind.CONSTRUCTOR:
            target = spec.projection.target
            if target is None:
                raise QuerySpecificationError("A constructor projection needs a target class.")
            return [target(*values) for values in self._converted(spec, rows)]
        if kind is ProjectionKind.COUNT:
            return [int(row[0]) for row in rows]
        return [bool(rows)]

    def fetch_one(self, spec: QuerySpec, params: Optional[Mapping[str, Any]] = None) -> Any:
        """
        Single result: ``None`` when nothing matches,
        :class:`NonUniqueResultError` when more than one row does.
        """
        results = self.fetch_all(spec, params)
        if not results:
            return None
        if len(results) > 1:
            raise NonUniqueResultError(len(results), spec.description)
        return results[0]

    def first(self, spec: QuerySpec, params: Optional[Mapping[str, Any]] = None) -> Any:
        results = self.fetch_all(spec.replace(limit=1), params)
        return results[0] if results else None

    def count(self, spec: QuerySpec, params: Optional[Mapping[str, Any]] = None) -> int:
        if spec.projection.kind is not ProjectionKind.COUNT:
            spec = spec.as_count()
        return self.fetch_all(spec, params)[0]

    def exists(self, spec: QuerySpec, params: Optional[Mapping[str, Any]] = None) -> bool:
        from .spec import Projection

        existence = spec.as_count().replace(projection=Projection.exists())
        return self.fetch_all(existence, params)[0]

    # ------------------------------------------------------------------ #
    def _compile(self, spec: QuerySpec, params: Dict[str, Any]) -> CompiledQuery:
        check_parameters(spec.parameters, params, spec.description)
        if spec.lock is not LockMode.NONE and not self.session.dialect.capabilities.supports_row_locks:
            self.logger.debug(
                "%s ignores lock mode %s for %s", self.session.dialect.name, spec.lock.name, spec.description
            )
        return self.compiler.compile(spec, params)

    def _run(self, spec: QuerySpec, compiled: CompiledQuery) -> List[Any]:
        self.session._autoflush()
        cursor = self.session.execute(compiled.sql, compiled.params, source=spec.description)
        return list(cursor.fetchall())

    def _entities(self, spec: QuerySpec, compiled: CompiledQuery, rows: List[Any]) -> List["Model"]:
        prefix = spec.projection.entity_path
        root_model = resolve_path(spec.model, prefix).model if prefix else spec.model
        fetch_paths = sorted(
            (join.path for join in spec.fetch_joins if join.path != prefix),
            key=lambda path: path.count("__"),
        )
        results: List["Model"] = []
        for row in rows:
            groups: Dict[str, Dict[str, Any]] = {}
            for index, label in enumerate(compiled.columns):
                path, _, name = label.rpartition("__")
                groups.setdefault(path, {})[name] = row[index]

            root = self.session._materialize(root_model, groups.get(prefix, {}), read_only=spec.read_only)
            loaded: Dict[str, Optional["Model"]] = {prefix: root}
            for path in fetch_paths:
                owner_path, _, relation = path.rpartition("__")
                owner = loaded.get(owner_path)
                if owner is None:
                    loaded[path] = None
                    continue
                field_obj = owner._meta.get_field(relation)
                if not isinstance(field_obj, ForeignKey):
                    raise QuerySpecificationError(f"Cannot fetch '{path}': it is not a to-one association.")
                data = groups.get(path, {})
                remote = field_obj.require_remote()
                pk_name = remote._meta.require_primary_key().require_name()
                related = None
                if data.get(pk_name) is not None:
                    related = self.session._materialize(remote, data, read_only=spec.read_only)
                if relation not in owner._related_cache:
                    field_obj.attach(owner, related)
                loaded[path] = related
            results.append(root)
        return results

    def _converted(self, spec: QuerySpec, rows: List[Any]) -> List[tuple]:
        converters = []
        for path in spec.projection.paths:
            resolved = resolve_path(spec.model, path)
            field_obj = resolved.field
            if field_obj is None and resolved.steps:
                field_obj = resolved.steps[-1].field
            converters.append(field_obj)
        return [
            tuple(
                field_obj.from_db(value) if field_obj is not None else value
                for field_obj, value in zip(converters, row)
            )
            for row in rows
        ]

    def _scalars(self, spec: QuerySpec, rows: List[Any]) -> List[Any]:
        converted = self._converted(spec, rows)
        if len(spec.projection.paths) == 1:
            return [values[0] for values in converted]
        return converted
