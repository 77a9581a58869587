"""
QuerySet implementation providing a chainable query API.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional, Tuple

from ..dialects.base import LockMode
from ..dialects.sqlite import SQLiteDialect
from .compiler import SQLCompiler
from .expressions import Q
from .fetch import FetchPlanner
from .named import entity_graphs
from .parser import check_constructor_arity
from .spec import MutationKind, MutationSpec, OrderBy, Projection, QuerySpec

if TYPE_CHECKING:
    from ..core.model import Model
    from ..persistence.session import Session
    from .paging import Page, PageRequest, Slice


class QuerySet:
    """
    Immutable, chainable builder over a :class:`QuerySpec`.

    Every refinement returns a new QuerySet. Nothing touches the store until
    a terminal method (``all``, ``one``, ``count``, ``page``...) runs.
    """

    def __init__(
        self,
        model: type["Model"],
        *,
        session: "Session | None" = None,
        spec: Optional[QuerySpec] = None,
        fetch: Tuple[str, ...] = (),
        params: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.model = model
        self._session = session
        self._spec = spec or QuerySpec(model)
        self._fetch = fetch
        self._params = dict(params or {})

    # Refinement --------------------------------------------------------
    def filter(self, *conditions: Q, **lookups: Any) -> "QuerySet":
        return self._clone(where=self._add_q(Q(*conditions, **lookups)))

    def exclude(self, *conditions: Q, **lookups: Any) -> "QuerySet":
        return self._clone(where=self._add_q(~Q(*conditions, **lookups)))

    def where(self, q_object: Q) -> "QuerySet":
        return self._clone(where=self._add_q(q_object))

    def order_by(self, *fields: str) -> "QuerySet":
        return self._clone(ordering=tuple(OrderBy.parse(item) for item in fields))

    def limit(self, value: int) -> "QuerySet":
        return self._clone(limit=value)

    def offset(self, value: int) -> "QuerySet":
        return self._clone(offset=value)

    def distinct(self, value: bool = True) -> "QuerySet":
        return self._clone(distinct=value)

    def lock(self, mode: LockMode = LockMode.PESSIMISTIC_WRITE) -> "QuerySet":
        return self._clone(lock=mode)

    def read_only(self, value: bool = True) -> "QuerySet":
        return self._clone(read_only=value)

    def fetch(self, *paths: str) -> "QuerySet":
        """
        Load the named associations together with the results. To-one paths
        are joined, collections are batch-loaded.
        """
        normalized = tuple(path.replace(".", "__") for path in paths)
        FetchPlanner().plan(self.model, normalized)
        return self._copy(fetch=tuple(dict.fromkeys(self._fetch + normalized)))

    select_related = fetch
    prefetch_related = fetch

    def entity_graph(self, name: str) -> "QuerySet":
        return self.fetch(*entity_graphs.resolve(self.model, name))

    def values(self, *paths: str) -> "QuerySet":
        return self._clone(projection=Projection.scalar(*(path.replace(".", "__") for path in paths)))

    def project(self, target: type, *paths: str) -> "QuerySet":
        check_constructor_arity(target, len(paths))
        return self._clone(
            projection=Projection.constructor(target, *(path.replace(".", "__") for path in paths))
        )

    def bind(self, **params: Any) -> "QuerySet":
        merged = dict(self._params)
        merged.update(params)
        return self._copy(params=merged)

    # Introspection -----------------------------------------------------
    def to_spec(self) -> QuerySpec:
        if not self._fetch:
            return self._spec
        return FetchPlanner().plan(self.model, self._fetch).apply(self._spec)

    def to_sql(self) -> tuple[str, list[Any]]:
        dialect = self._session.dialect if self._session is not None else SQLiteDialect()
        compiled = SQLCompiler(dialect).compile(self.to_spec(), self._params)
        return compiled.sql, compiled.params

    # Terminal operations -----------------------------------------------
    def all(self) -> List[Any]:
        return self._executor().fetch_all(self.to_spec(), self._params)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.all())

    def one(self) -> Any:
        return self._executor().fetch_one(self.to_spec(), self._params)

    def first(self) -> Any:
        return self._executor().first(self.to_spec(), self._params)

    def count(self) -> int:
        return self._executor().count(self._spec, self._params)

    def exists(self) -> bool:
        return self._executor().exists(self._spec, self._params)

    def page(self, pageable: "PageRequest") -> "Page[Any]":
        from .paging import Paginator

        return Paginator(self._executor()).page(self.to_spec(), self._params, pageable)

    def slice(self, pageable: "PageRequest") -> "Slice[Any]":
        from .paging import Paginator

        return Paginator(self._executor()).slice(self.to_spec(), self._params, pageable)

    def update(self, *, clear_automatically: Optional[bool] = None, **assignments: Any) -> int:
        mutation = MutationSpec(
            self.model,
            MutationKind.UPDATE,
            assignments=tuple(assignments.items()),
            where=self._spec.where,
        )
        return self._bulk().execute(mutation, self._params, clear_automatically=clear_automatically)

    def delete(self, *, clear_automatically: Optional[bool] = None) -> int:
        mutation = MutationSpec(self.model, MutationKind.DELETE, where=self._spec.where)
        return self._bulk().execute(mutation, self._params, clear_automatically=clear_automatically)

    # Internal helpers --------------------------------------------------
    def _require_session(self) -> "Session":
        if self._session is None:
            raise RuntimeError(
                "QuerySet execution requires a bound Session. Use Session.query(model)."
            )
        return self._session

    def _executor(self):
        from .executor import QueryExecutor

        return QueryExecutor(self._require_session())

    def _bulk(self):
        from .bulk import BulkMutationExecutor

        return BulkMutationExecutor(self._require_session())

    def _add_q(self, q_object: Q) -> Q:
        current = self._spec.where
        if current is None or current.is_empty():
            return q_object
        if q_object.is_empty():
            return current
        return current & q_object

    def _clone(self, **changes: Any) -> "QuerySet":
        return self._copy(spec=self._spec.replace(**changes))

    def _copy(self, **overrides: Any) -> "QuerySet":
        return QuerySet(
            self.model,
            session=overrides.get("session", self._session),
            spec=overrides.get("spec", self._spec),
            fetch=overrides.get("fetch", self._fetch),
            params=overrides.get("params", self._params),
        )

    def __repr__(self) -> str:
        return f"<QuerySet {self._spec.description}>"
