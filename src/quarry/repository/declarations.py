"""
Declarative query methods for :class:`~quarry.repository.base.Repository`.

Each declaration is a descriptor placed in a repository class body. It is
compiled into the query IR when the class is created, so a misspelled field,
a malformed query string or a bad projection fails at import time::

    class MemberRepository(Repository):
        model = Member

        find_by_username_and_age_greater_than = derived()
        find_user = query("select m from Member m where m.username = :username and m.age = :age")
        bulk_age_plus = modifying("update Member m set m.age = m.age + 1 where m.age >= :age")

Call arguments bind to the query's parameter names, positionally in the
order the names first appear, or by keyword. A ``pageable`` keyword turns a
list query into a :class:`~quarry.query.paging.Page` (or ``Slice`` with
``returns="slice"``); ``sort`` adds ordering.
"""

from __future__ import annotations

import functools
from typing import TYPE_CHECKING, Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple, Type, Union

from ..dialects.base import LockMode
from ..errors import QuerySpecificationError
from ..query.bulk import BulkMutationExecutor
from ..query.derivation import Subject, bind_arguments, derive_query
from ..query.executor import QueryExecutor
from ..query.fetch import FetchPlanner
from ..query.named import entity_graphs, named_queries
from ..query.paging import Paginator, Sort, to_sort
from ..query.parser import parse_query
from ..query.spec import MutationSpec, ProjectionKind, QuerySpec
from ..utils import get_logger

if TYPE_CHECKING:
    from ..core.model import Model
    from ..query.paging import PageRequest
    from .base import Repository


logger = get_logger("repository")

RETURNS = ("list", "one", "first", "page", "slice")


class QueryMethod:
    """
    Base descriptor: binds arguments and dispatches on the return shape.
    """

    def __init__(
        self,
        *,
        returns: Optional[str] = None,
        fetch: Iterable[str] = (),
        entity_graph: Optional[str] = None,
        lock: LockMode = LockMode.NONE,
        read_only: bool = False,
    ) -> None:
        if returns is not None and returns not in RETURNS:
            raise ValueError(f"returns must be one of {', '.join(RETURNS)}, got {returns!r}")
        self.returns = returns
        self.fetch = tuple(fetch)
        self.entity_graph = entity_graph
        self.lock = lock
        self.read_only = read_only
        self.name = ""
        self.owner: Optional[type] = None
        self.spec: Optional[QuerySpec] = None
        self.count_spec: Optional[QuerySpec] = None
        self.parameters: Tuple[str, ...] = ()

    def __set_name__(self, owner: type, name: str) -> None:
        self.owner = owner
        self.name = name

    def __get__(self, repository: "Repository | None", owner: Optional[type] = None) -> Any:
        if repository is None:
            return self
        return functools.partial(self.invoke, repository)

    @property
    def qualified_name(self) -> str:
        owner = self.owner.__name__ if self.owner is not None else "?"
        return f"{owner}.{self.name}"

    def compile(self, model: Type["Model"]) -> None:
        raise NotImplementedError

    def compiled_spec(self) -> QuerySpec:
        if self.spec is None:
            raise QuerySpecificationError(f"{self.qualified_name} was used before its repository compiled it.")
        return self.spec

    # ------------------------------------------------------------------ #
    def _finish(self, model: Type["Model"], spec: QuerySpec) -> QuerySpec:
        paths = list(self.fetch)
        if self.entity_graph:
            paths.extend(entity_graphs.resolve(model, self.entity_graph))
        if paths:
            spec = FetchPlanner().plan(model, paths).apply(spec)
        changes: Dict[str, Any] = {"source": self.qualified_name}
        if self.lock is not LockMode.NONE:
            changes["lock"] = self.lock
        if self.read_only:
            changes["read_only"] = True
        return spec.replace(**changes)

    def _bind(self, args: Sequence[Any], kwargs: Mapping[str, Any]) -> Dict[str, Any]:
        return bind_arguments(self.qualified_name, self.parameters, args, kwargs)

    def _select(
        self,
        repository: "Repository",
        params: Dict[str, Any],
        *,
        pageable: Optional["PageRequest"],
        sort: Union[Sort, str, Sequence[str], None],
    ) -> Any:
        spec = self.compiled_spec()
        executor = QueryExecutor(repository.session)
        if pageable is not None:
            paginator = Paginator(executor)
            if self.returns == "slice":
                return paginator.slice(spec, params, pageable)
            if self.returns == "list":
                return paginator.slice(spec, params, pageable).content
            return paginator.page(spec, params, pageable, count_spec=self.count_spec)
        if sort is not None:
            spec = spec.replace(ordering=spec.ordering + to_sort(sort).to_ordering())

        kind = spec.projection.kind
        returns = self.returns
        if returns is None:
            if kind in (ProjectionKind.COUNT, ProjectionKind.EXISTS):
                returns = "one"
            elif spec.limit == 1:
                returns = "first"
            else:
                returns = "list"
        if returns == "one":
            return executor.fetch_one(spec, params)
        if returns == "first":
            return executor.first(spec, params)
        if returns in ("page", "slice"):
            raise TypeError(f"{self.qualified_name}() returns a {returns}; pass pageable=PageRequest.of(...).")
        return executor.fetch_all(spec, params)

    def invoke(self, repository: "Repository", *args: Any, **kwargs: Any) -> Any:
        raise NotImplementedError


class DerivedMethod(QueryMethod):
    """
    Query derived from the attribute name, unless a named query
    ``<Entity>.<attribute>`` is registered, which then takes precedence.
    """

    def __init__(self, *, method: Optional[str] = None, **options: Any) -> None:
        super().__init__(**options)
        self.method = method
        self.subject = Subject.FIND

    def compile(self, model: Type["Model"]) -> None:
        method = self.method or self.name
        named = named_queries.find(model, method)
        if named is not None:
            if isinstance(named.statement, MutationSpec):
                raise QuerySpecificationError(
                    f"{self.qualified_name}: named query {named.name} is a mutation; declare it with named()."
                )
            logger.debug("%s resolved to named query %s", self.qualified_name, named.name)
            self.spec = self._finish(model, named.statement)
            self.parameters = named.statement.parameters
            return
        derived = derive_query(model, method)
        self.subject = derived.subject
        self.spec = self._finish(model, derived.spec)
        self.parameters = derived.parameters

    def invoke(self, repository: "Repository", *args: Any, **kwargs: Any) -> Any:
        pageable = kwargs.pop("pageable", None)
        sort = kwargs.pop("sort", None)
        params = self._bind(args, kwargs)
        if self.subject is Subject.DELETE:
            return self._delete(repository, params)
        return self._select(repository, params, pageable=pageable, sort=sort)

    def _delete(self, repository: "Repository", params: Dict[str, Any]) -> int:
        # removed through the session one entity at a time
        session = repository.session
        victims = QueryExecutor(session).fetch_all(self.compiled_spec(), params)
        for instance in victims:
            session.delete(instance)
        return len(victims)


class StringQueryMethod(QueryMethod):
    """Select query given as text."""

    def __init__(
        self,
        text: str,
        *,
        count_query: Optional[str] = None,
        types: Optional[Mapping[str, type]] = None,
        **options: Any,
    ) -> None:
        super().__init__(**options)
        self.text = text
        self.count_text = count_query
        self.types = dict(types or {})

    def compile(self, model: Type["Model"]) -> None:
        statement = self._parse(model, self.text)
        self.spec = self._finish(model, statement)
        self.parameters = statement.parameters
        if self.count_text is not None:
            counter = self._parse(model, self.count_text)
            if counter.projection.kind is not ProjectionKind.COUNT:
                raise QuerySpecificationError(
                    f"{self.qualified_name}: count_query must select count(...)."
                )
            unknown = set(counter.parameters) - set(self.parameters)
            if unknown:
                raise QuerySpecificationError(
                    f"{self.qualified_name}: count_query uses parameters the query does not: "
                    f"{', '.join(sorted(unknown))}."
                )
            self.count_spec = counter.replace(source=f"{self.qualified_name} (count)")

    def _parse(self, model: Type["Model"], text: str) -> QuerySpec:
        statement = parse_query(text, model=model, types=self.types)
        if isinstance(statement, MutationSpec):
            raise QuerySpecificationError(
                f"{self.qualified_name}: update/delete statements must be declared with modifying()."
            )
        return statement

    def invoke(self, repository: "Repository", *args: Any, **kwargs: Any) -> Any:
        pageable = kwargs.pop("pageable", None)
        sort = kwargs.pop("sort", None)
        return self._select(repository, self._bind(args, kwargs), pageable=pageable, sort=sort)


class NamedQueryMethod(QueryMethod):
    """Query registered in :data:`~quarry.query.named.named_queries`."""

    def __init__(
        self,
        query_name: Optional[str] = None,
        *,
        clear_automatically: Optional[bool] = None,
        flush_automatically: bool = False,
        **options: Any,
    ) -> None:
        super().__init__(**options)
        self.query_name = query_name
        self.mutation: Optional[MutationSpec] = None
        self.clear_automatically = clear_automatically
        self.flush_automatically = flush_automatically

    def compile(self, model: Type["Model"]) -> None:
        named = named_queries.resolve(model, self.query_name or self.name)
        if isinstance(named.statement, MutationSpec):
            self.mutation = named.statement
        else:
            self.spec = self._finish(model, named.statement)
        self.parameters = named.statement.parameters

    def invoke(self, repository: "Repository", *args: Any, **kwargs: Any) -> Any:
        pageable = kwargs.pop("pageable", None)
        sort = kwargs.pop("sort", None)
        params = self._bind(args, kwargs)
        if self.mutation is not None:
            return BulkMutationExecutor(repository.session).execute(
                self.mutation,
                params,
                clear_automatically=self.clear_automatically,
                flush_automatically=self.flush_automatically,
            )
        return self._select(repository, params, pageable=pageable, sort=sort)


class ModifyingMethod(QueryMethod):
    """
    Bulk ``update``/``delete`` statement. Returns the affected row count.

    The statement bypasses the persistence context. With
    ``clear_automatically`` the context is cleared afterwards; with
    ``flush_automatically`` pending changes are written first.
    """

    def __init__(
        self,
        text: str,
        *,
        clear_automatically: Optional[bool] = None,
        flush_automatically: bool = False,
    ) -> None:
        super().__init__()
        self.text = text
        self.clear_automatically = clear_automatically
        self.flush_automatically = flush_automatically
        self.mutation: Optional[MutationSpec] = None

    def compile(self, model: Type["Model"]) -> None:
        statement = parse_query(self.text, model=model)
        if not isinstance(statement, MutationSpec):
            raise QuerySpecificationError(
                f"{self.qualified_name}: modifying() needs an update or delete statement."
            )
        self.mutation = MutationSpec(
            statement.model,
            statement.kind,
            statement.assignments,
            where=statement.where,
            source=self.qualified_name,
        )
        self.parameters = statement.parameters

    def invoke(self, repository: "Repository", *args: Any, **kwargs: Any) -> int:
        if self.mutation is None:
            raise QuerySpecificationError(f"{self.qualified_name} was used before its repository compiled it.")
        return BulkMutationExecutor(repository.session).execute(
            self.mutation,
            self._bind(args, kwargs),
            clear_automatically=self.clear_automatically,
            flush_automatically=self.flush_automatically,
        )


def derived(**options: Any) -> DerivedMethod:
    return DerivedMethod(**options)


def query(text: str, **options: Any) -> StringQueryMethod:
    return StringQueryMethod(text, **options)


def named(query_name: Optional[str] = None, **options: Any) -> NamedQueryMethod:
    return NamedQueryMethod(query_name, **options)


def modifying(
    text: str, *, clear_automatically: Optional[bool] = None, flush_automatically: bool = False
) -> ModifyingMethod:
    return ModifyingMethod(text, clear_automatically=clear_automatically, flush_automatically=flush_automatically)
