"""
Repository base class.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, ClassVar, Generic, Iterable, List, Optional, Sequence, Type, TypeVar, Union, cast

from ..core.model import Model, ModelConfigurationError
from ..query.bulk import BulkMutationExecutor
from ..query.executor import QueryExecutor
from ..query.expressions import Q
from ..query.fetch import FetchPlanner
from ..query.named import entity_graphs
from ..query.paging import Page, PageRequest, Paginator, Sort, to_sort
from ..query.spec import MutationKind, MutationSpec, QuerySpec
from ..utils import get_logger
from .declarations import QueryMethod

if TYPE_CHECKING:
    from ..persistence.session import Session


TModel = TypeVar("TModel", bound=Model)


class Repository(Generic[TModel]):
    """
    Collection-like access to one entity type through a session.

    Subclasses set ``model`` and may declare query methods with
    :func:`~quarry.repository.derived`, :func:`~quarry.repository.query`,
    :func:`~quarry.repository.named` and :func:`~quarry.repository.modifying`.
    ``find_all_graph`` names a registered entity graph applied to
    :meth:`find_all`.
    """

    model: ClassVar[Optional[Type[Model]]] = None
    find_all_graph: ClassVar[Optional[str]] = None

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        declarations = [value for value in cls.__dict__.values() if isinstance(value, QueryMethod)]
        if not declarations:
            return
        if cls.model is None:
            raise ModelConfigurationError(f"{cls.__name__} declares query methods but no model.")
        for declaration in declarations:
            declaration.compile(cls.model)

    def __init__(self, session: "Session") -> None:
        if self.model is None:
            raise ModelConfigurationError(f"{type(self).__name__} does not declare a model.")
        self.session = session
        self.logger = get_logger(f"repository.{type(self).__name__}")

    @property
    def entity(self) -> Type[TModel]:
        if self.model is None:
            raise ModelConfigurationError(f"{type(self).__name__} does not declare a model.")
        return cast(Type[TModel], self.model)

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #
    def save(self, instance: TModel) -> TModel:
        """
        Persist a new entity or merge a detached one. Returns the managed
        instance, which is ``instance`` itself unless it had to be merged.
        """
        if instance.pk is None:
            self.session.add(instance)
            return instance
        if self.session.contains(instance):
            return instance
        return self.session.merge(instance)

    def save_all(self, instances: Iterable[TModel]) -> List[TModel]:
        return [self.save(instance) for instance in instances]

    def delete(self, instance: TModel) -> None:
        self.session.delete(instance)

    def delete_by_id(self, pk: Any) -> None:
        instance = self.find_by_id(pk)
        if instance is not None:
            self.session.delete(instance)

    def delete_all(self, instances: Optional[Iterable[TModel]] = None) -> None:
        for instance in list(instances) if instances is not None else self.find_all():
            self.session.delete(instance)

    def delete_all_in_batch(self) -> int:
        """
        One bulk ``DELETE`` for the whole table. Managed entities of this type
        are left stale.
        """
        mutation = MutationSpec(self.entity, MutationKind.DELETE, source=f"{type(self).__name__}.delete_all_in_batch")
        return BulkMutationExecutor(self.session).execute(mutation)

    def flush(self) -> None:
        self.session.flush()

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #
    def find_by_id(self, pk: Any) -> Optional[TModel]:
        return self.session.get(self.entity, pk)

    def exists_by_id(self, pk: Any) -> bool:
        return self.find_by_id(pk) is not None

    def find_all(
        self,
        *,
        sort: Union[Sort, str, Sequence[str], None] = None,
        pageable: Optional[PageRequest] = None,
    ) -> Union[List[TModel], Page[TModel]]:
        spec = self._base_spec("find_all")
        if pageable is not None:
            return Paginator(QueryExecutor(self.session)).page(spec, {}, pageable)
        if sort is not None:
            spec = spec.replace(ordering=to_sort(sort).to_ordering())
        return QueryExecutor(self.session).fetch_all(spec)

    def find_all_by_id(self, pks: Iterable[Any]) -> List[TModel]:
        keys = list(pks)
        if not keys:
            return []
        pk_name = self.entity._meta.require_primary_key().require_name()
        spec = self._base_spec("find_all_by_id").replace(where=Q(**{f"{pk_name}__in": keys}))
        return QueryExecutor(self.session).fetch_all(spec)

    def count(self) -> int:
        return QueryExecutor(self.session).count(QuerySpec(self.entity, source=f"{type(self).__name__}.count"))

    def query(self):
        return self.session.query(self.entity)

    def _base_spec(self, method: str) -> QuerySpec:
        spec = QuerySpec(self.entity, source=f"{type(self).__name__}.{method}")
        if self.find_all_graph:
            paths = entity_graphs.resolve(self.entity, self.find_all_graph)
            spec = FetchPlanner().plan(self.entity, paths).apply(spec)
        return spec
