"""
Intermediate representation shared by every way of declaring a query.

Method-name derivation, the query-string parser, named queries and the
chainable ``QuerySet`` all produce a :class:`QuerySpec` (reads) or a
:class:`MutationSpec` (bulk update/delete). Both are immutable; builders
derive new specs with :meth:`QuerySpec.replace`.
"""

from __future__ import annotations

import dataclasses
import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Tuple, Type

from ..dialects.base import LockMode
from .expressions import Q, iter_params

if TYPE_CHECKING:
    from ..core.model import Model


class ProjectionKind(enum.Enum):
    ENTITY = "entity"
    SCALAR = "scalar"
    CONSTRUCTOR = "constructor"
    COUNT = "count"
    EXISTS = "exists"


@dataclass(frozen=True)
class Projection:
    """
    What each result row becomes.

    ``paths`` are field paths of the root entity. An entity projection with
    a path selects the associated entity instead of the root.
    """

    kind: ProjectionKind = ProjectionKind.ENTITY
    paths: Tuple[str, ...] = ()
    target: Optional[type] = None
    distinct: bool = False

    @classmethod
    def entity(cls, path: str | None = None) -> "Projection":
        return cls(ProjectionKind.ENTITY, (path,) if path else ())

    @classmethod
    def scalar(cls, *paths: str) -> "Projection":
        if not paths:
            raise ValueError("A scalar projection needs at least one path.")
        return cls(ProjectionKind.SCALAR, tuple(paths))

    @classmethod
    def constructor(cls, target: type, *paths: str) -> "Projection":
        return cls(ProjectionKind.CONSTRUCTOR, tuple(paths), target=target)

    @classmethod
    def count(cls, path: str | None = None, *, distinct: bool = False) -> "Projection":
        return cls(ProjectionKind.COUNT, (path,) if path else (), distinct=distinct)

    @classmethod
    def exists(cls) -> "Projection":
        return cls(ProjectionKind.EXISTS)

    @property
    def is_entity(self) -> bool:
        return self.kind is ProjectionKind.ENTITY

    @property
    def entity_path(self) -> str:
        return self.paths[0] if self.is_entity and self.paths else ""


class JoinKind(enum.Enum):
    INNER = "INNER"
    LEFT = "LEFT"


@dataclass(frozen=True)
class Join:
    path: str
    kind: JoinKind = JoinKind.INNER
    fetch: bool = False


@dataclass(frozen=True)
class OrderBy:
    path: str
    descending: bool = False

    @classmethod
    def parse(cls, value: "str | OrderBy") -> "OrderBy":
        """``"-age"`` sorts descending, ``"age"`` ascending."""
        if isinstance(value, OrderBy):
            return value
        if value.startswith("-"):
            return cls(value[1:], True)
        return cls(value.lstrip("+"), False)

    def __str__(self) -> str:
        return f"-{self.path}" if self.descending else self.path


@dataclass(frozen=True)
class QuerySpec:
    model: Type["Model"]
    projection: Projection = Projection()
    where: Optional[Q] = None
    joins: Tuple[Join, ...] = ()
    ordering: Tuple[OrderBy, ...] = ()
    limit: Optional[int] = None
    offset: Optional[int] = None
    distinct: bool = False
    lock: LockMode = LockMode.NONE
    # collection paths loaded with one batched IN query each
    batches: Tuple[str, ...] = ()
    read_only: bool = False
    # human readable origin used in log and error messages
    source: str = ""

    def replace(self, **changes: Any) -> "QuerySpec":
        return dataclasses.replace(self, **changes)

    @property
    def parameters(self) -> Tuple[str, ...]:
        """Distinct parameter names, in order of first occurrence."""
        return tuple(dict.fromkeys(iter_params(self.where)))

    @property
    def fetch_joins(self) -> Tuple[Join, ...]:
        return tuple(join for join in self.joins if join.fetch)

    @property
    def description(self) -> str:
        return self.source or f"{self.model.__name__} query"

    def with_fetch(self, joins: Tuple[Join, ...], batches: Tuple[str, ...]) -> "QuerySpec":
        """
        Merge fetch directives into this spec without touching its predicate.
        """
        merged = {join.path: join for join in self.joins}
        for join in joins:
            current = merged.get(join.path)
            if current is None:
                merged[join.path] = join
            elif not current.fetch:
                merged[join.path] = Join(join.path, current.kind, fetch=True)
        return self.replace(
            joins=tuple(merged.values()),
            batches=tuple(dict.fromkeys(self.batches + batches)),
        )

    def as_count(self) -> "QuerySpec":
        """
        Count query over the same predicate and filtering joins. Outer fetch
        joins, batches, ordering and the row window are dropped; an inner
        fetch join still restricts rows, so it stays as a plain join.
        """
        distinct = self.distinct or bool(self.projection.distinct)
        path = self.projection.entity_path or None
        return self.replace(
            projection=Projection.count(path, distinct=distinct),
            joins=tuple(
                Join(join.path, join.kind)
                for join in self.joins
                if not (join.fetch and join.kind is JoinKind.LEFT)
            ),
            ordering=(),
            limit=None,
            offset=None,
            distinct=False,
            batches=(),
            lock=LockMode.NONE,
        )


class MutationKind(enum.Enum):
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class MutationSpec:
    model: Type["Model"]
    kind: MutationKind
    assignments: Tuple[Tuple[str, Any], ...] = ()
    where: Optional[Q] = None
    source: str = ""

    def __post_init__(self) -> None:
        if self.kind is MutationKind.UPDATE and not self.assignments:
            raise ValueError("An update mutation needs at least one assignment.")
        if self.kind is MutationKind.DELETE and self.assignments:
            raise ValueError("A delete mutation takes no assignments.")

    @property
    def parameters(self) -> Tuple[str, ...]:
        names = list(iter_params(list(self.assignments)))
        names.extend(iter_params(self.where))
        return tuple(dict.fromkeys(names))

    @property
    def description(self) -> str:
        return self.source or f"{self.kind.value} {self.model.__name__}"
