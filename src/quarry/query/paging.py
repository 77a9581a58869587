"""
Pagination primitives.

A :class:`PageRequest` selects a zero-based page of a fixed size with an
optional sort. :class:`Paginator` turns it into a row window over a query
and wraps the rows as a :class:`Page` (with an independent count query) or a
:class:`Slice` (which only looks one row ahead).
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Generic, Iterable, Iterator, List, Mapping, Optional, Tuple, TypeVar, Union

from .spec import OrderBy, ProjectionKind, QuerySpec

if TYPE_CHECKING:
    from .executor import QueryExecutor


T = TypeVar("T")
R = TypeVar("R")


class Direction(enum.Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class Order:
    property: str
    direction: Direction = Direction.ASC

    @classmethod
    def asc(cls, path: str) -> "Order":
        return cls(path, Direction.ASC)

    @classmethod
    def desc(cls, path: str) -> "Order":
        return cls(path, Direction.DESC)

    def to_order_by(self) -> OrderBy:
        return OrderBy(self.property.replace(".", "__"), self.direction is Direction.DESC)


@dataclass(frozen=True)
class Sort:
    orders: Tuple[Order, ...] = ()

    @classmethod
    def by(cls, *properties: str, direction: Direction = Direction.ASC) -> "Sort":
        """
        ``Sort.by("username")``, ``Sort.by("age", direction=Direction.DESC)``.
        A leading ``-`` on a property flips it to descending.
        """
        orders = []
        for prop in properties:
            if prop.startswith("-"):
                orders.append(Order(prop[1:], Direction.DESC))
            else:
                orders.append(Order(prop, direction))
        return cls(tuple(orders))

    @classmethod
    def unsorted(cls) -> "Sort":
        return cls()

    def and_(self, other: "Sort") -> "Sort":
        return Sort(self.orders + other.orders)

    def descending(self) -> "Sort":
        return Sort(tuple(Order(order.property, Direction.DESC) for order in self.orders))

    def ascending(self) -> "Sort":
        return Sort(tuple(Order(order.property, Direction.ASC) for order in self.orders))

    @property
    def is_sorted(self) -> bool:
        return bool(self.orders)

    def to_ordering(self) -> Tuple[OrderBy, ...]:
        return tuple(order.to_order_by() for order in self.orders)

    def __iter__(self) -> Iterator[Order]:
        return iter(self.orders)


def to_sort(sort: Union[Sort, str, Iterable[str], None]) -> Sort:
    if sort is None:
        return Sort()
    if isinstance(sort, Sort):
        return sort
    if isinstance(sort, str):
        return Sort.by(sort)
    return Sort.by(*sort)


@dataclass(frozen=True)
class PageRequest:
    page: int
    size: int
    sort: Sort = field(default_factory=Sort)

    def __post_init__(self) -> None:
        if self.page < 0:
            raise ValueError(f"Page index must not be negative, got {self.page}.")
        if self.size < 1:
            raise ValueError(f"Page size must be at least 1, got {self.size}.")

    @classmethod
    def of(cls, page: int, size: int, sort: Union[Sort, str, Iterable[str], None] = None) -> "PageRequest":
        return cls(page, size, to_sort(sort))

    @property
    def offset(self) -> int:
        return self.page * self.size

    def next(self) -> "PageRequest":
        return PageRequest(self.page + 1, self.size, self.sort)

    def previous_or_first(self) -> "PageRequest":
        return PageRequest(max(self.page - 1, 0), self.size, self.sort)

    def first(self) -> "PageRequest":
        return PageRequest(0, self.size, self.sort)

    def with_page(self, page: int) -> "PageRequest":
        return PageRequest(page, self.size, self.sort)


class _Chunk(Generic[T]):
    content: List[T]
    pageable: PageRequest

    @property
    def has_next(self) -> bool:
        raise NotImplementedError

    @property
    def number(self) -> int:
        return self.pageable.page

    @property
    def size(self) -> int:
        return self.pageable.size

    @property
    def number_of_elements(self) -> int:
        return len(self.content)

    @property
    def has_content(self) -> bool:
        return bool(self.content)

    @property
    def is_first(self) -> bool:
        return not self.has_previous

    @property
    def is_last(self) -> bool:
        return not self.has_next

    @property
    def has_previous(self) -> bool:
        return self.pageable.page > 0

    def next_pageable(self) -> Optional[PageRequest]:
        return self.pageable.next() if self.has_next else None

    def previous_pageable(self) -> Optional[PageRequest]:
        return self.pageable.previous_or_first() if self.has_previous else None

    def __iter__(self) -> Iterator[T]:
        return iter(self.content)

    def __len__(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class Slice(_Chunk[T]):
    content: List[T]
    pageable: PageRequest
    has_more: bool = False

    @property
    def has_next(self) -> bool:
        return self.has_more

    def map(self, converter: Callable[[T], R]) -> "Slice[R]":
        return Slice([converter(item) for item in self.content], self.pageable, self.has_more)


@dataclass(frozen=True)
class Page(_Chunk[T]):
    content: List[T]
    pageable: PageRequest
    total_elements: int = 0

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_elements / self.pageable.size)

    @property
    def has_next(self) -> bool:
        return self.pageable.page + 1 < self.total_pages

    def map(self, converter: Callable[[T], R]) -> "Page[R]":
        return Page([converter(item) for item in self.content], self.pageable, self.total_elements)


def _window(spec: QuerySpec, pageable: PageRequest, size: int) -> QuerySpec:
    ordering = spec.ordering
    if pageable.sort.is_sorted:
        seen = {order.path for order in ordering}
        ordering = ordering + tuple(order for order in pageable.sort.to_ordering() if order.path not in seen)
    return spec.replace(ordering=ordering, limit=size, offset=pageable.offset)


class Paginator:
    def __init__(self, executor: "QueryExecutor") -> None:
        self.executor = executor

    def page(
        self,
        spec: QuerySpec,
        params: Optional[Mapping[str, Any]],
        pageable: PageRequest,
        *,
        count_spec: Optional[QuerySpec] = None,
    ) -> Page[Any]:
        """
        Load one page of ``spec`` and count all of its rows.

        ``count_spec`` replaces the derived count query; it receives the
        subset of ``params`` it declares.
        """
        params = dict(params or {})
        content = self.executor.fetch_all(_window(spec, pageable, pageable.size), params)
        counter = count_spec if count_spec is not None else spec.as_count()
        if counter.projection.kind is not ProjectionKind.COUNT:
            counter = counter.as_count()
        count_params = {name: value for name, value in params.items() if name in counter.parameters}
        total = self.executor.count(counter, count_params)
        return Page(content, pageable, total)

    def slice(
        self,
        spec: QuerySpec,
        params: Optional[Mapping[str, Any]],
        pageable: PageRequest,
    ) -> Slice[Any]:
        rows = self.executor.fetch_all(_window(spec, pageable, pageable.size + 1), params)
        return Slice(rows[: pageable.size], pageable, len(rows) > pageable.size)
