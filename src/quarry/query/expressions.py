"""
Expression tree primitives for query construction.

Predicates are :class:`Q` trees whose leaves are ``("path__lookup", value)``
pairs. Values may be plain Python values, :class:`Param` placeholders bound
by name at execution time, or :class:`F` column references combined with
arithmetic.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, List, Tuple


AND = "AND"
OR = "OR"

LOOKUPS = frozenset(
    {
        "exact",
        "iexact",
        "ne",
        "gt",
        "gte",
        "lt",
        "lte",
        "in",
        "not_in",
        "like",
        "not_like",
        "contains",
        "startswith",
        "endswith",
        "isnull",
        "between",
    }
)


def _normalize_items(items: Iterable[Tuple[str, Any]]) -> List[Tuple[str, Any]]:
    return list(items)


def split_lookup(key: str) -> Tuple[str, str]:
    """
    ``"team__name__startswith"`` -> ``("team__name", "startswith")``.
    """
    path, sep, last = key.rpartition("__")
    if sep and last in LOOKUPS:
        return path, last
    return key, "exact"


@dataclass
class Q:
    """
    Boolean expression container similar to Django-style Q objects.
    """

    children: List[Any] = field(default_factory=list)
    connector: str = AND
    negated: bool = False

    def __init__(self, *children: Any, **lookups: Any) -> None:
        self.children = []
        if children:
            self.children.extend(children)
        if lookups:
            self.children.extend(_normalize_items(lookups.items()))
        self.connector = AND
        self.negated = False

    def __or__(self, other: "Q") -> "Q":
        return self._combine(other, OR)

    def __and__(self, other: "Q") -> "Q":
        return self._combine(other, AND)

    def __invert__(self) -> "Q":
        q = self._clone()
        q.negated = not q.negated
        return q

    # Internal helpers -------------------------------------------------
    def _clone(self) -> "Q":
        clone = Q()
        clone.children = list(self.children)
        clone.connector = self.connector
        clone.negated = self.negated
        return clone

    def _combine(self, other: "Q", connector: str) -> "Q":
        if other.is_empty():
            return self._clone()
        if self.is_empty():
            return other._clone()
        q = Q()
        q.children = [self._clone(), other._clone()]
        q.connector = connector
        return q

    def is_empty(self) -> bool:
        return not self.children

    def leaves(self) -> Iterator[Tuple[str, Any]]:
        for child in self.children:
            if isinstance(child, Q):
                yield from child.leaves()
            else:
                yield child

    @classmethod
    def combine_all(cls, nodes: Iterable["Q"], connector: str = AND) -> "Q":
        result = cls()
        for node in nodes:
            result = result._combine(node, connector)
        return result


class Expression:
    """
    Operand usable on the right-hand side of a lookup or in an UPDATE
    assignment.
    """

    def __add__(self, other: Any) -> "Combined":
        return Combined(self, "+", _wrap(other))

    def __radd__(self, other: Any) -> "Combined":
        return Combined(_wrap(other), "+", self)

    def __sub__(self, other: Any) -> "Combined":
        return Combined(self, "-", _wrap(other))

    def __rsub__(self, other: Any) -> "Combined":
        return Combined(_wrap(other), "-", self)

    def __mul__(self, other: Any) -> "Combined":
        return Combined(self, "*", _wrap(other))

    def __rmul__(self, other: Any) -> "Combined":
        return Combined(_wrap(other), "*", self)

    def __truediv__(self, other: Any) -> "Combined":
        return Combined(self, "/", _wrap(other))


@dataclass(frozen=True, eq=False)
class F(Expression):
    """Reference to a field path of the queried entity."""

    path: str


@dataclass(frozen=True, eq=False)
class Param(Expression):
    """Named placeholder, bound when the query runs."""

    name: str


@dataclass(frozen=True, eq=False)
class Value(Expression):
    value: Any


@dataclass(frozen=True, eq=False)
class Combined(Expression):
    lhs: Expression
    operator: str
    rhs: Expression


def _wrap(value: Any) -> Expression:
    if isinstance(value, Expression):
        return value
    return Value(value)


def iter_params(node: Any) -> Iterator[str]:
    """
    Yield parameter names in the order they occur in ``node``.
    """
    if isinstance(node, Param):
        yield node.name
    elif isinstance(node, Combined):
        yield from iter_params(node.lhs)
        yield from iter_params(node.rhs)
    elif isinstance(node, Q):
        for child in node.children:
            yield from iter_params(child)
    elif isinstance(node, tuple):
        for item in node:
            yield from iter_params(item)
    elif isinstance(node, list):
        for item in node:
            yield from iter_params(item)


def iter_paths(node: Any) -> Iterator[str]:
    """
    Yield every field path referenced by ``node`` (lookup keys and ``F``).
    """
    if isinstance(node, F):
        yield node.path
    elif isinstance(node, Combined):
        yield from iter_paths(node.lhs)
        yield from iter_paths(node.rhs)
    elif isinstance(node, Q):
        for key, value in node.leaves():
            yield split_lookup(key)[0]
            yield from iter_paths(value)
    elif isinstance(node, (tuple, list)):
        for item in node:
            yield from iter_paths(item)
