"""
Registries for named queries and named fetch graphs.

Both are keyed by ``"<Entity>.<name>"``. Named queries are parsed when they
are registered, so a malformed query fails at import time rather than on
first use.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Iterable, Mapping, Optional, Tuple, Type, Union

from ..errors import UnknownNamedQueryError
from ..utils import get_logger
from .parser import parse_query
from .spec import MutationSpec, QuerySpec

if TYPE_CHECKING:
    from ..core.model import Model


logger = get_logger("query.named")


def qualified_name(model: Type["Model"], name: str) -> str:
    if "." in name:
        return name
    return f"{model.__name__}.{name}"


@dataclass(frozen=True)
class NamedQuery:
    name: str
    text: str
    statement: Union[QuerySpec, MutationSpec]


class NamedQueryRegistry:
    def __init__(self) -> None:
        self._queries: Dict[str, NamedQuery] = {}

    def register(
        self,
        model: Type["Model"],
        name: str,
        text: str,
        *,
        types: Optional[Mapping[str, type]] = None,
    ) -> NamedQuery:
        key = qualified_name(model, name)
        statement = parse_query(text, model=model, types=types)
        if isinstance(statement, QuerySpec):
            statement = statement.replace(source=key)
        named = NamedQuery(key, text, statement)
        if key in self._queries:
            logger.warning("Replacing named query %s", key)
        self._queries[key] = named
        return named

    def resolve(self, model: Type["Model"], name: str) -> NamedQuery:
        key = qualified_name(model, name)
        try:
            return self._queries[key]
        except KeyError:
            raise UnknownNamedQueryError(f"No named query registered as '{key}'.") from None

    def find(self, model: Type["Model"], name: str) -> Optional[NamedQuery]:
        return self._queries.get(qualified_name(model, name))

    def __contains__(self, key: str) -> bool:
        return key in self._queries

    def clear(self) -> None:
        self._queries.clear()


class EntityGraphRegistry:
    """
    Named sets of association paths to fetch eagerly.
    """

    def __init__(self) -> None:
        self._graphs: Dict[str, Tuple[str, ...]] = {}

    def register(self, model: Type["Model"], name: str, paths: Iterable[str]) -> Tuple[str, ...]:
        from .fetch import FetchPlanner

        key = qualified_name(model, name)
        normalized = tuple(dict.fromkeys(path.replace(".", "__") for path in paths))
        # validated now so a typo fails at registration
        FetchPlanner().plan(model, normalized)
        self._graphs[key] = normalized
        return normalized

    def resolve(self, model: Type["Model"], name: str) -> Tuple[str, ...]:
        key = qualified_name(model, name)
        try:
            return self._graphs[key]
        except KeyError:
            raise UnknownNamedQueryError(f"No entity graph registered as '{key}'.") from None

    def clear(self) -> None:
        self._graphs.clear()


named_queries = NamedQueryRegistry()
entity_graphs = EntityGraphRegistry()
