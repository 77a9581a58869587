"""
Parser for Quarry's entity query language.

Statements address entities and their fields rather than tables and
columns::

    select m from Member m left join fetch m.team t
    where m.age >= :age and t.name in :names order by m.age desc

    select new MemberDto(m.id, m.username, t.name) from Member m join m.team t

    update Member m set m.age = m.age + 1 where m.age >= :age

Parameters are named (``:name``); positional placeholders are rejected.
The result is the same IR that method-name derivation produces.
"""

from __future__ import annotations

import inspect
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple, Type, Union

from ..core.relations import relation_registry
from ..errors import ProjectionArityError, QuerySpecificationError, QuerySyntaxError
from .compiler import resolve_path
from .expressions import Combined, Expression, F, Param, Q, Value
from .spec import (
    Join,
    JoinKind,
    MutationKind,
    MutationSpec,
    OrderBy,
    Projection,
    QuerySpec,
)

if TYPE_CHECKING:
    from ..core.model import Model


KEYWORDS = frozenset(
    """
    select distinct from as join left outer inner fetch where and or not in like
    between is null true false order by asc desc update set delete new count
    """.split()
)

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<string>'(?:[^']|'')*')
  | (?P<number>\d+(?:\.\d+)?)
  | (?P<param>:[A-Za-z_][A-Za-z0-9_]*)
  | (?P<positional>\?\d*)
  | (?P<ident>[A-Za-z_][A-Za-z0-9_]*)
  | (?P<op><>|!=|<=|>=|=|<|>|\(|\)|,|\.|\+|-|\*|/)
    """,
    re.VERBOSE,
)

_COMPARISONS = {
    "=": "exact",
    "<>": "ne",
    "!=": "ne",
    ">": "gt",
    ">=": "gte",
    "<": "lt",
    "<=": "lte",
}

_MIRRORED = {"exact": "exact", "ne": "ne", "gt": "lt", "gte": "lte", "lt": "gt", "lte": "gte"}


@dataclass(frozen=True)
class Token:
    kind: str
    value: Any
    position: int

    def is_keyword(self, *words: str) -> bool:
        return self.kind == "keyword" and self.value in words

    def is_op(self, *ops: str) -> bool:
        return self.kind == "op" and self.value in ops


def tokenize(text: str) -> List[Token]:
    tokens: List[Token] = []
    position = 0
    while position < len(text):
        match = _TOKEN_RE.match(text, position)
        if match is None:
            raise QuerySyntaxError(f"Unexpected character {text[position]!r}", text=text, position=position)
        kind = match.lastgroup
        raw = match.group()
        if kind == "positional":
            raise QuerySyntaxError(
                f"Positional parameter '{raw}' is not supported; use a named parameter such as ':value'",
                text=text,
                position=position,
            )
        if kind == "string":
            tokens.append(Token("string", raw[1:-1].replace("''", "'"), position))
        elif kind == "number":
            tokens.append(Token("number", float(raw) if "." in raw else int(raw), position))
        elif kind == "param":
            tokens.append(Token("param", raw[1:], position))
        elif kind == "ident":
            lowered = raw.lower()
            if lowered in KEYWORDS:
                tokens.append(Token("keyword", lowered, position))
            else:
                tokens.append(Token("ident", raw, position))
        elif kind == "op":
            tokens.append(Token("op", raw, position))
        position = match.end()
    tokens.append(Token("eof", None, len(text)))
    return tokens


Statement = Union[QuerySpec, MutationSpec]


class QueryParser:
    """
    Recursive-descent parser producing a :class:`QuerySpec` or
    :class:`MutationSpec`.

    ``model`` is the entity a repository declared the query on; it takes
    precedence over the global registry when resolving entity names.
    ``types`` maps constructor names used in ``new Name(...)`` to classes.
    """

    def __init__(
        self,
        text: str,
        *,
        model: Optional[Type["Model"]] = None,
        types: Optional[Mapping[str, type]] = None,
    ) -> None:
        self.text = text
        self.model_hint = model
        self.types = dict(types or {})
        self.tokens = tokenize(text)
        self.index = 0
        self.root: Optional[Type["Model"]] = None
        # alias -> path relative to the root entity ("" is the root itself)
        self.aliases: Dict[str, str] = {}

    # ------------------------------------------------------------------ #
    # Token helpers
    # ------------------------------------------------------------------ #
    @property
    def current(self) -> Token:
        return self.tokens[self.index]

    def advance(self) -> Token:
        token = self.tokens[self.index]
        if token.kind != "eof":
            self.index += 1
        return token

    def accept_keyword(self, *words: str) -> Optional[Token]:
        if self.current.is_keyword(*words):
            return self.advance()
        return None

    def expect_keyword(self, word: str) -> Token:
        token = self.accept_keyword(word)
        if token is None:
            self.fail(f"Expected '{word}'")
        return token  # type: ignore[return-value]

    def accept_op(self, *ops: str) -> Optional[Token]:
        if self.current.is_op(*ops):
            return self.advance()
        return None

    def expect_op(self, op: str) -> Token:
        token = self.accept_op(op)
        if token is None:
            self.fail(f"Expected '{op}'")
        return token  # type: ignore[return-value]

    def expect_ident(self, what: str) -> str:
        if self.current.kind != "ident":
            self.fail(f"Expected {what}")
        return self.advance().value

    def fail(self, message: str) -> None:
        token = self.current
        found = "end of query" if token.kind == "eof" else repr(token.value)
        raise QuerySyntaxError(f"{message}, found {found}", text=self.text, position=token.position)

    # ------------------------------------------------------------------ #
    # Statements
    # ------------------------------------------------------------------ #
    def parse(self) -> Statement:
        if self.accept_keyword("select"):
            statement: Statement = self.parse_select()
        elif self.accept_keyword("update"):
            statement = self.parse_update()
        elif self.accept_keyword("delete"):
            statement = self.parse_delete()
        else:
            self.fail("Expected 'select', 'update' or 'delete'")
        if self.current.kind != "eof":
            self.fail("Unexpected trailing input")
        return statement

    def parse_select(self) -> QuerySpec:
        distinct = bool(self.accept_keyword("distinct"))
        # The selection refers to aliases declared later, so skip it first.
        selection_start = self.index
        self.skip_until_keyword("from")
        self.expect_keyword("from")
        self.parse_entity()

        joins: List[Join] = []
        batches: List[str] = []
        while self.current.is_keyword("join", "left", "inner"):
            self.parse_join(joins, batches)
        after_joins = self.index

        self.index = selection_start
        projection = self.parse_selection()
        self.expect_keyword("from")
        self.index = after_joins

        where = self.parse_where()
        ordering: List[OrderBy] = []
        if self.accept_keyword("order"):
            self.expect_keyword("by")
            ordering.append(self.parse_order())
            while self.accept_op(","):
                ordering.append(self.parse_order())

        return QuerySpec(
            model=self.require_root(),
            projection=projection,
            where=where,
            joins=tuple(joins),
            ordering=tuple(ordering),
            distinct=distinct,
            batches=tuple(batches),
            source=self.text,
        )

    def parse_update(self) -> MutationSpec:
        self.parse_entity()
        self.expect_keyword("set")
        assignments = [self.parse_assignment()]
        while self.accept_op(","):
            assignments.append(self.parse_assignment())
        where = self.parse_where()
        return MutationSpec(
            self.require_root(), MutationKind.UPDATE, tuple(assignments), where=where, source=self.text
        )

    def parse_delete(self) -> MutationSpec:
        self.accept_keyword("from")
        self.parse_entity()
        where = self.parse_where()
        return MutationSpec(self.require_root(), MutationKind.DELETE, where=where, source=self.text)

    def skip_until_keyword(self, word: str) -> None:
        depth = 0
        while self.current.kind != "eof":
            if self.current.is_op("("):
                depth += 1
            elif self.current.is_op(")"):
                depth -= 1
            elif depth == 0 and self.current.is_keyword(word):
                return
            self.advance()
        self.fail(f"Expected '{word}'")

    # ------------------------------------------------------------------ #
    # FROM / JOIN
    # ------------------------------------------------------------------ #
    def parse_entity(self) -> None:
        position = self.current.position
        name = self.expect_ident("an entity name")
        self.root = self.resolve_entity(name, position)
        alias = self.parse_alias()
        if alias:
            self.aliases[alias] = ""

    def require_root(self) -> Type["Model"]:
        if self.root is None:
            raise QuerySyntaxError("The query names no entity", text=self.text, position=0)
        return self.root

    def resolve_entity(self, name: str, position: int) -> Type["Model"]:
        if self.model_hint is not None and self.model_hint.__name__ == name:
            return self.model_hint
        model = relation_registry.resolve(name)
        if model is None:
            raise QuerySyntaxError(f"Unknown entity '{name}'", text=self.text, position=position)
        return model

    def parse_alias(self) -> Optional[str]:
        if self.accept_keyword("as"):
            return self.expect_ident("an alias")
        if self.current.kind == "ident":
            return self.advance().value
        return None

    def parse_join(self, joins: List[Join], batches: List[str]) -> None:
        kind = JoinKind.INNER
        if self.accept_keyword("left"):
            self.accept_keyword("outer")
            kind = JoinKind.LEFT
        else:
            self.accept_keyword("inner")
        self.expect_keyword("join")
        fetch = bool(self.accept_keyword("fetch"))
        position = self.current.position
        path = self.parse_path()
        alias = self.parse_alias()

        resolved = self.resolve(path, position)
        if resolved.field is not None:
            raise QuerySyntaxError(f"Cannot join '{path}': it is not an association", text=self.text, position=position)
        if fetch and resolved.is_collection:
            # Collections are loaded by one batched query instead of a row-multiplying join.
            batches.append(path)
            return
        joins.append(Join(path, kind, fetch))
        if alias:
            self.aliases[alias] = path

    # ------------------------------------------------------------------ #
    # SELECT list
    # ------------------------------------------------------------------ #
    def parse_selection(self) -> Projection:
        if self.accept_keyword("new"):
            return self.parse_constructor()
        if self.accept_keyword("count"):
            self.expect_op("(")
            distinct = bool(self.accept_keyword("distinct"))
            path = self.parse_path()
            self.expect_op(")")
            return Projection.count(path or None, distinct=distinct)

        items = [self.parse_path_item()]
        while self.accept_op(","):
            items.append(self.parse_path_item())
        if len(items) == 1 and items[0][1]:
            return Projection.entity(items[0][0] or None)
        if any(is_entity for _, is_entity in items):
            self.fail("Selecting several entities in one row is not supported")
        return Projection.scalar(*(path for path, _ in items))

    def parse_path_item(self) -> Tuple[str, bool]:
        position = self.current.position
        path = self.parse_path()
        resolved = self.resolve(path, position)
        return path, resolved.field is None

    def parse_constructor(self) -> Projection:
        position = self.current.position
        name = self.expect_ident("a constructor name")
        while self.accept_op("."):
            name = self.expect_ident("a constructor name")
        target = self.types.get(name)
        if target is None:
            raise QuerySpecificationError(
                f"Unknown projection type '{name}' at offset {position}; pass it to the query declaration."
            )
        self.expect_op("(")
        paths = [self.parse_path_item()[0]]
        while self.accept_op(","):
            paths.append(self.parse_path_item()[0])
        self.expect_op(")")
        check_constructor_arity(target, len(paths))
        return Projection.constructor(target, *paths)

    # ------------------------------------------------------------------ #
    # Paths
    # ------------------------------------------------------------------ #
    def parse_path(self) -> str:
        position = self.current.position
        first = self.expect_ident("a path")
        segments = [first]
        while self.accept_op("."):
            segments.append(self.expect_ident("a field name"))
        if first in self.aliases:
            base = self.aliases[first]
            rest = segments[1:]
        elif not self.aliases:
            base, rest = "", segments
        else:
            raise QuerySyntaxError(f"Unknown alias '{first}'", text=self.text, position=position)
        return "__".join(part for part in [base, *rest] if part)

    def resolve(self, path: str, position: int):
        try:
            return resolve_path(self.require_root(), path)
        except QuerySpecificationError as exc:
            raise QuerySyntaxError(str(exc), text=self.text, position=position) from exc

    def parse_order(self) -> OrderBy:
        position = self.current.position
        path = self.parse_path()
        self.resolve(path, position)
        descending = False
        if self.accept_keyword("desc"):
            descending = True
        else:
            self.accept_keyword("asc")
        return OrderBy(path, descending)

    def parse_assignment(self) -> Tuple[str, Any]:
        position = self.current.position
        path = self.parse_path()
        self.resolve(path, position)
        self.expect_op("=")
        return path, self.parse_arith()

    # ------------------------------------------------------------------ #
    # WHERE
    # ------------------------------------------------------------------ #
    def parse_where(self) -> Optional[Q]:
        if self.accept_keyword("where"):
            return self.parse_or()
        return None

    def parse_or(self) -> Q:
        node = self.parse_and()
        while self.accept_keyword("or"):
            node = node | self.parse_and()
        return node

    def parse_and(self) -> Q:
        node = self.parse_not()
        while self.accept_keyword("and"):
            node = node & self.parse_not()
        return node

    def parse_not(self) -> Q:
        if self.accept_keyword("not"):
            return ~self.parse_not()
        return self.parse_predicate()

    def parse_predicate(self) -> Q:
        if self.current.is_op("("):
            start = self.index
            self.advance()
            try:
                node = self.parse_or()
                self.expect_op(")")
            except QuerySyntaxError:
                node = None
            if node is not None and not self.current.kind == "op":
                return node
            if node is not None and self.current.is_op(")", ","):
                return node
            # An arithmetic operand in parentheses: parse again as a comparison.
            self.index = start
        return self.parse_comparison()

    def parse_comparison(self) -> Q:
        position = self.current.position
        lhs = self.parse_arith()

        negated = bool(self.accept_keyword("not"))
        if self.accept_keyword("in"):
            return self.leaf(lhs, "not_in" if negated else "in", self.parse_in_list(), position)
        if self.accept_keyword("like"):
            return self.leaf(lhs, "not_like" if negated else "like", self.parse_arith(), position)
        if self.accept_keyword("between"):
            low = self.parse_arith()
            self.expect_keyword("and")
            high = self.parse_arith()
            node = self.leaf(lhs, "between", (self.unwrap(low), self.unwrap(high)), position)
            return ~node if negated else node
        if negated:
            self.fail("Expected 'in', 'like' or 'between' after 'not'")

        if self.accept_keyword("is"):
            is_not = bool(self.accept_keyword("not"))
            self.expect_keyword("null")
            return self.leaf(lhs, "isnull", not is_not, position)

        token = self.current
        if token.kind == "op" and token.value in _COMPARISONS:
            self.advance()
            rhs = self.parse_arith()
            return self.leaf(lhs, _COMPARISONS[token.value], rhs, position)
        self.fail("Expected a comparison operator")
        raise AssertionError("unreachable")

    def parse_in_list(self) -> Any:
        if self.current.kind == "param":
            return Param(self.advance().value)
        self.expect_op("(")
        items = [self.unwrap(self.parse_arith())]
        while self.accept_op(","):
            items.append(self.unwrap(self.parse_arith()))
        self.expect_op(")")
        return tuple(items)

    def leaf(self, lhs: Expression, lookup: str, rhs: Any, position: int) -> Q:
        if not isinstance(lhs, F):
            if isinstance(rhs, F) and lookup in _MIRRORED:
                lhs, rhs, lookup = rhs, lhs, _MIRRORED[lookup]
            else:
                raise QuerySyntaxError(
                    "The left side of a comparison must be a path", text=self.text, position=position
                )
        path = lhs.path
        if not path:
            path = self.require_root()._meta.require_primary_key().require_name()
        return Q((f"{path}__{lookup}", self.unwrap(rhs)))

    @staticmethod
    def unwrap(value: Any) -> Any:
        if isinstance(value, Value):
            return value.value
        return value

    # ------------------------------------------------------------------ #
    # Arithmetic operands
    # ------------------------------------------------------------------ #
    def parse_arith(self) -> Expression:
        node = self.parse_term()
        while True:
            token = self.accept_op("+", "-")
            if token is None:
                return node
            node = Combined(node, token.value, self.parse_term())

    def parse_term(self) -> Expression:
        node = self.parse_factor()
        while True:
            token = self.accept_op("*", "/")
            if token is None:
                return node
            node = Combined(node, token.value, self.parse_factor())

    def parse_factor(self) -> Expression:
        token = self.current
        if token.kind == "param":
            self.advance()
            return Param(token.value)
        if token.kind in ("number", "string"):
            self.advance()
            return Value(token.value)
        if token.is_keyword("true", "false"):
            self.advance()
            return Value(token.value == "true")
        if token.is_keyword("null"):
            self.advance()
            return Value(None)
        if token.is_op("-") and self.tokens[self.index + 1].kind == "number":
            self.advance()
            return Value(-self.advance().value)
        if token.is_op("("):
            self.advance()
            node = self.parse_arith()
            self.expect_op(")")
            return node
        if token.kind == "ident":
            position = token.position
            path = self.parse_path()
            self.resolve(path, position)
            return F(path)
        self.fail("Expected an operand")
        raise AssertionError("unreachable")


def check_constructor_arity(target: type, count: int) -> None:
    """
    Raise :class:`ProjectionArityError` unless ``target`` accepts ``count``
    positional arguments.
    """
    try:
        signature = inspect.signature(target)
    except (TypeError, ValueError):
        return
    try:
        signature.bind(*([None] * count))
    except TypeError as exc:
        raise ProjectionArityError(
            f"{target.__name__} cannot be built from {count} column(s): {exc}"
        ) from exc


def parse_query(
    text: str,
    *,
    model: Optional[Type["Model"]] = None,
    types: Optional[Mapping[str, type]] = None,
) -> Statement:
    return QueryParser(text, model=model, types=types).parse()
