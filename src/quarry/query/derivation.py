"""
Derive queries from repository method names.

A method name reads as a sentence over the entity's fields::

    find_by_username_and_age_greater_than
    find_top3_by_team_name_order_by_age_desc
    count_by_age_between
    exists_by_username_ignore_case
    delete_by_team_is_null

Grammar (words separated by ``_``)::

    <subject> [first|first<N>|top<N>] [distinct] [by <predicate>] [order by <orders>]

``and`` binds tighter than ``or``. Field names are matched greedily against
the model, so ``team_name`` resolves to ``team.name`` when ``Member`` has a
``team`` association but no ``team_name`` field; a double underscore
(``team__name``) forces the traversal. Each predicate part consumes the
parameters its operator needs, named after the field path.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Tuple, Type

from ..core.fields import StringField
from ..errors import DerivationError, QueryParameterError
from .compiler import resolve_path
from .expressions import Param, Q
from .spec import OrderBy, Projection, QuerySpec

if TYPE_CHECKING:
    from ..core.model import Model


class Subject(enum.Enum):
    FIND = "find"
    COUNT = "count"
    EXISTS = "exists"
    DELETE = "delete"


SUBJECTS = {
    "find": Subject.FIND,
    "read": Subject.FIND,
    "get": Subject.FIND,
    "query": Subject.FIND,
    "search": Subject.FIND,
    "stream": Subject.FIND,
    "count": Subject.COUNT,
    "exists": Subject.EXISTS,
    "delete": Subject.DELETE,
    "remove": Subject.DELETE,
}

# word sequence -> (lookup, number of parameters, fixed value for zero-parameter operators)
OPERATORS: Dict[Tuple[str, ...], Tuple[str, int, Any]] = {
    ("is", "not", "null"): ("isnull", 0, False),
    ("not", "null"): ("isnull", 0, False),
    ("is", "null"): ("isnull", 0, True),
    ("null",): ("isnull", 0, True),
    ("is", "true"): ("exact", 0, True),
    ("true",): ("exact", 0, True),
    ("is", "false"): ("exact", 0, False),
    ("false",): ("exact", 0, False),
    ("is", "not", "in"): ("not_in", 1, None),
    ("not", "in"): ("not_in", 1, None),
    ("is", "in"): ("in", 1, None),
    ("in",): ("in", 1, None),
    ("is", "not", "like"): ("not_like", 1, None),
    ("not", "like"): ("not_like", 1, None),
    ("is", "like"): ("like", 1, None),
    ("like",): ("like", 1, None),
    ("is", "not"): ("ne", 1, None),
    ("not",): ("ne", 1, None),
    ("is", "greater", "than", "equal"): ("gte", 1, None),
    ("greater", "than", "equal"): ("gte", 1, None),
    ("is", "greater", "than"): ("gt", 1, None),
    ("greater", "than"): ("gt", 1, None),
    ("is", "after"): ("gt", 1, None),
    ("after",): ("gt", 1, None),
    ("is", "less", "than", "equal"): ("lte", 1, None),
    ("less", "than", "equal"): ("lte", 1, None),
    ("is", "less", "than"): ("lt", 1, None),
    ("less", "than"): ("lt", 1, None),
    ("is", "before"): ("lt", 1, None),
    ("before",): ("lt", 1, None),
    ("is", "between"): ("between", 2, None),
    ("between",): ("between", 2, None),
    ("is", "starting", "with"): ("startswith", 1, None),
    ("starting", "with"): ("startswith", 1, None),
    ("starts", "with"): ("startswith", 1, None),
    ("is", "ending", "with"): ("endswith", 1, None),
    ("ending", "with"): ("endswith", 1, None),
    ("ends", "with"): ("endswith", 1, None),
    ("is", "containing"): ("contains", 1, None),
    ("containing",): ("contains", 1, None),
    ("contains",): ("contains", 1, None),
    ("is", "equal"): ("exact", 1, None),
    ("equals",): ("exact", 1, None),
    ("is",): ("exact", 1, None),
}
_MAX_OPERATOR_WORDS = max(len(words) for words in OPERATORS)

_LIMIT_RE = re.compile(r"^(first|top)(\d*)$")


@dataclass(frozen=True)
class DerivedQuery:
    method: str
    subject: Subject
    spec: QuerySpec
    parameters: Tuple[str, ...]

    def bind(self, args: Sequence[Any], kwargs: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Map call arguments onto parameter names: positionally in declaration
        order, or by keyword.
        """
        return bind_arguments(self.method, self.parameters, args, kwargs)


def bind_arguments(
    method: str, names: Sequence[str], args: Sequence[Any], kwargs: Mapping[str, Any]
) -> Dict[str, Any]:
    if len(args) > len(names):
        raise QueryParameterError(
            f"{method}() takes {len(names)} query argument(s) but {len(args)} were given."
        )
    bound = dict(zip(names, args))
    for key, value in kwargs.items():
        if key not in names:
            raise QueryParameterError(f"{method}() got an unexpected parameter '{key}'.")
        if key in bound:
            raise QueryParameterError(f"{method}() got multiple values for parameter '{key}'.")
        bound[key] = value
    missing = [name for name in names if name not in bound]
    if missing:
        raise QueryParameterError(f"{method}() is missing parameter(s): {', '.join(missing)}.")
    return bound


class _Words:
    def __init__(self, method: str, words: List[str]) -> None:
        self.method = method
        self.words = words
        self.index = 0

    def peek(self, offset: int = 0) -> Optional[str]:
        position = self.index + offset
        return self.words[position] if position < len(self.words) else None

    def at_end(self) -> bool:
        return self.index >= len(self.words)

    def accept(self, *sequence: str) -> bool:
        if tuple(self.words[self.index : self.index + len(sequence)]) == sequence:
            self.index += len(sequence)
            return True
        return False

    def error(self, reason: str) -> DerivationError:
        return DerivationError(self.method, reason)


class MethodNameDeriver:
    def __init__(self, model: Type["Model"]) -> None:
        self.model = model
        self._names: Dict[str, int] = {}

    def derive(self, method: str) -> DerivedQuery:
        words = method.split("_")
        subject = SUBJECTS.get(words[0])
        if subject is None:
            raise DerivationError(
                method, f"must start with one of {', '.join(sorted(SUBJECTS))}"
            )

        cursor = _Words(method, words[1:])
        limit: Optional[int] = None
        distinct = False
        # Words between the subject and "by" only describe the result.
        while not cursor.at_end() and cursor.peek() != "by" and not self._at_order_by(cursor):
            word = cursor.words[cursor.index]
            match = _LIMIT_RE.match(word)
            if match:
                limit = int(match.group(2) or 1)
                if limit < 1:
                    raise cursor.error("result limit must be at least 1")
            elif word == "distinct":
                distinct = True
            cursor.index += 1

        self._names = {}
        where: Optional[Q] = None
        parameters: List[str] = []
        if cursor.accept("by") and not self._at_order_by(cursor):
            where = self._parse_or(cursor, parameters)
            if cursor.accept("all", "ignore", "case") or cursor.accept("all", "ignoring", "case"):
                where = self._ignore_case_all(where)

        ordering: List[OrderBy] = []
        if cursor.accept("order", "by"):
            ordering.append(self._parse_order(cursor))
            while not cursor.at_end():
                cursor.accept("and")
                ordering.append(self._parse_order(cursor))
        if not cursor.at_end():
            raise cursor.error(f"unexpected '{'_'.join(cursor.words[cursor.index:])}'")

        if subject is Subject.COUNT:
            projection = Projection.count(distinct=distinct)
        elif subject is Subject.EXISTS:
            projection = Projection.exists()
        else:
            projection = Projection.entity()

        spec = QuerySpec(
            model=self.model,
            projection=projection,
            where=where,
            ordering=tuple(ordering),
            limit=limit,
            distinct=distinct and subject is not Subject.COUNT,
            source=f"{self.model.__name__}.{method}",
        )
        return DerivedQuery(method, subject, spec, tuple(parameters))

    @staticmethod
    def _at_order_by(cursor: _Words) -> bool:
        return cursor.peek() == "order" and cursor.peek(1) == "by"

    # ------------------------------------------------------------------ #
    # Predicate
    # ------------------------------------------------------------------ #
    def _parse_or(self, cursor: _Words, parameters: List[str]) -> Q:
        node = self._parse_and(cursor, parameters)
        while cursor.accept("or"):
            node = node | self._parse_and(cursor, parameters)
        return node

    def _parse_and(self, cursor: _Words, parameters: List[str]) -> Q:
        node = self._parse_part(cursor, parameters)
        while cursor.accept("and"):
            node = node & self._parse_part(cursor, parameters)
        return node

    def _parse_part(self, cursor: _Words, parameters: List[str]) -> Q:
        path = self._match_path(cursor)
        lookup, arity, fixed = "exact", 1, None
        for size in range(_MAX_OPERATOR_WORDS, 0, -1):
            candidate = tuple(cursor.words[cursor.index : cursor.index + size])
            if len(candidate) == size and candidate in OPERATORS:
                lookup, arity, fixed = OPERATORS[candidate]
                cursor.index += size
                break

        if cursor.accept("ignore", "case") or cursor.accept("ignoring", "case"):
            if lookup != "exact" or arity != 1:
                raise cursor.error(f"ignore_case only applies to equality, not '{lookup}' on '{path}'")
            lookup = "iexact"

        base = self._parameter_name(path)
        if arity == 0:
            return Q((f"{path}__{lookup}", fixed))
        if arity == 2:
            low, high = f"{base}_from", f"{base}_to"
            parameters.extend([low, high])
            return Q((f"{path}__{lookup}", (Param(low), Param(high))))
        parameters.append(base)
        return Q((f"{path}__{lookup}", Param(base)))

    def _parameter_name(self, path: str) -> str:
        base = path.replace("__", "_")
        seen = self._names.get(base, 0) + 1
        self._names[base] = seen
        return base if seen == 1 else f"{base}_{seen}"

    def _match_path(self, cursor: _Words) -> str:
        """
        Consume the longest run of words naming a field, following
        associations while the following words name a field of the target.
        """
        model = self.model
        segments: List[str] = []
        while True:
            matched = self._longest_field(model, cursor)
            if matched is None:
                if segments:
                    # the association itself is the operand
                    return "__".join(segments)
                raise cursor.error(
                    f"no field of {model.__name__} matches '{'_'.join(cursor.words[cursor.index:]) or '<nothing>'}'"
                )
            name, size = matched
            cursor.index += size
            segments.append(name)
            resolved = resolve_path(self.model, "__".join(segments))
            if resolved.field is not None:
                return resolved.path
            # Association: traverse when the next words name a field of the target.
            model = resolved.model
            if cursor.peek() == "":
                cursor.index += 1
                continue
            if self._longest_field(model, cursor) is None or self._starts_operator(cursor):
                return resolved.path

    @staticmethod
    def _longest_field(model: Type["Model"], cursor: _Words) -> Optional[Tuple[str, int]]:
        meta = model._meta
        for end in range(len(cursor.words), cursor.index, -1):
            words = cursor.words[cursor.index : end]
            if "" in words:
                continue
            name = "_".join(words)
            if meta.has_field(name) or name in meta.collections:
                return name, end - cursor.index
        return None

    @staticmethod
    def _starts_operator(cursor: _Words) -> bool:
        for size in range(_MAX_OPERATOR_WORDS, 0, -1):
            if tuple(cursor.words[cursor.index : cursor.index + size]) in OPERATORS:
                return True
        return cursor.peek() in ("and", "or", "order", None)

    def _ignore_case_all(self, node: Q) -> Q:
        result = Q()
        result.connector = node.connector
        result.negated = node.negated
        for child in node.children:
            if isinstance(child, Q):
                result.children.append(self._ignore_case_all(child))
                continue
            key, value = child
            path, _, lookup = key.rpartition("__")
            field_obj = resolve_path(self.model, path).field
            if lookup == "exact" and isinstance(field_obj, StringField):
                key = f"{path}__iexact"
            result.children.append((key, value))
        return result

    # ------------------------------------------------------------------ #
    # Ordering
    # ------------------------------------------------------------------ #
    def _parse_order(self, cursor: _Words) -> OrderBy:
        if cursor.at_end():
            raise cursor.error("'order_by' needs at least one field")
        path = self._match_path(cursor)
        if cursor.accept("desc"):
            return OrderBy(path, True)
        cursor.accept("asc")
        return OrderBy(path, False)


def derive_query(model: Type["Model"], method: str) -> DerivedQuery:
    return MethodNameDeriver(model).derive(method)
