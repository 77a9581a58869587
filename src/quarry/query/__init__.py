"""
Query construction, derivation and execution.
"""

from .bulk import BulkMutationExecutor
from .compiler import CompiledQuery, SQLCompiler
from .derivation import DerivedQuery, MethodNameDeriver, derive_query
from .executor import QueryExecutor
from .expressions import F, Param, Q, Value
from .fetch import FetchPlan, FetchPlanner
from .named import EntityGraphRegistry, NamedQueryRegistry, entity_graphs, named_queries
from .paging import Direction, Order, Page, PageRequest, Paginator, Slice, Sort
from .parser import parse_query
from .queryset import QuerySet
from .spec import Join, JoinKind, MutationKind, MutationSpec, OrderBy, Projection, ProjectionKind, QuerySpec

__all__ = [
    "BulkMutationExecutor",
    "CompiledQuery",
    "DerivedQuery",
    "Direction",
    "EntityGraphRegistry",
    "F",
    "FetchPlan",
    "FetchPlanner",
    "Join",
    "JoinKind",
    "MethodNameDeriver",
    "MutationKind",
    "MutationSpec",
    "NamedQueryRegistry",
    "Order",
    "OrderBy",
    "Page",
    "PageRequest",
    "Paginator",
    "Param",
    "Projection",
    "ProjectionKind",
    "Q",
    "QueryExecutor",
    "QuerySet",
    "QuerySpec",
    "SQLCompiler",
    "Slice",
    "Sort",
    "Value",
    "derive_query",
    "entity_graphs",
    "named_queries",
    "parse_query",
]
