"""
Repositories: CRUD plus declared query methods over one entity type.
"""

from .base import Repository
from .declarations import (
    DerivedMethod,
    ModifyingMethod,
    NamedQueryMethod,
    QueryMethod,
    StringQueryMethod,
    derived,
    modifying,
    named,
    query,
)

__all__ = [
    "DerivedMethod",
    "ModifyingMethod",
    "NamedQueryMethod",
    "QueryMethod",
    "Repository",
    "StringQueryMethod",
    "derived",
    "modifying",
    "named",
    "query",
]
