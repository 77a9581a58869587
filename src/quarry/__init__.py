"""
Quarry public package initialization.

Entities, the session (persistence context), repositories and the query
layer are re-exported here; everything else lives in the subpackages.
"""

from .config import Settings, configure, get_settings  # noqa: F401
from .core.model import AuditedModel, Model, ModelConfigurationError  # noqa: F401
from .core.fields import (
    AutoField,
    BooleanField,
    CreatedDateField,
    DateTimeField,
    FloatField,
    IntegerField,
    LastModifiedDateField,
    StringField,
)  # noqa: F401
from .core.relations import ForeignKey, OneToOneField, associate, dissociate  # noqa: F401
from .dialects.base import LockMode  # noqa: F401
from .errors import (  # noqa: F401
    DerivationError,
    DetachedInstanceError,
    FetchPlanError,
    NonUniqueResultError,
    ProjectionArityError,
    QuarryError,
    QueryParameterError,
    QuerySpecificationError,
    QuerySyntaxError,
    StaleContextWarning,
    UnknownNamedQueryError,
)
from .hooks import AuditingListener, hooks  # noqa: F401
from .persistence import Session  # noqa: F401
from .query import (  # noqa: F401
    F,
    Page,
    PageRequest,
    Param,
    Q,
    QuerySet,
    Slice,
    Sort,
    entity_graphs,
    named_queries,
)
from .repository import Repository, derived, modifying, named, query  # noqa: F401
from .schema import SchemaBuilder  # noqa: F401
from .validation import ValidationError  # noqa: F401

__all__ = [
    "Model",
    "AuditedModel",
    "AutoField",
    "BooleanField",
    "CreatedDateField",
    "DateTimeField",
    "FloatField",
    "IntegerField",
    "LastModifiedDateField",
    "StringField",
    "ForeignKey",
    "OneToOneField",
    "associate",
    "dissociate",
    "ModelConfigurationError",
    "LockMode",
    "Settings",
    "configure",
    "get_settings",
    "QuarryError",
    "QuerySpecificationError",
    "DerivationError",
    "QuerySyntaxError",
    "ProjectionArityError",
    "UnknownNamedQueryError",
    "FetchPlanError",
    "QueryParameterError",
    "NonUniqueResultError",
    "DetachedInstanceError",
    "StaleContextWarning",
    "AuditingListener",
    "hooks",
    "Session",
    "QuerySet",
    "Q",
    "F",
    "Param",
    "Page",
    "PageRequest",
    "Slice",
    "Sort",
    "named_queries",
    "entity_graphs",
    "Repository",
    "derived",
    "query",
    "named",
    "modifying",
    "SchemaBuilder",
    "ValidationError",
]
