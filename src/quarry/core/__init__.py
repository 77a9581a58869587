"""
Core building blocks for Quarry entities and metadata handling.
"""

from .fields import (
    AuditTimestampField,
    AutoField,
    BooleanField,
    CreatedDateField,
    DateTimeField,
    Field,
    FloatField,
    IntegerField,
    LastModifiedDateField,
    StringField,
)
from .model import AuditedModel, Model, ModelConfigurationError, ModelMeta, ModelOptions
from .relations import (
    ForeignKey,
    OneToOneField,
    RelatedCollection,
    RelationshipError,
    associate,
    dissociate,
    relation_registry,
)

__all__ = [
    "AuditTimestampField",
    "AuditedModel",
    "AutoField",
    "BooleanField",
    "CreatedDateField",
    "DateTimeField",
    "Field",
    "FloatField",
    "IntegerField",
    "LastModifiedDateField",
    "Model",
    "ModelConfigurationError",
    "ModelMeta",
    "ModelOptions",
    "StringField",
    "ForeignKey",
    "OneToOneField",
    "RelatedCollection",
    "RelationshipError",
    "associate",
    "dissociate",
    "relation_registry",
]
