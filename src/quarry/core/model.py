"""
Entity base classes and the per-class metadata the rest of Quarry reads.

Declaring a subclass of :class:`Model` is all it takes to define an entity:
the metaclass gathers its fields (including copies contributed by abstract
ancestors), adds an ``id`` key when none is declared and registers the
class so string relationship targets can be resolved.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional, Tuple, Type, TypeVar

from ..errors import QuarryError
from ..utils import camel_to_snake
from .fields import AutoField, CreatedDateField, Field, LastModifiedDateField
from .relations import ForeignKey, RelatedField, relation_registry

if TYPE_CHECKING:
    from ..persistence.session import Session


class ModelConfigurationError(QuarryError):
    """Raised when a model class is misconfigured."""


@dataclass
class ModelOptions:
    """
    Metadata of one entity class, available as ``Model._meta``.
    """

    model: Type["Model"]
    table_name: str = ""
    schema: Optional[str] = None
    abstract: bool = False
    fields: "OrderedDict[str, Field]" = field(default_factory=OrderedDict)
    primary_key: Optional[Field] = None
    # related_name -> (child model, foreign key on the child)
    collections: Dict[str, Tuple[Type["Model"], ForeignKey]] = field(default_factory=dict)

    def add_field(self, field_obj: Field) -> None:
        owner = self.model.__name__
        if field_obj.name in self.fields:
            raise ModelConfigurationError(f"Duplicate field name '{field_obj.name}' on model '{owner}'")
        if field_obj.primary_key and self.primary_key not in (None, field_obj):
            raise ModelConfigurationError(f"Multiple primary keys defined on model '{owner}'")
        self.fields[field_obj.name] = field_obj
        if field_obj.primary_key:
            self.primary_key = field_obj

    @property
    def table(self) -> str:
        """Table name, schema-qualified when a schema is configured."""
        return f"{self.schema}.{self.table_name}" if self.schema else self.table_name

    def require_primary_key(self) -> Field:
        if self.primary_key is None:
            raise ModelConfigurationError(f"Model '{self.model.__name__}' does not define a primary key.")
        return self.primary_key

    def get_field(self, name: str) -> Field:
        if name not in self.fields:
            raise KeyError(f"Unknown field '{name}' on model '{self.model.__name__}'")
        return self.fields[name]

    def has_field(self, name: str) -> bool:
        return name in self.fields

    def get_fields(self) -> Iterable[Field]:
        return self.fields.values()

    def _first(self, kind: type) -> Any:
        return next((f for f in self.fields.values() if isinstance(f, kind)), None)

    @property
    def foreign_keys(self) -> List[ForeignKey]:
        return [f for f in self.fields.values() if isinstance(f, ForeignKey)]

    @property
    def created_field(self) -> Optional[CreatedDateField]:
        return self._first(CreatedDateField)

    @property
    def modified_field(self) -> Optional[LastModifiedDateField]:
        return self._first(LastModifiedDateField)


TModel = TypeVar("TModel", bound="Model")


def _options_for(cls: type, attrs: Mapping[str, Any]) -> ModelOptions:
    meta = attrs.get("Meta")
    return ModelOptions(
        model=cls,
        table_name=getattr(meta, "table", None) or camel_to_snake(cls.__name__),
        schema=getattr(meta, "schema", None),
        abstract=bool(getattr(meta, "abstract", False)),
    )


def _inherited_fields(cls: type, declared: Dict[str, Field]) -> Dict[str, Field]:
    """Fresh copies of the fields of abstract ancestors not overridden by ``declared``."""
    inherited: Dict[str, Field] = {}
    for base in reversed(cls.__mro__[1:]):
        base_meta = base.__dict__.get("_meta")
        if base_meta is None or not base_meta.abstract:
            continue
        for name, base_field in base_meta.fields.items():
            if name not in declared:
                inherited[name] = base_field.clone()
    return inherited


def _add_surrogate_key(cls: Type["Model"]) -> None:
    meta = cls._meta
    if "id" in meta.fields:
        raise ModelConfigurationError(
            f"Model '{cls.__name__}' defines a field named 'id' but no primary key. "
            "Either set primary_key=True on that field or define a different name."
        )
    key = AutoField()
    key.contribute_to_class(cls, "id")
    meta.fields = OrderedDict([("id", key), *meta.fields.items()])
    meta.primary_key = key


class ModelMeta(type):
    """
    Metaclass collecting fields into :class:`ModelOptions`.
    """

    def __new__(mcls, name: str, bases: tuple[type, ...], attrs: Dict[str, Any]) -> "ModelMeta":
        if not any(isinstance(base, ModelMeta) for base in bases):
            return super().__new__(mcls, name, bases, attrs)

        declared = {key: attrs.pop(key) for key, value in list(attrs.items()) if isinstance(value, Field)}
        cls = super().__new__(mcls, name, bases, attrs)
        cls._meta = options = _options_for(cls, attrs)

        declared.update(_inherited_fields(cls, declared))
        for attr_name, field_obj in sorted(declared.items(), key=lambda item: item[1].creation_counter):
            field_obj.contribute_to_class(cls, attr_name)
            options.add_field(field_obj)
            if isinstance(field_obj, RelatedField) and not options.abstract:
                relation_registry.register_field(cls, field_obj)

        if options.abstract:
            return cls
        if options.primary_key is None:
            _add_surrogate_key(cls)
        relation_registry.register_model(cls)
        return cls


class Model(metaclass=ModelMeta):
    """
    Base class for entities.

    Instances are plain value holders until a session manages them; all
    persistence goes through :class:`~quarry.persistence.Session`.
    """

    _meta: ModelOptions

    def __init__(self, **kwargs: Any) -> None:
        self._init_state()
        meta = self._meta
        if meta.abstract:
            raise ModelConfigurationError(f"Abstract model '{type(self).__name__}' cannot be instantiated.")

        unknown = sorted(set(kwargs) - set(meta.fields))
        if unknown:
            raise TypeError(f"{type(self).__name__}() got unexpected field(s): {', '.join(unknown)}")

        for name, field_obj in meta.fields.items():
            if name in kwargs:
                setattr(self, name, kwargs[name])
                continue
            if not field_obj.has_default:
                continue
            default_value = field_obj.get_default()
            if default_value is not None:
                setattr(self, name, default_value)

        self._mark_clean()

    def _init_state(self) -> None:
        self._field_values: Dict[str, Any] = {}
        self._initial_state: Dict[str, Any] = {}
        self._related_cache: Dict[str, Any] = {}
        self._session: Optional["Session"] = None
        self._read_only = False

    @classmethod
    def _from_row(cls: Type[TModel], data: Mapping[str, Any]) -> TModel:
        """
        Build an instance from column values keyed by field name.

        Setters are bypassed, so audit timestamps and non-nullable fields
        load exactly as stored.
        """
        instance = cls.__new__(cls)
        instance._init_state()
        for name, field_obj in cls._meta.fields.items():
            if name in data:
                field_obj.load(instance, data[name])
        instance._mark_clean()
        return instance

    def __repr__(self) -> str:
        shown = ", ".join(f"{name}={value!r}" for name, value in self._field_values.items())
        return f"<{type(self).__name__} {shown}>"

    @property
    def pk(self) -> Any:
        return self._field_values.get(self._meta.require_primary_key().require_name())

    @property
    def is_managed(self) -> bool:
        return self._session is not None

    def to_dict(self) -> Dict[str, Any]:
        return {name: self._field_values.get(name) for name in self._meta.fields}

    # Dirty tracking ------------------------------------------------------
    def changed_fields(self) -> List[str]:
        """
        Names of fields whose value differs from the last loaded or flushed
        state.
        """
        for fk in self._meta.foreign_keys:
            fk.sync(self)
        current, initial = self._field_values, self._initial_state
        return [name for name in self._meta.fields if current.get(name) != initial.get(name)]

    def is_dirty(self) -> bool:
        return bool(self.changed_fields())

    def _mark_clean(self) -> None:
        self._initial_state = dict(self._field_values)

    # Validation ----------------------------------------------------------
    def full_clean(self) -> None:
        from ..validation import validate_instance

        validate_instance(self)

    def clean(self) -> None:
        """Override for cross-field checks; raise ValidationError to reject."""

    @classmethod
    def register_hook(cls, event: str, handler) -> None:
        from ..hooks import hooks

        hooks.register(event, handler, model=cls)


class AuditedModel(Model):
    """
    Abstract base adding creation and last-modification timestamps.

    The timestamps are only maintained for models registered with an
    :class:`~quarry.hooks.auditing.AuditingListener`.
    """

    created_date = CreatedDateField()
    last_modified_date = LastModifiedDateField()

    class Meta:
        abstract = True
