"""
Persistent attributes of Quarry entities.

A field is a data descriptor. Assignments through the descriptor are
checked (nullability, choices, type coercion); values hydrated from a
row go through :meth:`Field.load` instead and are trusted. Either way the
value lands in ``instance._field_values``, which dirty tracking compares
against the snapshot taken at load time or by the last flush.
"""

from __future__ import annotations

import copy
import itertools
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, ClassVar, Iterable, Optional, Sequence, cast

from ..errors import AuditFieldError
from ..utils import get_logger

if TYPE_CHECKING:
    from .model import Model


logger = get_logger("core.fields")

_declaration_order = itertools.count()


class FieldError(Exception):
    """Internal exception for field configuration issues."""


class Field:
    """
    Base class for entity field descriptors.

    ``updatable=False`` keeps a column out of every UPDATE, both the ones a
    flush generates and bulk mutations.
    """

    db_type_default: ClassVar[Optional[str]] = None
    type_label: ClassVar[str] = "value"

    def __init__(
        self,
        *,
        primary_key: bool = False,
        unique: bool = False,
        nullable: bool = True,
        updatable: bool = True,
        default: Any = None,
        db_type: Optional[str] = None,
        db_column: Optional[str] = None,
        db_default: Any = None,
        choices: Optional[Sequence[Any]] = None,
        validators: Optional[Iterable[Callable[[Any], None]]] = None,
    ) -> None:
        self.primary_key = primary_key
        self.unique = unique
        self.nullable = nullable
        self.updatable = updatable
        self.default = default
        self.db_type = db_type or self.db_type_default
        self.db_column = db_column
        self.db_default = db_default
        self.choices = tuple(choices) if choices is not None else None
        self.validators = list(validators or [])

        # bound by contribute_to_class
        self.model: type["Model"] | None = None
        self.name: str | None = None
        self.creation_counter = next(_declaration_order)

    def __repr__(self) -> str:
        owner = self.model.__name__ if self.model is not None else "?"
        return f"<{type(self).__name__} {owner}.{self.name}>"

    # Descriptor protocol -------------------------------------------------
    def __get__(self, instance: object | None, owner: type | None = None) -> Any:
        if instance is None:
            return self
        values = cast("Model", instance)._field_values
        name = self.require_name()
        if name in values:
            return values[name]
        default = self.get_default()
        if default is not None:
            values[name] = default
        return default

    def __set__(self, instance: object, value: Any) -> None:
        name = self.require_name()
        if value is None and not self.nullable and not self.primary_key:
            raise ValueError(f"Field '{name}' cannot be None")
        if value is not None and self.choices and value not in self.choices:
            raise ValueError(f"Value '{value}' for field '{name}' not in choices {self.choices}")
        cast("Model", instance)._field_values[name] = None if value is None else self.to_python(value)

    def load(self, instance: "Model", value: Any) -> None:
        """
        Store a value read from the database, or one Quarry assigns itself
        (generated keys, audit stamps). No user-facing checks run.
        """
        instance._field_values[self.require_name()] = self.from_db(value)

    # Binding -------------------------------------------------------------
    def contribute_to_class(self, model: type["Model"], name: str) -> None:
        self.model = model
        self.name = name
        if self.db_column is None:
            self.db_column = name
        setattr(model, name, self)

    def require_name(self) -> str:
        if self.name is None:
            raise FieldError("Field name is not set.")
        return self.name

    def require_model(self) -> type["Model"]:
        if self.model is None:
            raise FieldError("Field model is not set.")
        return self.model

    def column_name(self) -> str:
        return self.db_column or self.require_name()

    # Conversion ----------------------------------------------------------
    def get_default(self) -> Any:
        return self.default() if callable(self.default) else self.default

    @property
    def has_default(self) -> bool:
        return self.default is not None

    def coerce(self, value: Any) -> Any:
        """Convert a non-None value to the field's Python type."""
        return value

    def to_python(self, value: Any) -> Any:
        if value is None:
            return None
        try:
            return self.coerce(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid {self.type_label} {value!r} for field '{self.name}'") from exc

    def from_db(self, value: Any) -> Any:
        return self.to_python(value)

    def to_db(self, value: Any) -> Any:
        return value

    def clone(self) -> "Field":
        """
        Unbound copy used when an abstract base contributes this field to a
        concrete model. The copy sorts after every field declared so far.
        """
        cloned = copy.copy(self)
        cloned.validators = list(self.validators)
        cloned.model = None
        cloned.name = None
        if self.db_column == self.name:
            cloned.db_column = None
        cloned.creation_counter = next(_declaration_order)
        return cloned


class IntegerField(Field):
    db_type_default = "INTEGER"
    type_label = "integer"

    def coerce(self, value: Any) -> int:
        return int(value)


class AutoField(IntegerField):
    """
    Database-generated integer key; added to every concrete model that does
    not declare a primary key of its own.
    """

    def __init__(self) -> None:
        super().__init__(primary_key=True, nullable=False, updatable=False)


class FloatField(Field):
    db_type_default = "REAL"
    type_label = "float"

    def coerce(self, value: Any) -> float:
        return float(value)


_TRUE_WORDS = frozenset({"true", "t", "1", "yes"})
_FALSE_WORDS = frozenset({"false", "f", "0", "no"})


class BooleanField(Field):
    db_type_default = "BOOLEAN"
    type_label = "boolean"

    def __init__(self, *, default: Any = False, **kwargs: Any) -> None:
        kwargs.setdefault("nullable", False)
        super().__init__(default=default, **kwargs)

    def coerce(self, value: Any) -> bool:
        if isinstance(value, (bool, int, float)):
            return bool(value)
        if isinstance(value, str):
            word = value.strip().lower()
            if word in _TRUE_WORDS:
                return True
            if word in _FALSE_WORDS:
                return False
        raise ValueError("not a boolean")


class StringField(Field):
    db_type_default = "TEXT"
    type_label = "string"

    def __init__(self, *, max_length: int = 255, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.max_length = max_length

    def to_python(self, value: Any) -> str | None:
        if value is None:
            return None
        text = str(value)
        if self.max_length and len(text) > self.max_length:
            raise ValueError(f"Value for field '{self.name}' exceeds max_length {self.max_length}")
        return text


class DateTimeField(Field):
    """Datetimes stored as ISO-8601 text. Audit timestamps are stamped by the listener."""

    db_type_default = "TEXT"
    type_label = "datetime"

    def coerce(self, value: Any) -> datetime:
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            return datetime.fromisoformat(value)
        raise TypeError(type(value).__name__)

    def to_db(self, value: Any) -> Any:
        return value.isoformat() if isinstance(value, datetime) else value


class AuditTimestampField(DateTimeField):
    """
    Timestamp maintained by :class:`~quarry.hooks.auditing.AuditingListener`.

    Callers may read it but not write it. An assignment is ignored, or
    rejected with :class:`~quarry.errors.AuditFieldError` when the field (or
    the process settings) is strict.
    """

    def __init__(self, *, strict: bool | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("nullable", True)
        super().__init__(**kwargs)
        self.strict = strict

    def __set__(self, instance: object, value: Any) -> None:
        name = self.require_name()
        if self._is_strict():
            raise AuditFieldError(
                f"'{name}' is maintained by the auditing listener and cannot be assigned."
            )
        logger.debug("Ignoring assignment to audit field %s.%s", type(instance).__name__, name)

    def stamp(self, instance: "Model", moment: datetime) -> None:
        instance._field_values[self.require_name()] = moment

    def _is_strict(self) -> bool:
        if self.strict is not None:
            return self.strict
        from ..config import get_settings

        return get_settings().strict_audit_fields


class CreatedDateField(AuditTimestampField):
    """Creation time; written by the first insert and never updated."""

    def __init__(self, **kwargs: Any) -> None:
        kwargs["updatable"] = False
        super().__init__(**kwargs)


class LastModifiedDateField(AuditTimestampField):
    """Time of the latest persisted modification."""
