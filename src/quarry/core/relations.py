"""
Relationship field implementations and registry utilities.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple, Type

from ..errors import DetachedInstanceError, QuarryError
from .fields import Field

if TYPE_CHECKING:
    from .model import Model


class RelationshipError(QuarryError, RuntimeError):
    pass


class RelatedField(Field):
    """
    Base class for relationship fields (FK, O2O).
    """

    relation_type = "many-to-one"

    def __init__(
        self,
        to: Type | str,
        *,
        related_name: Optional[str] = None,
        on_delete: str = "CASCADE",
        db_type: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("db_type", db_type or "INTEGER")
        super().__init__(**kwargs)
        self.to = to
        self.related_name = related_name
        self.on_delete = on_delete
        self.remote_model: Optional[Type["Model"]] = to if isinstance(to, type) else None

    def resolve_model(self, model: Type["Model"]) -> None:
        self.remote_model = model

    def require_remote(self) -> Type["Model"]:
        if self.remote_model is None:
            raise RelationshipError(
                f"Target '{self.to}' of {self.require_model().__name__}.{self.name} is not registered."
            )
        return self.remote_model


class ForeignKey(RelatedField):
    """
    Owning side of a many-to-one association.

    The row stores the target's primary key (``<name>_id`` by default). The
    target instance is loaded lazily through the owning session on first read
    unless a fetch directive already placed it in the instance cache.
    """

    relation_type = "many-to-one"

    def __init__(
        self,
        to: Type | str,
        *,
        related_name: Optional[str] = None,
        on_delete: str = "CASCADE",
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("nullable", False)
        super().__init__(to, related_name=related_name, on_delete=on_delete, **kwargs)

    def contribute_to_class(self, model: Type["Model"], name: str) -> None:
        if self.db_column is None:
            self.db_column = f"{name}_id"
        super().contribute_to_class(model, name)
        id_attr = f"{name}_id"
        if id_attr not in model.__dict__:
            setattr(model, id_attr, ForeignKeyIdAccessor(self))

    def __get__(self, instance: object | None, owner: type | None = None) -> Any:
        if instance is None:
            return self
        model_instance: "Model" = instance  # type: ignore[assignment]
        name = self.require_name()
        if name in model_instance._related_cache:
            return model_instance._related_cache[name]
        fk_value = model_instance._field_values.get(name)
        if fk_value is None:
            return None
        session = model_instance._session
        if session is None:
            raise DetachedInstanceError(
                f"Cannot load '{name}' of detached {type(instance).__name__}; "
                "fetch it eagerly or merge the instance into a session."
            )
        related = session.get(self.require_remote(), fk_value)
        model_instance._related_cache[name] = related
        return related

    def __set__(self, instance: object, value: Any) -> None:
        model_instance: "Model" = instance  # type: ignore[assignment]
        name = self.require_name()
        if value is None:
            if not self.nullable:
                raise ValueError(f"Field '{name}' cannot be None")
            model_instance._field_values[name] = None
            model_instance._related_cache[name] = None
            return

        from .model import Model

        if isinstance(value, Model):
            remote = self.require_remote()
            if not isinstance(value, remote):
                raise TypeError(
                    f"'{name}' expects a {remote.__name__} instance, received {type(value).__name__}"
                )
            model_instance._related_cache[name] = value
            model_instance._field_values[name] = value.pk
            return

        model_instance._field_values[name] = self.to_python(value)
        model_instance._related_cache.pop(name, None)

    def attach(self, instance: "Model", related: "Model | None") -> None:
        """
        Place an already-loaded target in the instance cache without marking
        the instance dirty.
        """
        instance._related_cache[self.require_name()] = related

    def sync(self, instance: "Model") -> None:
        """
        Copy the primary key of a cached target that was persisted after
        being assigned.
        """
        name = self.require_name()
        related = instance._related_cache.get(name)
        if related is not None and related.pk is not None:
            instance._field_values[name] = related.pk

    def to_python(self, value: Any) -> Any:
        if value is None:
            return value
        remote = self.remote_model
        if remote is not None and remote._meta.primary_key is not None:
            return remote._meta.primary_key.to_python(value)
        return value


class OneToOneField(ForeignKey):
    relation_type = "one-to-one"

    def __init__(self, to: Type | str, *, related_name: Optional[str] = None, **kwargs: Any) -> None:
        kwargs.setdefault("unique", True)
        super().__init__(to, related_name=related_name, **kwargs)


class ForeignKeyIdAccessor:
    """Read access to the raw key column (``member.team_id``)."""

    def __init__(self, field: ForeignKey) -> None:
        self.field = field

    def __get__(self, instance, owner):
        if instance is None:
            return self
        self.field.sync(instance)
        return instance._field_values.get(self.field.require_name())

    def __set__(self, instance, value):
        self.field.__set__(instance, value)


class RelatedCollection:
    """
    Inverse, non-owning side of a :class:`ForeignKey`.

    Reading it returns a plain list. Transient owners start with an empty
    list; managed owners load the children lazily through their session.
    Mutating the list does not change any foreign key: use
    :func:`associate` / :func:`dissociate` to keep both sides in step.
    """

    def __init__(self, source_model: Type["Model"], field: ForeignKey, name: str) -> None:
        self.source_model = source_model
        self.field = field
        self.name = name

    def __get__(self, instance, owner):
        if instance is None:
            return self
        cache = instance._related_cache
        if self.name in cache:
            return cache[self.name]
        if instance.pk is None:
            cache[self.name] = []
            return cache[self.name]
        session = instance._session
        if session is None:
            raise DetachedInstanceError(
                f"Cannot load '{self.name}' of detached {type(instance).__name__}."
            )
        children = session.query(self.source_model).filter(**{self.field.name: instance.pk}).all()
        cache[self.name] = children
        return children

    def __set__(self, instance, value):
        raise AttributeError(
            f"'{self.name}' is the inverse side of {self.source_model.__name__}.{self.field.name}; "
            "use associate() to change it."
        )

    def is_loaded(self, instance: "Model") -> bool:
        return self.name in instance._related_cache

    def fill(self, instance: "Model", children: List["Model"]) -> None:
        instance._related_cache[self.name] = children


def _foreign_key(child: "Model", relation: str) -> ForeignKey:
    field = child._meta.get_field(relation)
    if not isinstance(field, ForeignKey):
        raise RelationshipError(f"'{relation}' on {type(child).__name__} is not a foreign key.")
    return field


def _collection_of(parent: "Model", field: ForeignKey, *, load: bool) -> Optional[List["Model"]]:
    if not field.related_name:
        return None
    descriptor = type(parent).__dict__.get(field.related_name)
    if not isinstance(descriptor, RelatedCollection):
        return None
    if descriptor.is_loaded(parent) or load:
        return descriptor.__get__(parent, type(parent))
    return None


def associate(child: "Model", relation: str, parent: "Model | None") -> None:
    """
    Point ``child.<relation>`` at ``parent`` and keep the inverse collections
    of the old and new parents consistent with it.
    """

    field = _foreign_key(child, relation)
    name = field.require_name()
    previous = child._related_cache.get(name)
    if previous is not None and previous is not parent:
        old_children = _collection_of(previous, field, load=False)
        if old_children is not None:
            old_children[:] = [item for item in old_children if item is not child]

    setattr(child, name, parent)
    if parent is None:
        return
    load = parent.pk is None or parent._session is not None
    children = _collection_of(parent, field, load=load)
    if children is not None and not any(item is child for item in children):
        children.append(child)


def dissociate(child: "Model", relation: str) -> None:
    """Clear ``child.<relation>`` and remove ``child`` from the parent's collection."""

    associate(child, relation, None)


class RelationRegistry:
    """
    Tracks entity classes by name and resolves string relationship targets.
    """

    def __init__(self) -> None:
        self.models: Dict[str, Type["Model"]] = {}
        self.pending_fields: List[Tuple[Type["Model"], RelatedField]] = []

    def register_model(self, model: Type["Model"]) -> None:
        label = self._label(model)
        self.models[label] = model
        self._resolve_pending()

    def register_field(self, model: Type["Model"], field: RelatedField) -> None:
        target = self._resolve_target(field.to)
        if target is None:
            self.pending_fields.append((model, field))
            return
        field.resolve_model(target)
        self._attach_reverse_accessor(model, field)

    def resolve(self, name: str) -> Optional[Type["Model"]]:
        return self._resolve_target(name)

    def _resolve_pending(self) -> None:
        unresolved = []
        for model, field in self.pending_fields:
            target = self._resolve_target(field.to)
            if target is None:
                unresolved.append((model, field))
                continue
            field.resolve_model(target)
            self._attach_reverse_accessor(model, field)
        self.pending_fields = unresolved

    def _resolve_target(self, target: Type | str) -> Optional[Type["Model"]]:
        if isinstance(target, type):
            return target
        label = target.split(".")[-1]
        return self.models.get(label)

    def _label(self, model: Type["Model"]) -> str:
        return model.__name__

    def _attach_reverse_accessor(self, model: Type["Model"], field: RelatedField) -> None:
        remote = field.remote_model
        if remote is None or not isinstance(field, ForeignKey) or not field.related_name:
            return
        existing = remote.__dict__.get(field.related_name)
        if existing is not None and not isinstance(existing, RelatedCollection):
            raise RelationshipError(
                f"{remote.__name__}.{field.related_name} already exists; choose another related_name."
            )
        setattr(remote, field.related_name, RelatedCollection(model, field, field.related_name))
        remote._meta.collections[field.related_name] = (model, field)


relation_registry = RelationRegistry()
