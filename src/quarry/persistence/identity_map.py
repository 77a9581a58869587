"""
Identity map ensuring a single in-memory instance per row.
"""

from __future__ import annotations

from typing import Dict, Iterator, List, Tuple, Type

from ..core.model import Model

IdentityKey = Tuple[Type[Model], object]


class IdentityMap:
    """
    Stores model instances keyed by (model, primary key).

    Owned by exactly one session and never shared between threads, so it
    takes no locks. Iteration follows registration order.
    """

    def __init__(self) -> None:
        self._store: Dict[IdentityKey, Model] = {}

    @staticmethod
    def _make_key(instance_or_model, pk) -> IdentityKey:
        if isinstance(instance_or_model, type):
            model = instance_or_model
        else:
            model = instance_or_model.__class__
        return (model, pk)

    def register(self, instance: Model) -> Model:
        """
        Manage ``instance`` and return the canonical object for its identity.

        When another instance already holds the identity, that one is
        returned and ``instance`` is left untouched.
        """
        pk = instance.pk
        if pk is None:
            raise ValueError(f"Cannot register {type(instance).__name__} without a primary key.")
        key = self._make_key(instance, pk)
        return self._store.setdefault(key, instance)

    def get(self, model: Type[Model], pk) -> Model | None:
        return self._store.get(self._make_key(model, pk))

    def remove(self, instance: Model) -> None:
        pk = instance.pk
        if pk is None:
            return
        key = self._make_key(instance, pk)
        if self._store.get(key) is instance:
            del self._store[key]

    def clear(self) -> None:
        self._store.clear()

    def values(self) -> List[Model]:
        return list(self._store.values())

    def of_type(self, model: Type[Model]) -> List[Model]:
        return [instance for (kind, _), instance in self._store.items() if kind is model]

    def count(self, model: Type[Model]) -> int:
        return sum(1 for kind, _ in self._store if kind is model)

    def __contains__(self, instance: Model) -> bool:
        pk = instance.pk
        if pk is None:
            return False
        return self._store.get(self._make_key(instance, pk)) is instance

    def __len__(self) -> int:
        return len(self._store)

    def __iter__(self) -> Iterator[Model]:
        return iter(self.values())
