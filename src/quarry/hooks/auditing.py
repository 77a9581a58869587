"""
Automatic maintenance of creation and last-modification timestamps.

Auditing is opt-in per entity type::

    listener = AuditingListener()
    listener.register(Member, Team)

The listener hooks ``before_save``: an insert stamps both timestamps with
the same clock reading, an update stamps only the modification time. The
creation timestamp is never part of an UPDATE statement.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Type

from ..core.model import Model, ModelConfigurationError
from ..utils import get_logger
from .dispatcher import BEFORE_SAVE, HookDispatcher, hooks

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AuditingListener:
    def __init__(self, clock: Optional[Clock] = None, *, dispatcher: HookDispatcher = hooks) -> None:
        self.clock: Clock = clock or utc_now
        self.dispatcher = dispatcher
        self.logger = get_logger("hooks.auditing")
        self._registered: Dict[Type[Model], Callable[..., None]] = {}

    @property
    def models(self) -> tuple[Type[Model], ...]:
        return tuple(self._registered)

    def register(self, *models: Type[Model]) -> "AuditingListener":
        for model in models:
            if model in self._registered:
                continue
            meta = model._meta
            if meta.created_field is None and meta.modified_field is None:
                raise ModelConfigurationError(
                    f"Model '{model.__name__}' has no audit fields; "
                    "derive it from AuditedModel or declare CreatedDateField/LastModifiedDateField."
                )
            self._registered[model] = self._stamp
            self.dispatcher.register(BEFORE_SAVE, self._stamp, model=model)
            self.logger.debug("Auditing enabled for %s", model.__name__)
        return self

    def unregister(self, *models: Type[Model]) -> None:
        for model in models:
            handler = self._registered.pop(model, None)
            if handler is not None:
                self.dispatcher.unregister(BEFORE_SAVE, handler, model=model)

    def _stamp(self, instance: Model, *, created: bool, **_: object) -> None:
        now = self.clock()
        meta = instance._meta
        if created and meta.created_field is not None:
            meta.created_field.stamp(instance, now)
        if meta.modified_field is not None:
            meta.modified_field.stamp(instance, now)
