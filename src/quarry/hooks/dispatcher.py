"""
Hook dispatcher coordinating entity lifecycle events.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Type

from ..core.model import Model
from ..utils import get_logger


HookHandler = Callable[..., None]


@dataclass(frozen=True)
class HookEvent:
    name: str


BEFORE_VALIDATE = HookEvent("before_validate")
AFTER_VALIDATE = HookEvent("after_validate")
BEFORE_SAVE = HookEvent("before_save")
AFTER_SAVE = HookEvent("after_save")
BEFORE_DELETE = HookEvent("before_delete")
AFTER_DELETE = HookEvent("after_delete")
AFTER_COMMIT = HookEvent("after_commit")
AFTER_ROLLBACK = HookEvent("after_rollback")

EVENTS = frozenset(
    event.name
    for event in (
        BEFORE_VALIDATE,
        AFTER_VALIDATE,
        BEFORE_SAVE,
        AFTER_SAVE,
        BEFORE_DELETE,
        AFTER_DELETE,
        AFTER_COMMIT,
        AFTER_ROLLBACK,
    )
)


class HookDispatcher:
    """
    Maintains global and per-model hook handlers.

    Handlers run in registration order, global ones first. A handler
    exception propagates to the caller and aborts the flush in progress.
    """

    def __init__(self) -> None:
        self._global_handlers: Dict[str, List[HookHandler]] = defaultdict(list)
        self._model_handlers: Dict[Type[Model], Dict[str, List[HookHandler]]] = defaultdict(
            lambda: defaultdict(list)
        )
        self.logger = get_logger("hooks")

    def register(
        self, event: str | HookEvent, handler: HookHandler, *, model: Optional[Type[Model]] = None
    ) -> None:
        name = self._event_name(event)
        if model:
            self._model_handlers[model][name].append(handler)
        else:
            self._global_handlers[name].append(handler)

    def unregister(
        self, event: str | HookEvent, handler: HookHandler, *, model: Optional[Type[Model]] = None
    ) -> None:
        name = self._event_name(event)
        handlers = self._model_handlers[model][name] if model else self._global_handlers[name]
        if handler in handlers:
            handlers.remove(handler)

    def handlers_for(self, event: str | HookEvent, model: Optional[Type[Model]]) -> List[HookHandler]:
        name = self._event_name(event)
        handlers = list(self._global_handlers.get(name, []))
        if model is not None and model in self._model_handlers:
            handlers.extend(self._model_handlers[model].get(name, []))
        return handlers

    def fire(self, event: str | HookEvent, instance: Optional[Model], **context: Any) -> None:
        model = instance.__class__ if instance is not None else None
        for handler in self.handlers_for(event, model):
            handler(instance, **context)

    def clear(self) -> None:
        self._global_handlers.clear()
        self._model_handlers.clear()

    @staticmethod
    def _event_name(event: str | HookEvent) -> str:
        name = event.name if isinstance(event, HookEvent) else event
        if name not in EVENTS:
            raise ValueError(f"Unknown hook event '{name}'. Expected one of: {', '.join(sorted(EVENTS))}")
        return name


hooks = HookDispatcher()
