"""
Built-in validator helpers.

A validator is any callable taking the field value and raising
``ValueError`` when it is unacceptable. ``None`` is left to the
nullability check.
"""

from __future__ import annotations

import operator
import re
from typing import Any, Callable, Protocol


class Validator(Protocol):
    def __call__(self, value: Any) -> None: ...


class _BoundValidator:
    compare: Callable[[Any, Any], bool]
    template: str

    def __init__(self, bound: Any, message: str | None = None) -> None:
        self.bound = bound
        self.message = message or self.template.format(bound=bound)

    def __call__(self, value: Any) -> None:
        if value is not None and not type(self).compare(value, self.bound):
            raise ValueError(self.message)


class MinValueValidator(_BoundValidator):
    compare = operator.ge
    template = "Ensure value is greater than or equal to {bound}."


class MaxValueValidator(_BoundValidator):
    compare = operator.le
    template = "Ensure value is less than or equal to {bound}."


class MaxLengthValidator(_BoundValidator):
    template = "Ensure value has at most {bound} characters."

    @staticmethod
    def compare(value: Any, bound: Any) -> bool:
        return len(value) <= bound


class RegexValidator:
    def __init__(self, pattern: str, message: str | None = None) -> None:
        self.pattern = re.compile(pattern)
        self.message = message or "Value does not match required pattern."

    def __call__(self, value: Any) -> None:
        if value is None:
            return
        if not isinstance(value, str):
            raise ValueError("Value must be a string for RegexValidator.")
        if not self.pattern.match(value):
            raise ValueError(self.message)
