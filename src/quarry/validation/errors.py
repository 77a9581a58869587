"""
Validation error raised before an entity is written.
"""

from __future__ import annotations

from typing import Dict, List, Mapping

from ..errors import QuarryError

NON_FIELD_ERRORS = "__all__"


class ValidationError(QuarryError, ValueError):
    """
    Aggregated validation error storing field-to-messages mapping.
    """

    def __init__(self, errors: Mapping[str, List[str]]) -> None:
        self.errors: Dict[str, List[str]] = {
            key: list(messages) for key, messages in errors.items()
        }
        super().__init__(self._format_message())

    @property
    def fields(self) -> List[str]:
        return [name for name in self.errors if name != NON_FIELD_ERRORS]

    def _format_message(self) -> str:
        return "; ".join(
            f"{'non-field' if name == NON_FIELD_ERRORS else name}: {'; '.join(messages)}"
            for name, messages in self.errors.items()
        )
