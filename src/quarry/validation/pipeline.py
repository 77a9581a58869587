"""
Validation run by the session before every insert and update.
"""

from __future__ import annotations

from typing import Dict, List

from ..core.fields import AutoField, Field
from ..core.model import Model
from .errors import NON_FIELD_ERRORS, ValidationError


def validate_instance(instance: Model) -> None:
    """
    Check nullability, field validators and ``Model.clean``.

    Values are read from the instance state directly so that validating
    an entity never triggers a lazy association load.
    """
    errors: Dict[str, List[str]] = {}

    for field in instance._meta.get_fields():
        value = instance._field_values.get(field.require_name())
        for message in _field_errors(field, value):
            errors.setdefault(field.require_name(), []).append(message)

    try:
        instance.clean()
    except ValidationError as exc:
        for name, messages in exc.errors.items():
            errors.setdefault(name, []).extend(messages)
    except ValueError as exc:
        errors.setdefault(NON_FIELD_ERRORS, []).append(str(exc))

    if errors:
        raise ValidationError(errors)


def _field_errors(field: Field, value) -> List[str]:
    if value is None:
        if isinstance(field, AutoField) or field.nullable:
            return []
        return ["This field cannot be null."]
    messages = []
    for validator in field.validators:
        try:
            validator(value)
        except ValidationError as exc:
            messages.extend(m for group in exc.errors.values() for m in group)
        except ValueError as exc:
            messages.append(str(exc))
    return messages
