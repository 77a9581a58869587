"""
Pre-write validation for entities.
"""

from .errors import NON_FIELD_ERRORS, ValidationError
from .pipeline import validate_instance
from .validators import MaxLengthValidator, MaxValueValidator, MinValueValidator, RegexValidator

__all__ = [
    "NON_FIELD_ERRORS",
    "ValidationError",
    "validate_instance",
    "MaxLengthValidator",
    "MinValueValidator",
    "MaxValueValidator",
    "RegexValidator",
]
