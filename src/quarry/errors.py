"""
Error taxonomy shared across Quarry packages.

Four families reach callers:

* specification errors (:class:`QuerySpecificationError` and subclasses),
  raised while a query, projection or fetch directive is being registered;
* result-cardinality errors (:class:`NonUniqueResultError`); an empty
  single-result query is ``None``, never an error;
* store errors, the :class:`~quarry.adapters.base.AdapterError` hierarchy,
  which carries the driver's retryable/fatal classification;
* consistency hazards (:class:`StaleContextWarning`), emitted as warnings.
"""

from __future__ import annotations


class QuarryError(Exception):
    """Base class for every error raised by Quarry."""


# Specification errors --------------------------------------------------
class QuerySpecificationError(QuarryError):
    """A query specification is invalid and can never be executed."""


class DerivationError(QuerySpecificationError):
    """A method name cannot be derived into a query."""

    def __init__(self, method: str, reason: str) -> None:
        self.method = method
        self.reason = reason
        super().__init__(f"Cannot derive query from '{method}': {reason}")


class QuerySyntaxError(QuerySpecificationError):
    """A query string failed to parse."""

    def __init__(self, message: str, *, text: str | None = None, position: int | None = None) -> None:
        self.text = text
        self.position = position
        if position is not None:
            message = f"{message} (at offset {position})"
        super().__init__(message)


class ProjectionArityError(QuerySpecificationError):
    """A constructor projection does not match its target's signature."""


class UnknownNamedQueryError(QuerySpecificationError):
    """A named query or named fetch graph was referenced but never registered."""


class FetchPlanError(QuerySpecificationError):
    """A prefetch directive names an unknown or unsupported association path."""


# Call-time errors ------------------------------------------------------
class QueryParameterError(QuarryError, TypeError):
    """Parameters supplied to a query do not match its declared names."""


class NonUniqueResultError(QuarryError):
    """A single-result query matched more than one row."""

    def __init__(self, count: int, description: str = "query") -> None:
        self.count = count
        super().__init__(f"Expected at most one result for {description}, got {count}.")


class DetachedInstanceError(QuarryError):
    """A lazy association was read on an entity no session manages."""


class EntityNotFoundError(QuarryError):
    """A managed entity's row no longer exists in the store."""


class AuditFieldError(QuarryError, AttributeError):
    """An audit timestamp was written outside the auditing listener."""


class IdentityConflictError(QuarryError):
    """A second live instance was offered for an identity already managed."""


# Hazards ---------------------------------------------------------------
class StaleContextWarning(UserWarning):
    """Managed entities may no longer reflect the store after a bulk mutation."""
