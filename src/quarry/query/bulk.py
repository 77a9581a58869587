"""
Set-based UPDATE/DELETE statements.

Bulk mutations go straight to the store. They never consult or update the
session's identity map, so entities already managed keep their in-memory
state afterwards unless the caller asks for the context to be cleared.
"""

from __future__ import annotations

import warnings
from typing import TYPE_CHECKING, Any, Mapping, Optional, Union

from ..config import get_settings
from ..errors import QuerySpecificationError, StaleContextWarning
from ..utils import get_logger
from .compiler import SQLCompiler
from .executor import check_parameters
from .parser import parse_query
from .spec import MutationSpec

if TYPE_CHECKING:
    from ..persistence.session import Session


class BulkMutationExecutor:
    def __init__(self, session: "Session", *, auto_invalidate_context: Optional[bool] = None) -> None:
        self.session = session
        if auto_invalidate_context is None:
            auto_invalidate_context = get_settings().clear_after_bulk
        self.auto_invalidate_context = auto_invalidate_context
        self.compiler = SQLCompiler(session.dialect)
        self.logger = get_logger("query.bulk")

    def execute(
        self,
        mutation: Union[MutationSpec, str],
        params: Optional[Mapping[str, Any]] = None,
        *,
        clear_automatically: Optional[bool] = None,
        flush_automatically: bool = False,
    ) -> int:
        """
        Run ``mutation`` and return the number of affected rows.

        Pending changes are written first when the session autoflushes;
        ``flush_automatically`` forces that flush either way.
        ``clear_automatically`` (default: the executor's
        ``auto_invalidate_context``) flushes, runs the statement, then empties
        the persistence context. Without it a :class:`StaleContextWarning` is
        emitted when entities of the mutated type are still managed.
        """
        if isinstance(mutation, str):
            parsed = parse_query(mutation)
            if not isinstance(parsed, MutationSpec):
                raise QuerySpecificationError("Bulk execution requires an UPDATE or DELETE statement.")
            mutation = parsed
        params = dict(params or {})
        check_parameters(mutation.parameters, params, mutation.description)

        clear = self.auto_invalidate_context if clear_automatically is None else clear_automatically
        if flush_automatically or clear:
            self.session.flush()
        else:
            self.session._autoflush()

        compiled = self.compiler.compile_mutation(mutation, params)
        cursor = self.session.execute(compiled.sql, compiled.params, source=mutation.description)
        affected = cursor.rowcount if cursor.rowcount is not None else -1
        self.logger.info("%s affected %s row(s)", mutation.description, affected)

        if clear:
            self.session.clear()
            return affected

        stale = self.session.identity_map.count(mutation.model)
        if stale:
            message = (
                f"{mutation.description} changed rows of {mutation.model.__name__} while "
                f"{stale} instance(s) of it are managed; they may be stale until refreshed or cleared."
            )
            self.logger.warning(message)
            warnings.warn(message, StaleContextWarning, stacklevel=2)
        return affected
