"""
Transaction demarcation for a session.

The outermost level maps to a store transaction; inner levels map to
savepoints when the dialect supports them.
"""

from __future__ import annotations

import itertools
from contextlib import contextmanager
from typing import Generator, List, Optional

from ..adapters.base import DatabaseAdapter
from ..dialects.base import Dialect
from ..errors import QuarryError
from ..utils import get_logger


class TransactionError(QuarryError, RuntimeError):
    """Unbalanced or unsupported transaction demarcation."""


class TransactionManager:
    def __init__(self, adapter: DatabaseAdapter, dialect: Dialect) -> None:
        self.adapter = adapter
        self.dialect = dialect
        # None marks the outermost level, names mark savepoints
        self._levels: List[Optional[str]] = []
        self._savepoint_counter = itertools.count(1)
        self.logger = get_logger("persistence.transaction")

    @property
    def depth(self) -> int:
        return len(self._levels)

    @property
    def is_active(self) -> bool:
        return bool(self._levels)

    def begin(self) -> None:
        if not self._levels:
            self.adapter.begin()
            self._levels.append(None)
            self.logger.debug("Transaction started")
            return

        if not self.dialect.capabilities.supports_savepoints:
            raise TransactionError(f"{self.dialect.name} does not support nested transactions.")

        name = f"sp_{next(self._savepoint_counter)}"
        self.adapter.execute(f"SAVEPOINT {name}")
        self._levels.append(name)
        self.logger.debug("Savepoint %s opened at depth %s", name, self.depth)

    def commit(self) -> None:
        name = self._pop("commit")
        if name is None:
            self.adapter.commit()
            self.logger.debug("Transaction committed")
        else:
            self.adapter.execute(f"RELEASE SAVEPOINT {name}")
            self.logger.debug("Savepoint %s released", name)

    def rollback(self) -> None:
        name = self._pop("roll back")
        if name is None:
            self.adapter.rollback()
            self.logger.debug("Transaction rolled back")
        else:
            self.adapter.execute(f"ROLLBACK TO SAVEPOINT {name}")
            self.adapter.execute(f"RELEASE SAVEPOINT {name}")
            self.logger.debug("Rolled back to savepoint %s", name)

    @contextmanager
    def transaction(self) -> Generator[None, None, None]:
        self.begin()
        try:
            yield
        except Exception:
            self.rollback()
            raise
        else:
            self.commit()

    def _pop(self, action: str) -> Optional[str]:
        if not self._levels:
            raise TransactionError(f"No active transaction to {action}.")
        return self._levels.pop()
