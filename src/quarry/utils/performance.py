"""
Statement accounting for a session and N+1 detection.

Every statement a session runs is folded into a :class:`StatementShape`
keyed by its whitespace-normalized SQL. A shape executed many times with
different bindings is the signature of lazy association loading in a loop,
which a fetch directive would replace with one statement.
"""

from __future__ import annotations

import logging
import os
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

SLOW_QUERY_ENV = "QUARRY_SLOW_QUERY_MS"


def resolve_slow_query_ms(*, default: int, override: int | None = None) -> int:
    """
    Pick the slow-statement threshold: explicit override, then environment, then default.
    """
    if override is not None:
        return override
    raw = os.getenv(SLOW_QUERY_ENV)
    if raw:
        try:
            return int(raw)
        except ValueError:
            logging.getLogger("quarry.performance").warning(
                "Ignoring non-integer %s=%r", SLOW_QUERY_ENV, raw
            )
    return default


def _freeze(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    if isinstance(value, dict):
        return tuple(sorted((key, _freeze(item)) for key, item in value.items()))
    return value


@dataclass
class StatementShape:
    sql: str
    executions: int = 0
    total_ms: float = 0.0
    bindings: set = field(default_factory=set)
    samples: List[str] = field(default_factory=list)
    # which queries issued this statement, by description
    sources: Counter = field(default_factory=Counter)
    reported: bool = False

    def observe(self, params: Sequence[Any], elapsed_ms: float, source: Optional[str], *, sample_size: int) -> None:
        self.executions += 1
        self.total_ms += elapsed_ms
        if source:
            self.sources[source] += 1
        if not params:
            return
        binding = _freeze(params)
        if binding in self.bindings:
            return
        self.bindings.add(binding)
        if len(self.samples) < sample_size:
            self.samples.append(repr(binding))

    @property
    def average_ms(self) -> float:
        return self.total_ms / self.executions if self.executions else 0.0

    @property
    def is_read(self) -> bool:
        return self.sql[:6].upper() == "SELECT"

    def fans_out(self, threshold: int) -> bool:
        """A SELECT run many times with more than one distinct binding."""
        return self.is_read and self.executions >= threshold and len(self.bindings) >= 2


class PerformanceTracker:
    """
    Per-session statement statistics. Warns once per statement shape that
    looks like an N+1 pattern.
    """

    def __init__(
        self,
        logger: logging.Logger,
        *,
        n_plus_one_threshold: int = 5,
        sample_size: int = 5,
    ) -> None:
        self.logger = logger
        self.n_plus_one_threshold = n_plus_one_threshold
        self.sample_size = sample_size
        self.shapes: Dict[str, StatementShape] = {}

    def record(
        self, sql: str, params: Sequence[Any], elapsed_ms: float, *, source: Optional[str] = None
    ) -> None:
        key = " ".join(sql.split())
        shape = self.shapes.get(key)
        if shape is None:
            shape = self.shapes[key] = StatementShape(key)
        shape.observe(params, elapsed_ms, source, sample_size=self.sample_size)
        if not shape.reported and shape.fans_out(self.n_plus_one_threshold):
            shape.reported = True
            self._warn(shape)

    @property
    def statement_count(self) -> int:
        return sum(shape.executions for shape in self.shapes.values())

    def executions(self, fragment: str) -> int:
        """
        Number of recorded executions whose normalized SQL contains ``fragment``.
        """
        return sum(shape.executions for shape in self.shapes.values() if fragment in shape.sql)

    def summary(self) -> List[Dict[str, object]]:
        return [
            {
                "sql": shape.sql,
                "count": shape.executions,
                "total_ms": shape.total_ms,
                "average_ms": shape.average_ms,
                "distinct_params": len(shape.bindings),
                "sources": dict(shape.sources),
            }
            for shape in self.shapes.values()
        ]

    def reset(self) -> None:
        self.shapes.clear()

    def _warn(self, shape: StatementShape) -> None:
        origin = ", ".join(name for name, _ in shape.sources.most_common(3)) or "raw SQL"
        preview = shape.sql if len(shape.sql) <= 80 else shape.sql[:77] + "..."
        self.logger.warning(
            "Potential N+1 detected for SQL '%s' (%s executions, %s distinct params, from %s); "
            "consider a fetch directive",
            preview,
            shape.executions,
            len(shape.bindings),
            origin,
            extra={"sql": shape.sql, "count": shape.executions, "samples": list(shape.samples)},
        )
