"""
Eager-fetch planning.

A fetch directive names association paths to load together with a query's
results. The planner turns them into a join strategy:

* to-one chains (``team``, ``team__league``) become ``LEFT JOIN`` fetches in
  the main statement, so they cost no extra round trip;
* collections (``members``) and anything below them become one batched
  ``IN`` query per path, so they never multiply the main query's rows.

Directives only decide what is loaded; they never change which root rows
match.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Tuple, Type

from ..errors import FetchPlanError, QuerySpecificationError
from ..utils import get_logger
from .compiler import resolve_path
from .expressions import Q
from .spec import Join, JoinKind, QuerySpec

if TYPE_CHECKING:
    from ..core.model import Model
    from .executor import QueryExecutor


logger = get_logger("query.fetch")


@dataclass(frozen=True)
class FetchPlan:
    joins: Tuple[Join, ...] = ()
    batches: Tuple[str, ...] = ()

    def apply(self, spec: QuerySpec) -> QuerySpec:
        if not self.joins and not self.batches:
            return spec
        return spec.with_fetch(self.joins, self.batches)

    @property
    def is_empty(self) -> bool:
        return not self.joins and not self.batches


class FetchPlanner:
    def plan(self, model: Type["Model"], paths: Iterable[str]) -> FetchPlan:
        joins: Dict[str, Join] = {}
        batches: Dict[str, None] = {}
        for raw in paths:
            path = raw.replace(".", "__")
            try:
                resolved = resolve_path(model, path)
            except QuerySpecificationError as exc:
                raise FetchPlanError(f"Cannot fetch '{raw}' on {model.__name__}: {exc}") from exc
            if resolved.field is not None or not resolved.steps:
                raise FetchPlanError(f"Cannot fetch '{raw}' on {model.__name__}: it is not an association.")
            prefix = ""
            below_collection = False
            for step in resolved.steps:
                prefix = f"{prefix}__{step.name}" if prefix else step.name
                below_collection = below_collection or step.collection
                if below_collection:
                    batches.setdefault(prefix, None)
                else:
                    joins.setdefault(prefix, Join(prefix, JoinKind.LEFT, fetch=True))
        plan = FetchPlan(tuple(joins.values()), tuple(batches))
        logger.debug(
            "Fetch plan for %s: joins=%s batches=%s",
            model.__name__,
            [join.path for join in plan.joins],
            list(plan.batches),
        )
        return plan


def _objects_at(roots: List["Model"], segments: List[str]) -> List["Model"]:
    current = list(roots)
    for segment in segments:
        following: Dict[int, "Model"] = {}
        for obj in current:
            value = getattr(obj, segment)
            items = value if isinstance(value, list) else [value]
            for item in items:
                if item is not None:
                    following.setdefault(id(item), item)
        current = list(following.values())
    return current


def load_batches(executor: "QueryExecutor", spec: QuerySpec, roots: List["Model"]) -> None:
    """
    Run one ``IN`` query per batch path of ``spec`` and attach the results
    to the already-loaded ``roots``.
    """
    if not roots or not spec.batches:
        return
    base = spec.projection.entity_path
    base_model = resolve_path(spec.model, base).model if base else spec.model
    for path in sorted(spec.batches, key=lambda item: item.count("__")):
        relative = path[len(base) + 2 :] if base and path.startswith(f"{base}__") else path
        segments = relative.split("__")
        owners = _objects_at(roots, segments[:-1])
        if not owners:
            continue
        owner_model = type(owners[0])
        last = resolve_path(base_model, relative).steps[-1]
        if last.collection:
            _load_collection(executor, spec, owners, last.name, owner_model)
        else:
            _load_to_one(executor, spec, owners, last.field)


def _load_collection(
    executor: "QueryExecutor",
    spec: QuerySpec,
    owners: List["Model"],
    relation: str,
    owner_model: Type["Model"],
) -> None:
    child_model, fk = owner_model._meta.collections[relation]
    descriptor = owner_model.__dict__[relation]
    parent_pks = list(dict.fromkeys(obj.pk for obj in owners if obj.pk is not None))
    if not parent_pks:
        return
    children = executor.fetch_all(
        QuerySpec(
            child_model,
            where=Q((f"{fk.require_name()}__in", parent_pks)),
            read_only=spec.read_only,
            source=f"batch {owner_model.__name__}.{relation}",
        )
    )
    bucket: Dict[Any, List["Model"]] = {pk: [] for pk in parent_pks}
    for child in children:
        bucket.setdefault(child._field_values.get(fk.require_name()), []).append(child)
    for owner in owners:
        loaded = bucket.get(owner.pk, [])
        descriptor.fill(owner, loaded)
        for child in loaded:
            fk.attach(child, owner)


def _load_to_one(executor: "QueryExecutor", spec: QuerySpec, owners: List["Model"], fk) -> None:
    name = fk.require_name()
    pending = [obj for obj in owners if name not in obj._related_cache]
    keys = list(dict.fromkeys(
        obj._field_values.get(name) for obj in pending if obj._field_values.get(name) is not None
    ))
    remote = fk.require_remote()
    related: Dict[Any, "Model"] = {}
    if keys:
        pk_name = remote._meta.require_primary_key().require_name()
        for instance in executor.fetch_all(
            QuerySpec(
                remote,
                where=Q((f"{pk_name}__in", keys)),
                read_only=spec.read_only,
                source=f"batch {fk.require_model().__name__}.{name}",
            )
        ):
            related[instance.pk] = instance
    for obj in pending:
        fk.attach(obj, related.get(obj._field_values.get(name)))
