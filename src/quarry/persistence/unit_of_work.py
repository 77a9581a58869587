"""
Unit of Work implementation batching persistence operations.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Tuple

from ..core.model import Model

# Insertion-ordered sets keyed by object identity (Model has no __eq__).
_OrderedSet = Dict[Model, None]

Snapshot = Tuple[List[Model], List[Model], List[Model], List[Model]]


class UnitOfWork:
    """
    Tracks new, dirty, and deleted objects within a session.

    Each group keeps registration order, which is the order its statements
    are issued at flush.
    """

    def __init__(self) -> None:
        self.new: _OrderedSet = {}
        self.dirty: _OrderedSet = {}
        self.deleted: _OrderedSet = {}
        # Instances whose next UPDATE must carry every column.
        self.forced: _OrderedSet = {}

    # Registration methods ----------------------------------------------
    def register_new(self, instance: Model) -> None:
        self.deleted.pop(instance, None)
        self.new[instance] = None

    def register_dirty(self, instance: Model, *, force: bool = False) -> None:
        if instance in self.new or instance in self.deleted:
            return
        self.dirty.setdefault(instance, None)
        if force:
            self.forced[instance] = None

    def register_deleted(self, instance: Model) -> None:
        self.dirty.pop(instance, None)
        self.forced.pop(instance, None)
        if instance in self.new:
            # Never written, nothing to delete.
            del self.new[instance]
            return
        self.deleted[instance] = None

    def collect_dirty(self, candidates: Iterable[Model]) -> List[Model]:
        """
        Return the instances to update, in candidate order (the identity
        map's registration order). Explicitly marked instances are always
        included; the others only when their state differs from the last
        snapshot. Read-only instances are skipped unless marked.
        """
        ordered: _OrderedSet = {}
        for instance in candidates:
            if instance in self.new or instance in self.deleted:
                continue
            if instance in self.dirty or (not instance._read_only and instance.is_dirty()):
                ordered[instance] = None
        for instance in self.dirty:
            ordered.setdefault(instance, None)
        self.dirty = ordered
        return list(ordered)

    def forget(self, instance: Model) -> None:
        for group in (self.new, self.dirty, self.deleted, self.forced):
            group.pop(instance, None)

    def has_pending(self) -> bool:
        return bool(self.new or self.dirty or self.deleted)

    def snapshot(self) -> Snapshot:
        return (list(self.new), list(self.dirty), list(self.deleted), list(self.forced))

    def restore(self, snapshot: Snapshot) -> None:
        new, dirty, deleted, forced = snapshot
        self.new = dict.fromkeys(new)
        self.dirty = dict.fromkeys(dirty)
        self.deleted = dict.fromkeys(deleted)
        self.forced = dict.fromkeys(forced)

    def clear(self) -> None:
        self.new.clear()
        self.dirty.clear()
        self.deleted.clear()
        self.forced.clear()
