"""
Session management coordinating adapters, unit of work, and identity map.

A :class:`Session` is the persistence context of one unit of work. Every
entity it loads or persists is registered in its identity map, so a row is
represented by exactly one object until the context is cleared. Changes are
written at :meth:`Session.flush` (implicitly at commit and before queries):
inserts first, then updates, then deletes, each group in registration order.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Dict, Iterable, Iterator, List, Mapping, Optional, Type, TypeVar

from ..adapters.base import ConnectionConfig, DatabaseAdapter
from ..config import Settings, get_settings
from ..core.model import Model
from ..dialects.base import Dialect
from ..dialects.sqlite import SQLiteDialect
from ..errors import EntityNotFoundError, IdentityConflictError
from ..hooks.dispatcher import (
    AFTER_COMMIT,
    AFTER_DELETE,
    AFTER_ROLLBACK,
    AFTER_SAVE,
    AFTER_VALIDATE,
    BEFORE_DELETE,
    BEFORE_SAVE,
    BEFORE_VALIDATE,
)
from ..query.compiler import SQLCompiler
from ..query.expressions import Q
from ..query.spec import QuerySpec
from ..security.redaction import redact_params
from ..utils import get_logger, time_call
from ..utils.performance import PerformanceTracker
from .identity_map import IdentityMap
from .transaction import TransactionManager
from .unit_of_work import Snapshot, UnitOfWork

if TYPE_CHECKING:
    from ..hooks import HookDispatcher
    from ..query.queryset import QuerySet


TModel = TypeVar("TModel", bound=Model)


class Session:
    """
    Coordinates persistence operations for a set of model instances.
    """

    def __init__(
        self,
        adapter: DatabaseAdapter,
        *,
        connection_config: Optional[ConnectionConfig] = None,
        autoflush: bool = True,
        settings: Optional[Settings] = None,
        dispatcher: "HookDispatcher | None" = None,
    ) -> None:
        self.adapter = adapter
        self.autoflush = autoflush
        self.settings = settings or get_settings()
        self.dialect: Dialect = adapter.dialect if hasattr(adapter, "dialect") else SQLiteDialect()
        self.connection_config = connection_config or ConnectionConfig(url="sqlite:///:memory:")
        self.identity_map = IdentityMap()
        self.unit_of_work = UnitOfWork()
        self.transaction_manager = TransactionManager(adapter, self.dialect)
        self._uow_snapshots: List[Snapshot] = []
        self._flushing = False
        if dispatcher is None:
            from ..hooks import hooks

            dispatcher = hooks
        self.hooks = dispatcher
        self.logger = get_logger("persistence.session")
        self.performance = PerformanceTracker(
            get_logger("performance"),
            n_plus_one_threshold=self.settings.n_plus_one_threshold,
        )
        self.adapter.connect(self.connection_config)

    # ------------------------------------------------------------------ #
    # Context management
    # ------------------------------------------------------------------ #
    def __enter__(self) -> "Session":
        self.begin()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type:
                self.rollback()
            else:
                self.commit()
        finally:
            self.close()

    # ------------------------------------------------------------------ #
    # Transactions
    # ------------------------------------------------------------------ #
    def begin(self) -> None:
        self.transaction_manager.begin()
        self._uow_snapshots.append(self.unit_of_work.snapshot())

    def commit(self) -> None:
        if self.transaction_manager.depth == 0:
            self.begin()
        self.flush()
        self.transaction_manager.commit()
        if self._uow_snapshots:
            self._uow_snapshots.pop()
        if self.transaction_manager.depth == 0:
            self.hooks.fire(AFTER_COMMIT, None, session=self)
            self.clear()

    def rollback(self) -> None:
        self.transaction_manager.rollback()
        if self._uow_snapshots:
            self.unit_of_work.restore(self._uow_snapshots.pop())
        else:
            self.unit_of_work.clear()
        if self.transaction_manager.depth == 0:
            self.hooks.fire(AFTER_ROLLBACK, None, session=self)
            self.clear()

    @contextmanager
    def transaction(self) -> Iterator["Session"]:
        """
        Provide nested transaction context with savepoint support.

        Leaving the outermost block ends the unit of work: every managed
        entity is detached.
        """

        self.begin()
        try:
            yield self
        except Exception:
            self.rollback()
            raise
        else:
            self.commit()

    @property
    def in_transaction(self) -> bool:
        return self.transaction_manager.depth > 0

    def close(self) -> None:
        self.clear()
        self._uow_snapshots.clear()
        self.adapter.close()

    # ------------------------------------------------------------------ #
    # Registration
    # ------------------------------------------------------------------ #
    def add(self, instance: Model) -> None:
        """
        Make ``instance`` managed. Without a primary key it is scheduled for
        insertion; with one it is re-attached as loaded.
        """
        owner = instance._session
        if owner is not None and owner is not self:
            raise IdentityConflictError(
                f"{type(instance).__name__} is managed by another session; detach it first."
            )
        if instance in self.unit_of_work.deleted:
            # cancels the pending delete
            del self.unit_of_work.deleted[instance]
            return
        if instance.pk is None:
            instance._session = self
            self.unit_of_work.register_new(instance)
            return
        self._register(instance)

    def add_all(self, instances: Iterable[Model]) -> None:
        for instance in instances:
            self.add(instance)

    def delete(self, instance: Model) -> None:
        if instance in self.unit_of_work.new:
            self.unit_of_work.forget(instance)
            instance._session = None
            return
        if instance.pk is None:
            return
        if instance not in self.identity_map:
            instance = self.merge(instance)
        self.unit_of_work.register_deleted(instance)

    def mark_dirty(self, instance: Model) -> None:
        """Write every column of ``instance`` at the next flush."""
        self.unit_of_work.register_dirty(instance, force=True)

    def merge(self, instance: TModel) -> TModel:
        """
        Copy the state of a detached (or transient) ``instance`` onto the
        managed instance with the same identity and return the managed one.
        ``instance`` itself stays unmanaged.
        """
        if instance._session is self and (instance in self.identity_map or instance in self.unit_of_work.new):
            return instance
        model = type(instance)
        managed: Optional[TModel] = None
        if instance.pk is not None:
            managed = self.get(model, instance.pk)
        if managed is None:
            managed = model.__new__(model)
            managed._init_state()
            self._copy_state(instance, managed)
            managed._session = self
            self.unit_of_work.register_new(managed)
            return managed
        self._copy_state(instance, managed)
        return managed

    def detach(self, instance: Model) -> None:
        self.identity_map.remove(instance)
        self.unit_of_work.forget(instance)
        instance._session = None

    def clear(self) -> None:
        """
        Detach every managed entity and discard pending changes.
        """
        for instance in self.identity_map.values():
            instance._session = None
        for instance in self.unit_of_work.new:
            instance._session = None
        self.identity_map.clear()
        self.unit_of_work.clear()
        self.logger.debug("Persistence context cleared")

    def contains(self, instance: Model) -> bool:
        return instance in self.identity_map or instance in self.unit_of_work.new

    # ------------------------------------------------------------------ #
    # Loading
    # ------------------------------------------------------------------ #
    def get(self, model: Type[TModel], pk: Any) -> Optional[TModel]:
        """
        Return the entity with primary key ``pk``. The identity map is
        consulted first; a hit never re-reads the store.
        """
        if pk is None:
            return None
        pk_field = model._meta.require_primary_key()
        pk = pk_field.to_python(pk)
        cached = self.identity_map.get(model, pk)
        if cached is not None:
            if cached in self.unit_of_work.deleted:
                return None
            return cached
        from ..query.executor import QueryExecutor

        spec = QuerySpec(model, where=Q(**{pk_field.require_name(): pk}), source=f"{model.__name__}.get")
        return QueryExecutor(self).fetch_one(spec)

    def query(self, model: Type[Model]) -> "QuerySet":
        from ..query.queryset import QuerySet

        return QuerySet(model, session=self)

    def refresh(self, instance: Model) -> None:
        """
        Overwrite the scalar state of a managed ``instance`` from the store.
        Cached associations are dropped and reload on next access.
        """
        if instance not in self.identity_map:
            raise EntityNotFoundError(f"{type(instance).__name__} is not managed by this session.")
        model = type(instance)
        pk_name = model._meta.require_primary_key().require_name()
        compiled = SQLCompiler(self.dialect).compile(QuerySpec(model, where=Q(**{pk_name: instance.pk})))
        row = self.execute(compiled.sql, compiled.params).fetchone()
        if row is None:
            raise EntityNotFoundError(f"{model.__name__} with {pk_name}={instance.pk!r} no longer exists.")
        for label, value in zip(compiled.columns, row):
            model._meta.get_field(label).load(instance, value)
        instance._related_cache.clear()
        instance._mark_clean()
        self.unit_of_work.dirty.pop(instance, None)
        self.unit_of_work.forced.pop(instance, None)

    def execute(self, sql: str, params: Iterable[Any] | None = None, *, source: Optional[str] = None):
        param_list = list(params or [])
        with time_call(
            "session.execute",
            self.logger,
            sql=sql,
            params=redact_params(param_list),
            threshold_ms=self.settings.slow_query_ms,
        ) as timer:
            cursor = self.adapter.execute(sql, param_list)
        self.performance.record(sql, param_list, timer.elapsed_ms, source=source)
        return cursor

    def query_stats(self) -> List[Dict[str, object]]:
        return self.performance.summary()

    def reset_query_stats(self) -> None:
        self.performance.reset()

    def _autoflush(self) -> None:
        if not self.autoflush or self._flushing:
            return
        if self.unit_of_work.has_pending() or any(
            not instance._read_only and instance.is_dirty() for instance in self.identity_map
        ):
            self.flush()

    def _materialize(self, model: Type[TModel], data: Mapping[str, Any], *, read_only: bool = False) -> TModel:
        """
        Resolve a loaded row against the identity map. An already-managed
        instance is returned as is; its in-memory state is not overwritten.
        """
        pk_field = model._meta.require_primary_key()
        pk = pk_field.from_db(data.get(pk_field.require_name()))
        existing = self.identity_map.get(model, pk)
        if existing is not None:
            return existing
        instance = model._from_row(data)
        instance._session = self
        instance._read_only = read_only
        self.identity_map.register(instance)
        return instance

    # ------------------------------------------------------------------ #
    # Flush
    # ------------------------------------------------------------------ #
    def flush(self) -> None:
        if self._flushing:
            return
        self._flushing = True
        uow = self.unit_of_work
        try:
            dirty = uow.collect_dirty(self.identity_map.values())
            for instance in list(uow.new):
                self._persist_new(instance)
                uow.new.pop(instance, None)
            for instance in dirty:
                self._persist_dirty(instance, force=instance in uow.forced)
                uow.dirty.pop(instance, None)
                uow.forced.pop(instance, None)
            for instance in list(uow.deleted):
                self._persist_deleted(instance)
                uow.deleted.pop(instance, None)
        finally:
            self._flushing = False

    # ------------------------------------------------------------------ #
    # Persistence helpers
    # ------------------------------------------------------------------ #
    def _register(self, instance: Model) -> None:
        canonical = self.identity_map.register(instance)
        if canonical is not instance:
            raise IdentityConflictError(
                f"{type(instance).__name__} with primary key {instance.pk!r} is already managed "
                "by this session as a different object; use merge()."
            )
        instance._session = self

    def _validate(self, instance: Model) -> None:
        self.hooks.fire(BEFORE_VALIDATE, instance, session=self)
        instance.full_clean()
        self.hooks.fire(AFTER_VALIDATE, instance, session=self)

    def _persist_new(self, instance: Model) -> None:
        for fk in instance._meta.foreign_keys:
            fk.sync(instance)
        self._validate(instance)
        self.hooks.fire(BEFORE_SAVE, instance, session=self, created=True)
        meta = instance._meta
        pk_field = meta.require_primary_key()
        table = self.dialect.format_table(meta.table)
        columns = []
        params = []
        for field in meta.get_fields():
            value = instance._field_values.get(field.require_name())
            if field.primary_key and value is None:
                continue
            columns.append(self.dialect.quote_identifier(field.column_name()))
            params.append(field.to_db(value))

        placeholders = ", ".join(self.dialect.parameter_placeholder() for _ in columns)
        if columns:
            sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
        else:
            sql = f"INSERT INTO {table} DEFAULT VALUES"

        returning = instance.pk is None and self.dialect.capabilities.supports_returning
        if returning:
            sql = f"{sql} {self.dialect.returning_clause(pk_field.column_name())}"
        cursor = self.execute(sql, params)

        if instance.pk is None:
            if returning:
                pk_value = cursor.fetchone()[0]
            else:
                pk_value = self.adapter.last_insert_id(cursor, meta.table, pk_field.column_name())
            pk_field.load(instance, pk_value)

        self._register(instance)
        instance._read_only = False
        instance._mark_clean()
        self.hooks.fire(AFTER_SAVE, instance, session=self, created=True)

    def _persist_dirty(self, instance: Model, *, force: bool = False) -> None:
        if not force and not instance.changed_fields():
            return
        self._validate(instance)
        self.hooks.fire(BEFORE_SAVE, instance, session=self, created=False)
        meta = instance._meta
        pk_field = meta.require_primary_key()

        changed = set(instance.changed_fields())
        set_clauses = []
        params = []
        for field in meta.get_fields():
            if field.primary_key or not field.updatable:
                continue
            name = field.require_name()
            if not force and name not in changed:
                continue
            set_clauses.append(
                f"{self.dialect.quote_identifier(field.column_name())} = {self.dialect.parameter_placeholder()}"
            )
            params.append(field.to_db(instance._field_values.get(name)))

        if set_clauses:
            table = self.dialect.format_table(meta.table)
            pk_clause = (
                f"{self.dialect.quote_identifier(pk_field.column_name())} = {self.dialect.parameter_placeholder()}"
            )
            params.append(pk_field.to_db(instance.pk))
            self.execute(f"UPDATE {table} SET {', '.join(set_clauses)} WHERE {pk_clause}", params)
        instance._mark_clean()
        self.hooks.fire(AFTER_SAVE, instance, session=self, created=False)

    def _persist_deleted(self, instance: Model) -> None:
        pk_field = instance._meta.require_primary_key()
        self.hooks.fire(BEFORE_DELETE, instance, session=self)
        table = self.dialect.format_table(instance._meta.table)
        pk_clause = f"{self.dialect.quote_identifier(pk_field.column_name())} = {self.dialect.parameter_placeholder()}"
        self.execute(f"DELETE FROM {table} WHERE {pk_clause}", (pk_field.to_db(instance.pk),))
        self.identity_map.remove(instance)
        instance._session = None
        self.hooks.fire(AFTER_DELETE, instance, session=self)

    @staticmethod
    def _copy_state(source: Model, target: Model) -> None:
        for field in source._meta.get_fields():
            name = field.require_name()
            if not field.updatable and name in target._field_values:
                continue
            if name in source._field_values:
                target._field_values[name] = source._field_values[name]
        for fk in source._meta.foreign_keys:
            name = fk.require_name()
            related = source._related_cache.get(name)
            if related is not None and related.pk is not None:
                target._field_values[name] = related.pk
            target._related_cache.pop(name, None)
