import logging

import pytest

from quarry.adapters import ConnectionConfig, SQLiteAdapter
from quarry.core import IntegerField, Model, StringField
from quarry.errors import QuerySpecificationError, QuerySyntaxError, UnknownNamedQueryError
from quarry.persistence import Session
from quarry.query import named_queries
from quarry.query.named import NamedQueryRegistry
from quarry.query.spec import MutationSpec, OrderBy
from quarry.repository import Repository, derived, named
from quarry.schema import SchemaBuilder


class Poet(Model):
    name = StringField(nullable=False)
    age = IntegerField(default=0)


named_queries.register(Poet, "find_by_name", "select p from Poet p where p.name = :name order by p.age desc")
named_queries.register(Poet, "retire", "update Poet p set p.age = p.age + :years where p.age >= :age")


class PoetRepository(Repository[Poet]):
    model = Poet

    find_by_name = derived()
    find_by_age = derived()
    retire = named()


def test_register_and_resolve():
    registry = NamedQueryRegistry()
    entry = registry.register(Poet, "byAge", "select p from Poet p where p.age = :age")
    assert entry.name == "Poet.byAge"
    assert entry.statement.source == "Poet.byAge"
    assert registry.resolve(Poet, "byAge") is entry
    assert registry.resolve(Poet, "Poet.byAge") is entry
    assert "Poet.byAge" in registry
    assert registry.find(Poet, "missing") is None


def test_unknown_named_query():
    registry = NamedQueryRegistry()
    with pytest.raises(UnknownNamedQueryError):
        registry.resolve(Poet, "missing")


def test_malformed_query_fails_at_registration():
    with pytest.raises(QuerySyntaxError):
        NamedQueryRegistry().register(Poet, "broken", "select p from Poet p where")


def test_replacing_logs_a_warning(caplog):
    caplog.set_level(logging.WARNING, logger="quarry.query.named")
    registry = NamedQueryRegistry()
    registry.register(Poet, "byAge", "select p from Poet p where p.age = :age")
    registry.register(Poet, "byAge", "select p from Poet p where p.age > :age")
    assert any("Replacing named query Poet.byAge" in record.message for record in caplog.records)

    registry.clear()
    assert "Poet.byAge" not in registry


def test_mutations_can_be_registered():
    entry = NamedQueryRegistry().register(Poet, "purge", "delete from Poet p where p.age > :age")
    assert isinstance(entry.statement, MutationSpec)
    assert entry.statement.parameters == ("age",)


def test_named_query_takes_precedence_over_derivation():
    method = PoetRepository.find_by_name
    assert method.spec.ordering == (OrderBy("age", True),)
    assert method.spec.source == "PoetRepository.find_by_name"
    assert PoetRepository.find_by_age.spec.ordering == ()


def test_derived_name_matching_a_mutation_is_rejected():
    named_queries.register(Poet, "find_by_age_less_than", "delete from Poet p where p.age < :age")
    with pytest.raises(QuerySpecificationError):

        class BrokenRepository(Repository[Poet]):
            model = Poet

            find_by_age_less_than = derived()


def test_named_queries_run_through_repository(tmp_path):
    session = Session(SQLiteAdapter(), connection_config=ConnectionConfig(url=f"sqlite:///{tmp_path / 'n.db'}"))
    SchemaBuilder(session.dialect).create_all(session, [Poet])
    with session.transaction():
        session.add_all([Poet(name="keats", age=25), Poet(name="keats", age=30), Poet(name="blake", age=69)])

    poets = PoetRepository(session)
    with session.transaction():
        assert [poet.age for poet in poets.find_by_name("keats")] == [30, 25]
    with session.transaction():
        assert poets.retire(years=10, age=30) == 2
        assert poets.retire(1, 200) == 0
    session.close()
