import pytest

from quarry.core import BooleanField, ForeignKey, IntegerField, Model, StringField
from quarry.dialects import SQLiteDialect
from quarry.errors import DerivationError, QueryParameterError
from quarry.query.compiler import SQLCompiler
from quarry.query.derivation import Subject, bind_arguments, derive_query
from quarry.query.expressions import OR
from quarry.query.spec import OrderBy, ProjectionKind


class Squad(Model):
    name = StringField(nullable=False)


class Athlete(Model):
    username = StringField(nullable=False)
    age = IntegerField(default=0)
    active = BooleanField(default=True)
    squad = ForeignKey(Squad, related_name="athletes", nullable=True)


def compile_where(method, **bindings):
    derived = derive_query(Athlete, method)
    compiled = SQLCompiler(SQLiteDialect()).compile(derived.spec, bindings)
    return compiled.sql.split(" WHERE ", 1)[1], compiled.params


def test_and_of_equality_and_comparison():
    derived = derive_query(Athlete, "find_by_username_and_age_greater_than")
    assert derived.subject is Subject.FIND
    assert derived.parameters == ("username", "age")

    where, params = compile_where("find_by_username_and_age_greater_than", username="ann", age=20)
    assert where == '(t0."username" = ?) AND (t0."age" > ?)'
    assert params == ["ann", 20]


def test_or_binds_looser_than_and():
    derived = derive_query(Athlete, "find_by_username_or_age_and_active_true")
    assert derived.spec.where.connector == OR
    assert derived.parameters == ("username", "age")


def test_association_path_is_resolved_greedily():
    derived = derive_query(Athlete, "count_by_squad_name")
    assert derived.subject is Subject.COUNT
    assert derived.spec.projection.kind is ProjectionKind.COUNT
    assert derived.parameters == ("squad_name",)

    sql = SQLCompiler(SQLiteDialect()).compile(derived.spec, {"squad_name": "red"}).sql
    assert 'INNER JOIN "squad" t1 ON t0."squad_id" = t1."id"' in sql
    assert sql.endswith('WHERE t1."name" = ?')


def test_double_underscore_forces_traversal():
    derived = derive_query(Athlete, "find_by_squad__name")
    assert [key for key, _ in derived.spec.where.leaves()] == ["squad__name__exact"]
    assert derived.parameters == ("squad_name",)


def test_zero_argument_operators():
    where, params = compile_where("find_by_squad_is_null")
    assert where == 't0."squad_id" IS NULL'
    assert params == []

    derived = derive_query(Athlete, "find_by_active_true")
    assert derived.parameters == ()
    assert list(derived.spec.where.leaves())[0][0] == "active__exact"


def test_between_takes_two_parameters():
    derived = derive_query(Athlete, "find_by_age_between")
    assert derived.parameters == ("age_from", "age_to")

    where, params = compile_where("find_by_age_between", age_from=10, age_to=20)
    assert where == 't0."age" BETWEEN ? AND ?'
    assert params == [10, 20]


def test_like_family_wraps_patterns():
    _, params = compile_where("find_by_username_starting_with", username="an")
    assert params == ["an%"]
    _, params = compile_where("find_by_username_containing", username="n")
    assert params == ["%n%"]


def test_in_operator_and_repeated_names():
    where, params = compile_where("find_by_age_in", age=[1, 2])
    assert where == 't0."age" IN (?, ?)'
    assert params == [1, 2]

    derived = derive_query(Athlete, "find_by_age_greater_than_and_age_less_than")
    assert derived.parameters == ("age", "age_2")


def test_ignore_case():
    where, _ = compile_where("find_by_username_ignore_case", username="ANN")
    assert where == 'LOWER(t0."username") = LOWER(?)'

    derived = derive_query(Athlete, "find_by_username_and_age_all_ignore_case")
    keys = [key for key, _ in derived.spec.where.leaves()]
    assert keys == ["username__iexact", "age__exact"]


def test_ignore_case_requires_equality():
    with pytest.raises(DerivationError):
        derive_query(Athlete, "find_by_age_greater_than_ignore_case")


def test_limit_and_ordering():
    derived = derive_query(Athlete, "find_top3_by_order_by_age_desc")
    assert derived.spec.limit == 3
    assert derived.spec.where is None
    assert derived.spec.ordering == (OrderBy("age", True),)

    first = derive_query(Athlete, "find_first_by_username_order_by_age_asc_username_desc")
    assert first.spec.limit == 1
    assert first.spec.ordering == (OrderBy("age", False), OrderBy("username", True))


def test_distinct_and_subjects():
    assert derive_query(Athlete, "find_distinct_by_username").spec.distinct is True
    exists = derive_query(Athlete, "exists_by_username")
    assert exists.subject is Subject.EXISTS
    assert exists.spec.projection.kind is ProjectionKind.EXISTS
    assert derive_query(Athlete, "delete_by_username").subject is Subject.DELETE
    assert derive_query(Athlete, "read_by_username").subject is Subject.FIND


def test_unknown_subject_is_rejected():
    with pytest.raises(DerivationError) as excinfo:
        derive_query(Athlete, "fetch_by_username")
    assert excinfo.value.method == "fetch_by_username"


def test_unknown_field_is_rejected():
    with pytest.raises(DerivationError) as excinfo:
        derive_query(Athlete, "find_by_nickname")
    assert "nickname" in str(excinfo.value)


def test_dangling_order_by_is_rejected():
    with pytest.raises(DerivationError):
        derive_query(Athlete, "find_by_username_order_by")


def test_bind_arguments():
    names = ("username", "age")
    assert bind_arguments("m", names, ("ann",), {"age": 3}) == {"username": "ann", "age": 3}
    with pytest.raises(QueryParameterError):
        bind_arguments("m", names, ("a", 1, 2), {})
    with pytest.raises(QueryParameterError):
        bind_arguments("m", names, ("a",), {"nickname": 1})
    with pytest.raises(QueryParameterError):
        bind_arguments("m", names, ("a",), {})
    with pytest.raises(QueryParameterError):
        bind_arguments("m", names, ("a",), {"username": "b", "age": 1})


def test_query_parameter_error_is_a_type_error():
    derived = derive_query(Athlete, "find_by_username")
    with pytest.raises(TypeError):
        derived.bind((), {})
