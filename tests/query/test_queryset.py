import pytest

from quarry.core import ForeignKey, IntegerField, Model, StringField
from quarry.dialects import LockMode, PostgresDialect
from quarry.errors import FetchPlanError, QuerySpecificationError
from quarry.query import Q, QuerySet
from quarry.query.compiler import SQLCompiler
from quarry.query.spec import Join, JoinKind, MutationKind, MutationSpec


class Writer(Model):
    name = StringField(nullable=False)
    age = IntegerField()


class Book(Model):
    title = StringField()
    writer = ForeignKey(Writer, related_name="books")


WRITER_COLUMNS = 'SELECT t0."id" AS "id", t0."name" AS "name", t0."age" AS "age" FROM "writer" t0'


def test_queryset_to_sql_simple_filter():
    qs = QuerySet(Writer).filter(name="Alice")
    sql, params = qs.to_sql()
    assert sql == WRITER_COLUMNS + ' WHERE t0."name" = ?'
    assert params == ["Alice"]


def test_queryset_ordering_and_limit():
    qs = QuerySet(Writer).filter(age__gte=18).order_by("-age").limit(5)
    sql, params = qs.to_sql()
    assert sql == WRITER_COLUMNS + ' WHERE t0."age" >= ? ORDER BY t0."age" DESC LIMIT 5'
    assert params == [18]


def test_queryset_combined_q_objects():
    qs = QuerySet(Writer).where(Q(name="Alice") | Q(age__lt=18)).offset(10)
    sql, params = qs.to_sql()
    assert sql == WRITER_COLUMNS + ' WHERE (t0."name" = ?) OR (t0."age" < ?) LIMIT -1 OFFSET 10'
    assert params == ["Alice", 18]


def test_queryset_exclude_negates_expression():
    qs = QuerySet(Writer).exclude(name="Bob")
    sql, params = qs.to_sql()
    assert sql == WRITER_COLUMNS + ' WHERE NOT (t0."name" = ?)'
    assert params == ["Bob"]


def test_queryset_null_equality_generates_is_null():
    qs = QuerySet(Writer).filter(age=None)
    sql, params = qs.to_sql()
    assert sql == WRITER_COLUMNS + ' WHERE t0."age" IS NULL'
    assert params == []


def test_like_lookups_wrap_value():
    sql, params = QuerySet(Writer).filter(name__startswith="A").to_sql()
    assert sql.endswith('WHERE t0."name" LIKE ?')
    assert params == ["A%"]


def test_empty_in_list_matches_nothing():
    sql, params = QuerySet(Writer).filter(id__in=[]).to_sql()
    assert sql.endswith("WHERE 1 = 0")
    assert params == []


def test_unknown_field_raises():
    qs = QuerySet(Writer).filter(name__regex="A")
    with pytest.raises(QuerySpecificationError):
        qs.to_sql()


def test_queryset_is_immutable():
    base = QuerySet(Writer)
    filtered = base.filter(name="Alice")
    assert base.to_sql()[0] == WRITER_COLUMNS
    assert filtered is not base


def test_select_related_generates_left_join():
    qs = QuerySet(Book).select_related("writer")
    sql, params = qs.to_sql()
    assert 'LEFT JOIN "writer" t1 ON t0."writer_id" = t1."id"' in sql
    assert 't1."name" AS "writer__name"' in sql
    assert params == []


def test_filter_through_association_uses_inner_join():
    sql, params = QuerySet(Book).filter(writer__name="Alice").to_sql()
    assert 'INNER JOIN "writer" t1 ON t0."writer_id" = t1."id"' in sql
    assert sql.endswith('WHERE t1."name" = ?')
    assert params == ["Alice"]


def test_filter_on_foreign_key_id_avoids_join():
    sql, params = QuerySet(Book).filter(writer__id=3).to_sql()
    assert "JOIN" not in sql
    assert sql.endswith('WHERE t0."writer_id" = ?')
    assert params == [3]


def test_prefetch_related_plans_batches():
    qs = QuerySet(Writer).prefetch_related("books")
    spec = qs.to_spec()
    assert spec.batches == ("books",)
    assert "JOIN" not in qs.to_sql()[0]


def test_fetch_rejects_unknown_or_scalar_paths():
    with pytest.raises(FetchPlanError):
        QuerySet(Writer).fetch("awards")
    with pytest.raises(FetchPlanError):
        QuerySet(Writer).fetch("name")


def test_values_projection_selects_columns():
    sql, _ = QuerySet(Book).values("title", "writer.name").to_sql()
    assert sql.startswith('SELECT t0."title", t1."name" FROM "book" t0 INNER JOIN "writer" t1')


def test_lock_renders_per_dialect():
    spec = QuerySet(Writer).filter(name="Alice").lock(LockMode.PESSIMISTIC_WRITE).to_spec()
    compiled = SQLCompiler(PostgresDialect()).compile(spec)
    assert compiled.sql.endswith('WHERE t0."name" = %s FOR UPDATE')
    assert "FOR UPDATE" not in QuerySet(Writer).lock().to_sql()[0]


def test_count_projection():
    spec = QuerySet(Writer).filter(age__gt=3).to_spec().as_count()
    compiled = SQLCompiler(PostgresDialect()).compile(spec)
    assert compiled.sql == 'SELECT COUNT(*) FROM "writer" t0 WHERE t0."age" > %s'
    assert compiled.params == [3]


def test_mutation_through_association_uses_subquery():
    from quarry.dialects import SQLiteDialect

    mutation = MutationSpec(
        Book, MutationKind.UPDATE, assignments=(("title", "x"),), where=Q(writer__name="Alice")
    )
    compiled = SQLCompiler(SQLiteDialect()).compile_mutation(mutation)
    assert compiled.sql == (
        'UPDATE "book" SET "title" = ? WHERE "id" IN '
        '(SELECT t0."id" FROM "book" t0 INNER JOIN "writer" t1 ON t0."writer_id" = t1."id" '
        'WHERE t1."name" = ?)'
    )
    assert compiled.params == ["x", "Alice"]


def test_mutation_rejects_primary_key_assignment():
    from quarry.dialects import SQLiteDialect

    mutation = MutationSpec(Writer, MutationKind.UPDATE, assignments=(("id", 5),))
    with pytest.raises(QuerySpecificationError):
        SQLCompiler(SQLiteDialect()).compile_mutation(mutation)


def test_mysql_mutation_reads_its_own_table_through_a_derived_table():
    from quarry.dialects import MySQLDialect

    mutation = MutationSpec(Book, MutationKind.DELETE, where=Q(writer__name="Alice"))
    compiled = SQLCompiler(MySQLDialect()).compile_mutation(mutation)
    assert compiled.sql == (
        "DELETE FROM `book` WHERE `id` IN (SELECT `id` FROM "
        "(SELECT t0.`id` FROM `book` t0 INNER JOIN `writer` t1 ON t0.`writer_id` = t1.`id` "
        "WHERE t1.`name` = %s) `matched`)"
    )
    assert compiled.params == ["Alice"]


def test_count_drops_outer_fetch_joins():
    spec = QuerySet(Book).fetch("writer").filter(title="Dune").to_spec()
    assert spec.joins == (Join("writer", JoinKind.LEFT, fetch=True),)

    compiled = SQLCompiler(PostgresDialect()).compile(spec.as_count())
    assert compiled.sql == 'SELECT COUNT(*) FROM "book" t0 WHERE t0."title" = %s'


def test_count_keeps_inner_fetch_joins_as_filters():
    spec = QuerySet(Book).to_spec().replace(joins=(Join("writer", JoinKind.INNER, fetch=True),))
    counter = spec.as_count()
    assert counter.joins == (Join("writer", JoinKind.INNER),)

    compiled = SQLCompiler(PostgresDialect()).compile(counter)
    assert compiled.sql == (
        'SELECT COUNT(*) FROM "book" t0 INNER JOIN "writer" t1 ON t0."writer_id" = t1."id"'
    )
