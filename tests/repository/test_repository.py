import pytest

from examples.membership import Member, MemberDto, MemberRepository, Team, bootstrap_session, seed_sample_data
from quarry.core import Model, ModelConfigurationError, StringField
from quarry.errors import DerivationError, NonUniqueResultError, QueryParameterError, QuerySpecificationError
from quarry.query import Page, PageRequest, Slice, Sort
from quarry.repository import Repository, derived


@pytest.fixture
def session():
    session = bootstrap_session()
    seed_sample_data(session)
    yield session
    session.close()


@pytest.fixture
def members(session):
    return MemberRepository(session)


def usernames(items):
    return [member.username for member in items]


def test_derived_finders(session, members):
    with session.transaction():
        assert usernames(members.find_by_username_and_age_greater_than("member3", 15)) == ["member3"]
        assert members.find_by_username_and_age_greater_than("member1", 15) == []
        assert usernames(members.find_list_by_username(username="member2")) == ["member2"]
        assert members.find_member_by_username("member4").age == 21
        assert members.find_member_by_username("nobody") is None
        assert [member.age for member in members.find_top3_by_order_by_age_desc()] == [40, 21, 20]


def test_count_and_exists(session, members):
    with session.transaction():
        assert members.count_by_team_name("teamA") == 3
        assert members.count_by_team_name("teamB") == 2
        assert members.exists_by_username("member1") is True
        assert members.exists_by_username("nobody") is False
        assert members.count() == 5


def test_derived_delete_removes_through_the_session(session, members):
    with session.transaction():
        assert members.delete_by_username("member1") == 1
        assert members.exists_by_username("member1") is False
    with session.transaction():
        assert members.count() == 4


def test_page_and_slice_need_pageable(session, members):
    with session.transaction():
        page = members.find_by_age(10, pageable=PageRequest.of(0, 3, Sort.by("-username")))
        assert isinstance(page, Page)
        assert page.total_elements == 1

        window = members.find_slice_by_age(10, pageable=PageRequest.of(0, 3))
        assert isinstance(window, Slice)
        assert not window.has_next

        with pytest.raises(TypeError):
            members.find_by_age(10)
        with pytest.raises(TypeError):
            members.find_slice_by_age(10)


def test_query_strings(session, members):
    with session.transaction():
        assert usernames(members.find_user("member1", 10)) == ["member1"]
        assert usernames(members.find_user(username="member1", age=11)) == []
        assert sorted(members.find_username_list()) == [f"member{idx}" for idx in range(1, 6)]
        assert members.find_members(name="member2").age == 19
        assert sorted(usernames(members.find_by_names(["member1", "member5"]))) == ["member1", "member5"]

        dtos = sorted(members.find_member_dto(), key=lambda dto: dto.username)
        assert all(isinstance(dto, MemberDto) for dto in dtos)
        assert [dto.team_name for dto in dtos] == ["teamA", "teamB", "teamA", "teamB", "teamA"]


def test_query_parameters_are_checked(session, members):
    with session.transaction():
        with pytest.raises(QueryParameterError):
            members.find_user("member1")
        with pytest.raises(QueryParameterError):
            members.find_user("member1", 10, nickname="x")


def test_single_result_must_be_unique(session, members):
    with session.transaction():
        members.save(Member(username="member1", age=77))
        with pytest.raises(NonUniqueResultError) as excinfo:
            members.find_member_by_username("member1")
        assert excinfo.value.count == 2


def test_custom_count_query(session, members):
    with session.transaction():
        page = members.find_member_all_count_by(pageable=PageRequest.of(0, 2, "username"))
        assert usernames(page) == ["member1", "member2"]
        assert page.total_elements == 5
        assert page.total_pages == 3


@pytest.mark.parametrize(
    "method",
    ["find_member_fetch_join", "find_member_entity_graph", "find_member_named_entity_graph", "find_all"],
)
def test_fetch_directives_load_teams_in_one_statement(session, members, method):
    with session.transaction():
        session.reset_query_stats()
        loaded = getattr(members, method)()
        teams = sorted(member.team.name for member in loaded)
        assert teams == ["teamA", "teamA", "teamA", "teamB", "teamB"]
        assert session.performance.statement_count == 1


def test_fetch_option_on_derived_method(session, members):
    with session.transaction():
        session.reset_query_stats()
        (member,) = members.find_with_team_by_username("member2")
        assert member.team.name == "teamB"
        assert session.performance.statement_count == 1


def test_named_query(session, members):
    with session.transaction():
        assert usernames(members.find_by_username("member5")) == ["member5"]


def test_read_only_results_are_not_flushed(session, members):
    with session.transaction():
        member = members.find_read_only_by_username("member1")
        member.age = 99
        session.reset_query_stats()
    assert session.performance.executions("UPDATE") == 0

    with session.transaction():
        assert members.find_member_by_username("member1").age == 10


def test_lock_hint_runs_on_sqlite(session, members):
    with session.transaction():
        assert usernames(members.find_locked_by_username("member3")) == ["member3"]


def test_bulk_update(session, members):
    with session.transaction():
        assert members.bulk_age_plus(20) == 3
    with session.transaction():
        assert members.find_member_by_username("member5").age == 41


def test_bulk_update_and_clear(session, members):
    with session.transaction():
        loaded = members.find_member_by_username("member5")
        assert members.bulk_age_plus_and_clear(20) == 3
        assert not session.contains(loaded)
        assert members.find_member_by_username("member5").age == 41


def test_bulk_update_sees_members_saved_in_the_same_transaction():
    session = bootstrap_session()
    members = MemberRepository(session)
    try:
        with session.transaction():
            for idx, age in enumerate([10, 19, 20, 21, 40], start=1):
                members.save(Member(username=f"member{idx}", age=age))
            assert members.bulk_age_plus(20) == 3
        with session.transaction():
            ages = sorted(member.age for member in members.find_all())
        assert ages == [10, 19, 21, 22, 41]
    finally:
        session.close()


def test_bulk_update_and_clear_keeps_unflushed_changes(session, members):
    with session.transaction():
        loaded = members.find_member_by_username("member1")
        loaded.username = "renamed"
        assert members.bulk_age_plus_and_clear(20) == 3
    with session.transaction():
        assert members.find_member_by_username("renamed").age == 10
        assert members.exists_by_username("member1") is False


def test_crud_operations(session, members):
    with session.transaction():
        team = session.query(Team).filter(name="teamA").one()
        saved = members.save(Member(username="member6", age=30))
        saved.change_team(team)
        members.flush()
        assert saved.id is not None
        assert members.exists_by_id(saved.id)
        assert [member.username for member in members.find_all_by_id([1, saved.id])] == ["member1", "member6"]
        assert members.find_all_by_id([]) == []

    with session.transaction():
        page = members.find_all(pageable=PageRequest.of(0, 4, "-age"))
        assert [member.age for member in page] == [40, 30, 21, 20]
        assert page.total_elements == 6
        assert usernames(members.find_all(sort="-username"))[0] == "member6"


def test_save_merges_detached_instances(session, members):
    with session.transaction():
        detached = members.find_member_by_username("member2")
    detached.age = 50

    with session.transaction():
        managed = members.save(detached)
        assert managed is not detached
        assert managed.age == 50
    with session.transaction():
        assert members.find_member_by_username("member2").age == 50


def test_delete_helpers(session, members):
    with session.transaction():
        members.delete_by_id(1)
        members.delete_by_id(999)
    with session.transaction():
        assert members.count() == 4
        assert members.delete_all_in_batch() == 4
    with session.transaction():
        assert members.count() == 0


def test_repository_requires_a_model():
    with pytest.raises(ModelConfigurationError):

        class Orphan(Repository):
            find_by_name = derived()

    class Bare(Repository):
        pass

    with pytest.raises(ModelConfigurationError):
        Bare(session=None)


def test_unbound_declarations_raise_instead_of_running():
    loose = derived()
    with pytest.raises(QuerySpecificationError) as excinfo:
        loose.compiled_spec()
    assert "before its repository compiled it" in str(excinfo.value)

    class Unmodelled(Repository):
        pass

    repository = object.__new__(Unmodelled)
    with pytest.raises(ModelConfigurationError):
        repository.entity


def test_declarations_are_validated_at_class_creation():
    class Label(Model):
        text = StringField()

    with pytest.raises(DerivationError) as excinfo:

        class LabelRepository(Repository[Label]):
            model = Label

            find_by_colour = derived()

    assert "colour" in str(excinfo.value)
