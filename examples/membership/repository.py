"""
Member repository: every way of declaring a query, on one entity.
"""

from __future__ import annotations

from quarry.dialects import LockMode
from quarry.repository import Repository, derived, modifying, named, query

from .models import Member, MemberDto


class MemberRepository(Repository[Member]):
    model = Member
    # find_all() loads each member's team in the same statement
    find_all_graph = "all"

    # method-name derivation
    find_by_username_and_age_greater_than = derived()
    find_list_by_username = derived()
    find_member_by_username = derived(returns="one")
    find_top3_by_order_by_age_desc = derived()
    find_by_age = derived(returns="page")
    find_slice_by_age = derived(returns="slice")
    count_by_team_name = derived()
    exists_by_username = derived()
    delete_by_username = derived()
    find_read_only_by_username = derived(returns="one", read_only=True)
    find_locked_by_username = derived(lock=LockMode.PESSIMISTIC_WRITE)
    find_with_team_by_username = derived(method="find_by_username", fetch=("team",))

    # named query and named entity graph
    find_by_username = named("findByUsername")
    find_member_named_entity_graph = query("select m from Member m", entity_graph="all")

    # query strings
    find_user = query("select m from Member m where m.username = :username and m.age = :age")
    find_username_list = query("select m.username from Member m")
    find_member_dto = query(
        "select new MemberDto(m.id, m.username, t.name) from Member m join m.team t",
        types={"MemberDto": MemberDto},
    )
    find_members = query("select m from Member m where m.username = :name", returns="one")
    find_by_names = query("select m from Member m where m.username in :names")
    find_member_all_count_by = query(
        "select m from Member m left join m.team t",
        count_query="select count(m.username) from Member m",
        returns="page",
    )
    find_member_fetch_join = query("select m from Member m left join fetch m.team")
    find_member_entity_graph = query("select m from Member m", fetch=("team",))

    # bulk mutation
    bulk_age_plus = modifying("update Member m set m.age = m.age + 1 where m.age >= :age")
    bulk_age_plus_and_clear = modifying(
        "update Member m set m.age = m.age + 1 where m.age >= :age", clear_automatically=True
    )
