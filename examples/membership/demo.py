"""
Membership example: bootstrap, seed and query through MemberRepository.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from quarry.adapters import ConnectionConfig, SQLiteAdapter
from quarry.hooks import AuditingListener, HookDispatcher
from quarry.hooks.auditing import Clock
from quarry.persistence import Session
from quarry.query import PageRequest, Sort
from quarry.schema import SchemaBuilder

from .models import Member, Team
from .repository import MemberRepository


def bootstrap_session(dsn: str = "sqlite:///:memory:", *, clock: Optional[Clock] = None) -> Session:
    """
    Open a session with auditing enabled for the example models and create
    their tables.
    """
    dispatcher = HookDispatcher()
    AuditingListener(clock, dispatcher=dispatcher).register(Team, Member)
    session = Session(
        SQLiteAdapter(),
        connection_config=ConnectionConfig.from_dsn(dsn),
        dispatcher=dispatcher,
    )
    SchemaBuilder(session.dialect).create_all(session, [Member, Team])
    return session


def seed_sample_data(session: Session) -> Dict[str, List[Dict[str, Any]]]:
    teams = [Team(name="teamA"), Team(name="teamB")]
    members = [
        Member(username="member1", age=10),
        Member(username="member2", age=19),
        Member(username="member3", age=20),
        Member(username="member4", age=21),
        Member(username="member5", age=40),
    ]
    with session.transaction():
        session.add_all(teams)
        for index, member in enumerate(members):
            member.change_team(teams[index % 2])
            session.add(member)
        session.flush()
        seeded = {
            "teams": [team.to_dict() for team in teams],
            "members": [member.to_dict() for member in members],
        }
    return seeded


def run_demo(dsn: str = "sqlite:///:memory:") -> Dict[str, Any]:
    """
    Seed the example data and return a summary of a few repository calls.
    """
    session = bootstrap_session(dsn)
    try:
        seed_sample_data(session)
        members = MemberRepository(session)
        with session.transaction():
            page = members.find_by_age(10, pageable=PageRequest.of(0, 3, Sort.by("-username")))
            roster = [
                {"username": member.username, "team": member.team.name if member.team else None}
                for member in members.find_all(sort="username")
            ]
            summary = {
                "roster": roster,
                "dtos": members.find_member_dto(),
                "usernames": members.find_username_list(),
                "page_total": page.total_elements,
            }
        with session.transaction():
            summary["bulk_updated"] = members.bulk_age_plus(20)
        summary["query_stats"] = session.query_stats()
        return summary
    finally:
        session.close()
