from datetime import datetime

from examples.membership import MemberRepository, bootstrap_session, run_demo, seed_sample_data


class FixedClock:
    def __init__(self):
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return datetime(2024, 1, 1, 12, 0, self.calls)


def test_membership_example_bootstrap_and_seed(tmp_path):
    db_path = tmp_path / "membership_example.db"
    clock = FixedClock()
    session = bootstrap_session(dsn=f"sqlite:///{db_path}", clock=clock)
    try:
        seeded = seed_sample_data(session)
        assert len(seeded["teams"]) == 2
        assert len(seeded["members"]) == 5
        assert all(member["created_date"] is not None for member in seeded["members"])
        assert clock.calls > 0

        with session.transaction():
            members = MemberRepository(session)
            assert members.count_by_team_name("teamA") == 3
    finally:
        session.close()


def test_run_demo_summarizes_queries():
    summary = run_demo()
    assert [entry["username"] for entry in summary["roster"]] == [f"member{idx}" for idx in range(1, 6)]
    assert {entry["team"] for entry in summary["roster"]} == {"teamA", "teamB"}
    assert len(summary["dtos"]) == 5
    assert sorted(summary["usernames"]) == [f"member{idx}" for idx in range(1, 6)]
    assert summary["page_total"] == 1
    assert summary["bulk_updated"] == 3
    assert summary["query_stats"]
