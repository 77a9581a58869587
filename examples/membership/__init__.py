"""
Membership sample application: members, teams and a repository declaring
derived, string, named and bulk queries.
"""

from .demo import bootstrap_session, run_demo, seed_sample_data
from .models import Member, MemberDto, Team
from .repository import MemberRepository

__all__ = [
    "Member",
    "MemberDto",
    "MemberRepository",
    "Team",
    "bootstrap_session",
    "run_demo",
    "seed_sample_data",
]
