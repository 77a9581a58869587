"""
Data models for the membership example.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from quarry.core import AuditedModel, ForeignKey, IntegerField, StringField, associate
from quarry.query import entity_graphs, named_queries
from quarry.validation import MinValueValidator


class Team(AuditedModel):
    name = StringField(nullable=False, max_length=100)


class Member(AuditedModel):
    username = StringField(nullable=False, max_length=100)
    age = IntegerField(default=0, validators=[MinValueValidator(0)])
    team = ForeignKey(Team, related_name="members", nullable=True, on_delete="SET NULL")

    def change_team(self, team: Optional[Team]) -> None:
        """Move to ``team``, keeping both teams' member lists in step."""
        associate(self, "team", team)

    def __str__(self) -> str:
        return f"Member(id={self.id}, username={self.username}, age={self.age})"


@dataclass(frozen=True)
class MemberDto:
    id: int
    username: str
    team_name: Optional[str]


named_queries.register(Member, "findByUsername", "select m from Member m where m.username = :username")
entity_graphs.register(Member, "all", ["team"])
