"""
teams/models.py -- Domain dataclasses for teams, memberships, and role templates.

These are data containers. Authorization (who may flip which flag) lives in
teams/service.py; persistence lives in teams/store.py.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from typing import Optional

# Order matters: it is the display order of the rights toggles.
RIGHT_NAMES: tuple[str, ...] = (
    "add_team_member",
    "remove_team_member",
    "change_team_member_role",
    "change_team_member_rights",
)

RIGHT_LABELS: dict[str, str] = {
    "add_team_member": "Add members",
    "remove_team_member": "Remove members",
    "change_team_member_role": "Change roles",
    "change_team_member_rights": "Change rights",
}

RIGHT_DESCRIPTIONS: dict[str, str] = {
    "add_team_member": "Can invite existing users into the team.",
    "remove_team_member": "Can remove other members from the team.",
    "change_team_member_role": "Can assign role templates to other members.",
    "change_team_member_rights": "Can toggle individual rights and edit role templates.",
}

OWNER_ROLE = "owner"
MEMBER_ROLE = "member"
BUILTIN_ROLES: tuple[str, ...] = (OWNER_ROLE, MEMBER_ROLE)


@dataclass(frozen=True)
class Rights:
    """Boolean capability flags attached to a membership or a role template."""

    add_team_member: bool = False
    remove_team_member: bool = False
    change_team_member_role: bool = False
    change_team_member_rights: bool = False

    @classmethod
    def all(cls) -> "Rights":
        return cls(**{name: True for name in RIGHT_NAMES})

    @classmethod
    def none(cls) -> "Rights":
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> "Rights":
        """Build Rights from a mapping, ignoring unknown keys."""
        return cls(**{name: bool(data.get(name, False)) for name in RIGHT_NAMES})

    def as_dict(self) -> dict[str, bool]:
        return asdict(self)

    def with_flag(self, name: str, value: bool) -> "Rights":
        if name not in RIGHT_NAMES:
            raise ValueError(f"Unknown right: {name!r}")
        return replace(self, **{name: value})


@dataclass
class Team:
    """A group of users with a hard cap on its member count.

    id is None before the record is written to the database.
    """

    name: str
    max_members: int
    id: Optional[int] = None
    created_at: str = ""


@dataclass
class Role:
    """A named template of default rights, scoped to one team."""

    team_id: int
    name: str
    rights: Rights = field(default_factory=Rights)
    id: Optional[int] = None


@dataclass
class TeamMember:
    """A user's membership in a team.

    role is the name of the template last applied; rights may diverge from the
    template afterwards when someone toggles an individual flag.
    """

    team_id: int
    user_id: int
    role: str = MEMBER_ROLE
    rights: Rights = field(default_factory=Rights)
    id: Optional[int] = None
    joined_at: str = ""
