"""
teams/service.py -- Team membership and rights authorization.

Every team mutation in Crewroster goes through TeamService, whether it comes
from the JSON API (api/routes/v1/team.py), the profile page (web/routes.py),
or the admin CLI (main.py). That keeps the permission model in one place.

Authorization order for a mutation on team T targeting user U:
  1. Superadmin override -- a superadmin acts on any team and skips step 2-3.
  2. Same team -- the actor must be a member of T.
  3. Right flag -- the actor's membership must carry the operation's right.
  4. Self guards -- nobody (superadmins included) removes themselves or
     toggles their own rights.
  5. Last holder -- the team must keep at least one member holding
     change_team_member_rights, or nobody could ever edit rights again.
     TeamStore checks this inside the write transaction (keep_holder_of).

Layer rule: teams/ may import auth.models and auth.store (data access only).
It does NOT import from api/, web/, or avatars/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from auth.models import User
from auth.store import UserStore
from teams.errors import Conflict, InvalidRequest, NotFound, PermissionDenied
from teams.models import BUILTIN_ROLES, MEMBER_ROLE, OWNER_ROLE, Rights, Role, Team, TeamMember
from teams.store import TeamStore

logger = logging.getLogger("crewroster.teams")

_GUARDED_RIGHT = "change_team_member_rights"
ROLE_NAME_MAX_LENGTH = 50
TEAM_NAME_MAX_LENGTH = 100


@dataclass
class RosterEntry:
    """One roster row: the membership joined with the member's account."""

    member: TeamMember
    user: User


@dataclass
class Roster:
    team: Team
    entries: list[RosterEntry] = field(default_factory=list)
    # The viewer's own rights in this team; None for a superadmin outside it.
    my_rights: Optional[Rights] = None


class TeamService:
    def __init__(self, user_store: UserStore, team_store: TeamStore) -> None:
        self.users = user_store
        self.teams = team_store

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def resolve_team_id(self, actor: User, team_id: int | None = None) -> int:
        """Return the team an operation applies to.

        Members always act on their own team. A superadmin may name any team;
        without one, their own membership is used.
        """
        membership = self.teams.get_membership(actor.id)
        if team_id is None:
            if membership is None:
                raise NotFound("You are not a member of any team.", code="no_team")
            return membership.team_id
        if self.teams.get_team(team_id) is None:
            raise NotFound("Team not found.", code="team_not_found")
        if not actor.superadmin and (membership is None or membership.team_id != team_id):
            raise PermissionDenied("You are not a member of this team.", code="not_team_member")
        return team_id

    def _authorize(self, actor: User, team_id: int, right: str) -> None:
        if actor.superadmin:
            return
        membership = self.teams.get_membership(actor.id)
        if membership is None or membership.team_id != team_id:
            logger.warning("User %d denied %s on team %d: not a member", actor.id, right, team_id)
            raise PermissionDenied("You are not a member of this team.", code="not_team_member")
        if not getattr(membership.rights, right):
            logger.warning("User %d denied %s on team %d: missing right", actor.id, right, team_id)
            raise PermissionDenied("You do not have the right to do this.", code="missing_right")

    def _target(self, team_id: int, user_id: int) -> TeamMember:
        member = self.teams.get_member(team_id, user_id)
        if member is None:
            raise NotFound("Member not found in this team.", code="member_not_found")
        return member

    def _role_template(self, team_id: int, role_name: str) -> Role:
        # Role names are stored lowercased (see create_role).
        role = self.teams.get_role(team_id, role_name.strip().lower())
        if role is None:
            raise NotFound(f"Role {role_name!r} not found.", code="role_not_found")
        return role

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_roster(self, actor: User, team_id: int | None = None, query: str | None = None) -> Roster:
        """Return the team roster joined with user profiles.

        query filters members by a case-insensitive substring of username,
        email, or role name. The viewer's own rights are returned alongside so
        clients can decide which controls to enable.
        """
        team_id = self.resolve_team_id(actor, team_id)
        team = self.teams.get_team(team_id)
        members = self.teams.list_members(team_id)
        users = self.users.get_many([m.user_id for m in members])

        needle = (query or "").strip().lower()
        entries: list[RosterEntry] = []
        my_rights: Optional[Rights] = None
        for member, user in zip(members, users):
            if user is None:
                continue
            if member.user_id == actor.id:
                my_rights = member.rights
            if needle and not (
                needle in user.username.lower() or needle in user.email.lower() or needle in member.role.lower()
            ):
                continue
            entries.append(RosterEntry(member=member, user=user))
        if my_rights is None and actor.superadmin:
            my_rights = Rights.all()
        return Roster(team=team, entries=entries, my_rights=my_rights)

    def lookup_users(self, actor: User, user_ids: list[int]) -> list[User | None]:
        """Return accounts for user_ids in request order.

        Non-superadmins only see themselves and members of their own team; any
        other ID maps to None, indistinguishable from an unknown ID.
        """
        users = self.users.get_many(user_ids)
        if actor.superadmin:
            return users
        visible = {actor.id}
        membership = self.teams.get_membership(actor.id)
        if membership is not None:
            visible.update(m.user_id for m in self.teams.list_members(membership.team_id))
        return [u if u is not None and u.id in visible else None for u in users]

    def list_roles(self, actor: User, team_id: int | None = None) -> list[Role]:
        team_id = self.resolve_team_id(actor, team_id)
        return self.teams.list_roles(team_id)

    # ------------------------------------------------------------------
    # Membership mutations
    # ------------------------------------------------------------------

    def add_member(self, actor: User, team_id: int, login: str, role_name: str = MEMBER_ROLE) -> TeamMember:
        """Add an existing account (by username or email) to the team with a role template."""
        self._authorize(actor, team_id, "add_team_member")
        user = self.users.get_by_login(login)
        if user is None or not user.is_active:
            raise NotFound("No active user with that name or email.", code="user_not_found")
        role = self._role_template(team_id, role_name)
        member = TeamMember(team_id=team_id, user_id=user.id, role=role.name, rights=role.rights)
        member.id = self.teams.add_member(member)
        logger.info("User %d added user %d to team %d as %s", actor.id, user.id, team_id, role.name)
        return member

    def remove_member(self, actor: User, team_id: int, user_id: int) -> None:
        self._authorize(actor, team_id, "remove_team_member")
        if actor.id == user_id:
            raise PermissionDenied("You cannot remove yourself from the team.", code="self_remove")
        self._target(team_id, user_id)
        self.teams.remove_member(team_id, user_id, keep_holder_of=_GUARDED_RIGHT)
        logger.info("User %d removed user %d from team %d", actor.id, user_id, team_id)

    def change_member_rights(self, actor: User, team_id: int, user_id: int, rights: Rights) -> TeamMember:
        self._authorize(actor, team_id, "change_team_member_rights")
        if actor.id == user_id:
            raise PermissionDenied("You cannot change your own rights.", code="self_rights")
        self._target(team_id, user_id)
        self.teams.set_member_rights(team_id, user_id, rights, keep_holder_of=_GUARDED_RIGHT)
        logger.info("User %d set rights of user %d in team %d to %s", actor.id, user_id, team_id, rights.as_dict())
        return self._target(team_id, user_id)

    def change_member_role(self, actor: User, team_id: int, user_id: int, role_name: str) -> TeamMember:
        """Assign a role template, overwriting the member's rights with the template's.

        Assigning your own role is allowed; the last-holder guard still applies.
        """
        self._authorize(actor, team_id, "change_team_member_role")
        self._target(team_id, user_id)
        role = self._role_template(team_id, role_name)
        self.teams.set_member_role(team_id, user_id, role.name, role.rights, keep_holder_of=_GUARDED_RIGHT)
        logger.info("User %d assigned role %s to user %d in team %d", actor.id, role.name, user_id, team_id)
        return self._target(team_id, user_id)

    # ------------------------------------------------------------------
    # Role templates
    # ------------------------------------------------------------------

    def create_role(self, actor: User, team_id: int, name: str, rights: Rights) -> Role:
        self._authorize(actor, team_id, "change_team_member_rights")
        clean = name.strip().lower()
        if not clean or len(clean) > ROLE_NAME_MAX_LENGTH:
            raise InvalidRequest(
                f"Role name must be 1-{ROLE_NAME_MAX_LENGTH} characters.", code="invalid_role_name"
            )
        role = Role(team_id=team_id, name=clean, rights=rights)
        role.id = self.teams.create_role(role)
        logger.info("User %d created role %s in team %d", actor.id, clean, team_id)
        return role

    def update_role(self, actor: User, team_id: int, name: str, rights: Rights) -> Role:
        """Replace a template's rights. Members already holding the role are not touched."""
        self._authorize(actor, team_id, "change_team_member_rights")
        role = self._role_template(team_id, name)
        if role.name == OWNER_ROLE:
            raise InvalidRequest("The owner role always carries every right.", code="builtin_role")
        self.teams.update_role(team_id, role.name, rights)
        return self._role_template(team_id, role.name)

    def delete_role(self, actor: User, team_id: int, name: str) -> None:
        self._authorize(actor, team_id, "change_team_member_rights")
        role = self._role_template(team_id, name)
        if role.name in BUILTIN_ROLES:
            raise InvalidRequest("Built-in roles cannot be deleted.", code="builtin_role")
        if self.teams.count_role_holders(team_id, role.name) > 0:
            raise Conflict("Role is still assigned to members.", code="role_in_use")
        self.teams.delete_role(team_id, role.name)
        logger.info("User %d deleted role %s in team %d", actor.id, role.name, team_id)

    # ------------------------------------------------------------------
    # Teams (superadmin only)
    # ------------------------------------------------------------------

    def create_team(self, actor: User, name: str, max_members: int, owner_id: int) -> Team:
        """Create a team and enrol owner_id with the owner role."""
        if not actor.superadmin:
            raise PermissionDenied("Only a superadmin can create teams.", code="forbidden")
        clean = name.strip()
        if not clean or len(clean) > TEAM_NAME_MAX_LENGTH:
            raise InvalidRequest(
                f"Team name must be 1-{TEAM_NAME_MAX_LENGTH} characters.", code="invalid_team_name"
            )
        if max_members < 1:
            raise InvalidRequest("A team needs room for at least one member.", code="invalid_max_members")
        owner = self.users.get_by_id(owner_id)
        if owner is None:
            raise NotFound("Owner account not found.", code="user_not_found")
        if self.teams.get_membership(owner_id) is not None:
            raise Conflict("Owner already belongs to a team.", code="already_member")

        team = Team(name=clean, max_members=max_members)
        team.id = self.teams.create_team(team)
        try:
            self.teams.add_member(TeamMember(team_id=team.id, user_id=owner_id, role=OWNER_ROLE, rights=Rights.all()))
        except Conflict:
            self.teams.delete_team(team.id)
            raise
        return self.teams.get_team(team.id)
