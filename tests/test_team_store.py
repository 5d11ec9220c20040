"""Unit tests for teams/store.py -- TeamStore persistence.

Covers:
- create_team() seeds the owner and member role templates
- add_member() enforces max_members and one team per user
- roster order follows join order
- count_rights_holders() / count_role_holders()
- keep_holder_of: a write that strips the last holder of a right is rolled back
- role template CRUD and duplicate names
- delete_team() cascades to memberships and roles
"""

import pytest

from teams.errors import Conflict, NotFound, TeamFull
from teams.models import MEMBER_ROLE, OWNER_ROLE, Rights, Role, Team, TeamMember
from teams.store import TeamStore


@pytest.fixture
def team_id(team_store: TeamStore) -> int:
    return team_store.create_team(Team(name="Platform", max_members=3))


def _join(store: TeamStore, team_id: int, user_id: int, rights: Rights = Rights(), role: str = MEMBER_ROLE) -> int:
    return store.add_member(TeamMember(team_id=team_id, user_id=user_id, role=role, rights=rights))


def test_builtin_roles_seeded(team_store: TeamStore, team_id: int) -> None:
    roles = {r.name: r.rights for r in team_store.list_roles(team_id)}
    assert roles == {OWNER_ROLE: Rights.all(), MEMBER_ROLE: Rights.none()}


def test_get_team(team_store: TeamStore, team_id: int) -> None:
    team = team_store.get_team(team_id)
    assert team.name == "Platform"
    assert team.max_members == 3
    assert team.created_at
    assert team_store.get_team(999) is None


def test_add_member_and_roster_order(team_store: TeamStore, team_id: int) -> None:
    _join(team_store, team_id, 7, Rights.all(), OWNER_ROLE)
    _join(team_store, team_id, 3)
    members = team_store.list_members(team_id)
    assert [m.user_id for m in members] == [7, 3]
    assert members[0].rights == Rights.all()
    assert members[1].rights == Rights.none()
    assert team_store.count_members(team_id) == 2


def test_add_member_team_full(team_store: TeamStore, team_id: int) -> None:
    for uid in (1, 2, 3):
        _join(team_store, team_id, uid)
    with pytest.raises(TeamFull) as excinfo:
        _join(team_store, team_id, 4)
    assert excinfo.value.code == "team_full"
    assert team_store.count_members(team_id) == 3


def test_add_member_unknown_team(team_store: TeamStore) -> None:
    with pytest.raises(NotFound):
        _join(team_store, 999, 1)


def test_one_team_per_user(team_store: TeamStore, team_id: int) -> None:
    other = team_store.create_team(Team(name="Data", max_members=3))
    _join(team_store, team_id, 1)
    with pytest.raises(Conflict) as excinfo:
        _join(team_store, other, 1)
    assert excinfo.value.code == "already_member"
    assert team_store.get_membership(1).team_id == team_id


def test_set_rights_and_role(team_store: TeamStore, team_id: int) -> None:
    _join(team_store, team_id, 1)
    team_store.set_member_rights(team_id, 1, Rights(add_team_member=True))
    assert team_store.get_member(team_id, 1).rights == Rights(add_team_member=True)

    team_store.set_member_role(team_id, 1, OWNER_ROLE, Rights.all())
    member = team_store.get_member(team_id, 1)
    assert member.role == OWNER_ROLE
    assert member.rights == Rights.all()


def test_count_rights_holders(team_store: TeamStore, team_id: int) -> None:
    _join(team_store, team_id, 1, Rights.all(), OWNER_ROLE)
    _join(team_store, team_id, 2, Rights(change_team_member_rights=True))
    _join(team_store, team_id, 3)
    assert team_store.count_rights_holders(team_id, "change_team_member_rights") == 2
    assert team_store.count_rights_holders(team_id, "add_team_member") == 1
    with pytest.raises(ValueError):
        team_store.count_rights_holders(team_id, "drop_tables")


def test_remove_member(team_store: TeamStore, team_id: int) -> None:
    _join(team_store, team_id, 1)
    assert team_store.remove_member(team_id, 1) is True
    assert team_store.remove_member(team_id, 1) is False
    assert team_store.get_membership(1) is None


GUARDED = "change_team_member_rights"


def test_keep_holder_allows_revoking_one_of_two(team_store: TeamStore, team_id: int) -> None:
    _join(team_store, team_id, 1, Rights.all(), OWNER_ROLE)
    _join(team_store, team_id, 2, Rights(change_team_member_rights=True))
    assert team_store.set_member_rights(team_id, 2, Rights(), keep_holder_of=GUARDED) is True
    assert team_store.count_rights_holders(team_id, GUARDED) == 1


def test_keep_holder_rolls_back_last_revocation(team_store: TeamStore, team_id: int) -> None:
    _join(team_store, team_id, 1, Rights.all(), OWNER_ROLE)
    _join(team_store, team_id, 2)
    with pytest.raises(Conflict) as excinfo:
        team_store.set_member_rights(team_id, 1, Rights(add_team_member=True), keep_holder_of=GUARDED)
    assert excinfo.value.code == "last_rights_holder"
    with pytest.raises(Conflict):
        team_store.set_member_role(team_id, 1, MEMBER_ROLE, Rights.none(), keep_holder_of=GUARDED)
    with pytest.raises(Conflict):
        team_store.remove_member(team_id, 1, keep_holder_of=GUARDED)
    # Every write above was rolled back.
    member = team_store.get_member(team_id, 1)
    assert member.role == OWNER_ROLE
    assert member.rights == Rights.all()


def test_keep_holder_ignores_non_holders(team_store: TeamStore, team_id: int) -> None:
    # A team that already has no holder can still edit its other members.
    _join(team_store, team_id, 1)
    assert team_store.set_member_rights(team_id, 1, Rights(add_team_member=True), keep_holder_of=GUARDED) is True
    assert team_store.remove_member(team_id, 1, keep_holder_of=GUARDED) is True


def test_keep_holder_unknown_right(team_store: TeamStore, team_id: int) -> None:
    _join(team_store, team_id, 1)
    with pytest.raises(ValueError):
        team_store.remove_member(team_id, 1, keep_holder_of="drop_tables")
    assert team_store.get_membership(1) is not None


def test_role_template_crud(team_store: TeamStore, team_id: int) -> None:
    team_store.create_role(Role(team_id=team_id, name="lead", rights=Rights(add_team_member=True)))
    with pytest.raises(Conflict) as excinfo:
        team_store.create_role(Role(team_id=team_id, name="lead", rights=Rights()))
    assert excinfo.value.code == "role_exists"

    team_store.update_role(team_id, "lead", Rights(remove_team_member=True))
    assert team_store.get_role(team_id, "lead").rights == Rights(remove_team_member=True)

    _join(team_store, team_id, 1, role="lead")
    assert team_store.count_role_holders(team_id, "lead") == 1
    assert team_store.delete_role(team_id, "lead") is True
    assert team_store.get_role(team_id, "lead") is None


def test_role_names_scoped_per_team(team_store: TeamStore, team_id: int) -> None:
    other = team_store.create_team(Team(name="Data", max_members=3))
    team_store.create_role(Role(team_id=team_id, name="lead", rights=Rights()))
    team_store.create_role(Role(team_id=other, name="lead", rights=Rights()))
    assert team_store.get_role(other, "lead") is not None


def test_delete_team_cascades(team_store: TeamStore, team_id: int) -> None:
    _join(team_store, team_id, 1)
    assert team_store.delete_team(team_id) is True
    assert team_store.get_membership(1) is None
    assert team_store.list_roles(team_id) == []
    assert team_store.list_teams() == []
