"""Unit tests for main.py -- the administration CLI.

Each test points --db at a fresh named in-memory database and keeps one
UserStore open on it so the database survives between CLI invocations.
"""

import uuid

import pytest

import main
from auth.store import UserStore
from conftest import PASSWORD
from teams.store import TeamStore


@pytest.fixture
def db():
    url = f"sqlite:///file:test_cli_{uuid.uuid4().hex[:12]}?mode=memory&cache=shared&uri=true"
    keeper = UserStore(url)
    yield url, keeper
    keeper.close()


def _run(url: str, *argv: str) -> int:
    return main.main(["--db", url, *argv])


def test_no_command_prints_help(capsys) -> None:
    assert main.main([]) == 0
    assert "create-user" in capsys.readouterr().out


def test_full_flow(db, capsys) -> None:
    url, users = db
    assert _run(url, "create-user", "Root", "root@crewroster.io", "--password", PASSWORD, "--superadmin") == 0
    assert _run(url, "create-user", "olivia", "olivia@crewroster.io", "--password", PASSWORD) == 0
    assert _run(url, "create-user", "max", "max@crewroster.io", "--password", PASSWORD) == 0
    assert users.get_by_username("root").superadmin is True

    assert _run(url, "create-team", "Platform", "--owner", "olivia", "--max-members", "4") == 0
    team_id = TeamStore(url).get_membership(users.get_by_username("olivia").id).team_id

    assert _run(url, "add-member", str(team_id), "max@crewroster.io") == 0
    assert _run(url, "set-rights", str(team_id), "max", "--grant", "add_team_member") == 0
    capsys.readouterr()

    assert _run(url, "list-members", str(team_id)) == 0
    out = capsys.readouterr().out
    assert "Platform (2/4)" in out
    assert "max" in out and "add_team_member" in out


def test_weak_password_rejected(db, capsys) -> None:
    url, users = db
    assert _run(url, "create-user", "olivia", "olivia@crewroster.io", "--password", "weak") == 1
    assert "too short" in capsys.readouterr().out
    assert users.has_users() is False


def test_duplicate_user(db, capsys) -> None:
    url, _users = db
    _run(url, "create-user", "olivia", "olivia@crewroster.io", "--password", PASSWORD)
    assert _run(url, "create-user", "Olivia", "other@crewroster.io", "--password", PASSWORD) == 1
    assert "already taken" in capsys.readouterr().out


def test_team_errors_reported(db, capsys) -> None:
    url, _users = db
    _run(url, "create-user", "olivia", "olivia@crewroster.io", "--password", PASSWORD)
    assert _run(url, "add-member", "42", "olivia") == 1
    assert "Team not found." in capsys.readouterr().out


def test_last_rights_holder_guarded(db, capsys) -> None:
    url, users = db
    _run(url, "create-user", "olivia", "olivia@crewroster.io", "--password", PASSWORD)
    _run(url, "create-team", "Platform", "--owner", "olivia")
    team_id = TeamStore(url).get_membership(users.get_by_username("olivia").id).team_id
    capsys.readouterr()
    assert _run(url, "set-rights", str(team_id), "olivia", "--revoke", "change_team_member_rights") == 1
    assert "keep the right to change rights" in capsys.readouterr().out


@pytest.mark.parametrize(
    "username, email, expected",
    [
        ("ab", "ab@crewroster.io", "3-20 characters"),
        ("a" * 40, "long@crewroster.io", "3-20 characters"),
        ("mäx", "max@crewroster.io", "may only contain"),
        ("max", "not-an-email", "@-sign"),
        ("max", "a@b", "period"),
    ],
)
def test_invalid_identity_rejected(db, capsys, username: str, email: str, expected: str) -> None:
    url, users = db
    assert _run(url, "create-user", username, email, "--password", PASSWORD) == 1
    assert expected in capsys.readouterr().out
    assert users.has_users() is False
