#!/usr/bin/env python3
"""
Crewroster -- administration CLI.

Works directly against the database named by DATABASE_URL (or --db), so the
first superadmin and the first teams can be created before the web server
ever starts.

Usage:
  python main.py create-user alice alice@crewroster.io --superadmin
  python main.py create-user bob bob@crewroster.io --password 'Secret123'
  python main.py create-team "Platform" --owner alice --max-members 12
  python main.py add-member 1 bob --role member
  python main.py list-members 1
  python main.py set-rights 1 bob --grant add_team_member --revoke remove_team_member

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the Crewroster database.
                Defaults to sqlite:///crewroster.db in the project root.
"""

import argparse
import getpass
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import User, clean_email, clean_username
from auth.policy import PasswordPolicyError, check_password_strength
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings
from teams.errors import TeamError
from teams.models import RIGHT_NAMES
from teams.service import TeamService
from teams.store import TeamStore

# The CLI acts with superadmin authority. id 0 never matches a real account,
# so the self-targeting guards still apply to every real member.
_CLI_ACTOR = User(username="cli", email="", id=0, superadmin=True)


def _read_password(given: Optional[str]) -> str:
    if given:
        return given
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Confirm password: ")
    if first != second:
        raise SystemExit("  [!] Passwords do not match.")
    return first


def _resolve_user(store: UserStore, login: str) -> User:
    user = store.get_by_login(login)
    if user is None:
        raise SystemExit(f"  [!] No user named {login!r}.")
    return user


def cmd_create_user(service: TeamService, args: argparse.Namespace) -> int:
    try:
        username = clean_username(args.username)
        email = clean_email(args.email)
    except ValueError as exc:
        print(f"  [!] {exc}")
        return 1
    password = _read_password(args.password)
    try:
        check_password_strength(password, username)
    except PasswordPolicyError as exc:
        print(f"  [!] {exc.message}")
        return 1
    try:
        user_id = service.users.create_user(
            User(
                username=username,
                email=email,
                hashed_password=hash_password(password),
                superadmin=args.superadmin,
            )
        )
    except IntegrityError:
        print(f"  [!] Username {username!r} or email {email!r} is already taken.")
        return 1
    kind = "superadmin" if args.superadmin else "user"
    print(f"Created {kind} {username} (id {user_id}).")
    return 0


def cmd_create_team(service: TeamService, args: argparse.Namespace) -> int:
    owner = _resolve_user(service.users, args.owner)
    max_members = args.max_members or get_settings().default_team_max_members
    team = service.create_team(_CLI_ACTOR, args.name, max_members, owner.id)
    print(f"Created team {team.name!r} (id {team.id}, max {team.max_members}) owned by {owner.username}.")
    return 0


def cmd_add_member(service: TeamService, args: argparse.Namespace) -> int:
    team_id = service.resolve_team_id(_CLI_ACTOR, args.team_id)
    member = service.add_member(_CLI_ACTOR, team_id, args.login, args.role)
    print(f"Added user {member.user_id} to team {team_id} as {member.role}.")
    return 0


def cmd_list_members(service: TeamService, args: argparse.Namespace) -> int:
    roster = service.get_roster(_CLI_ACTOR, team_id=args.team_id)
    print(f"\n{roster.team.name} ({len(roster.entries)}/{roster.team.max_members})")
    print("-" * 40)
    for entry in roster.entries:
        flags = ", ".join(name for name in RIGHT_NAMES if getattr(entry.member.rights, name)) or "-"
        print(f"  {entry.user.id:>4}  {entry.user.username:<20} {entry.member.role:<10} {flags}")
    print()
    return 0


def cmd_set_rights(service: TeamService, args: argparse.Namespace) -> int:
    team_id = service.resolve_team_id(_CLI_ACTOR, args.team_id)
    user = _resolve_user(service.users, args.login)
    current = service.teams.get_member(team_id, user.id)
    if current is None:
        print(f"  [!] {user.username} is not a member of team {team_id}.")
        return 1
    rights = current.rights
    for name in args.grant or []:
        rights = rights.with_flag(name, True)
    for name in args.revoke or []:
        rights = rights.with_flag(name, False)
    member = service.change_member_rights(_CLI_ACTOR, team_id, user.id, rights)
    granted = [name for name in RIGHT_NAMES if getattr(member.rights, name)]
    print(f"{user.username}: {', '.join(granted) or 'no rights'}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crewroster",
        description="Manage Crewroster accounts, teams and member rights.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user alice alice@crewroster.io --superadmin
  python main.py create-team "Platform" --owner alice
  python main.py add-member 1 bob@crewroster.io
  python main.py set-rights 1 bob --grant change_team_member_role
        """,
    )
    parser.add_argument("--db", metavar="URL", help="SQLAlchemy database URL (default: DATABASE_URL)")
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p = sub.add_parser("create-user", help="Create an account")
    p.add_argument("username")
    p.add_argument("email")
    p.add_argument("--password", help="Password (prompted when omitted)")
    p.add_argument("--superadmin", action="store_true", help="Grant superadmin rights")
    p.set_defaults(func=cmd_create_user)

    p = sub.add_parser("create-team", help="Create a team with an owner")
    p.add_argument("name")
    p.add_argument("--owner", required=True, metavar="LOGIN", help="Username or email of the owner")
    p.add_argument("--max-members", type=int, default=None, metavar="N")
    p.set_defaults(func=cmd_create_team)

    p = sub.add_parser("add-member", help="Add an existing account to a team")
    p.add_argument("team_id", type=int)
    p.add_argument("login", help="Username or email")
    p.add_argument("--role", default="member", help="Role template to apply (default: member)")
    p.set_defaults(func=cmd_add_member)

    p = sub.add_parser("list-members", help="Print a team roster")
    p.add_argument("team_id", type=int)
    p.set_defaults(func=cmd_list_members)

    p = sub.add_parser("set-rights", help="Grant or revoke individual rights")
    p.add_argument("team_id", type=int)
    p.add_argument("login", help="Username or email")
    p.add_argument("--grant", action="append", choices=RIGHT_NAMES, metavar="RIGHT")
    p.add_argument("--revoke", action="append", choices=RIGHT_NAMES, metavar="RIGHT")
    p.set_defaults(func=cmd_set_rights)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    db_url = args.db or get_settings().database_url
    user_store = UserStore(db_url)
    team_store = TeamStore(db_url)
    try:
        return args.func(TeamService(user_store, team_store), args)
    except TeamError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        team_store.close()
        user_store.close()


if __name__ == "__main__":
    sys.exit(main())
