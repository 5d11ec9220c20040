"""
teams/store.py -- SQLAlchemy-backed persistence layer for teams.

Uses SQLAlchemy Core (not ORM) so the dataclasses in teams/models.py remain
the authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change.

Pattern: Repository + Data Mapper. TeamStore is the repository; the _row_to_*
functions are the mappers. The store enforces structural constraints only
(one team per user, member cap, unique role names). Who may change what is
decided in teams/service.py.

Rights are stored as four 0/1 columns on both memberships and role templates,
named after teams.models.RIGHT_NAMES.

Usage:
    store = TeamStore()
    team_id = store.create_team(Team(name="core", max_members=5))
    store.add_member(TeamMember(team_id=team_id, user_id=1, role="owner", rights=Rights.all()))
    store.list_members(team_id)
    store.close()
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from core.config import get_settings
from teams.errors import Conflict, NotFound, TeamFull
from teams.models import MEMBER_ROLE, OWNER_ROLE, RIGHT_NAMES, Rights, Role, Team, TeamMember

logger = logging.getLogger("crewroster.teams")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()


def _rights_columns() -> list[Column]:
    return [Column(name, Integer, nullable=False, server_default="0") for name in RIGHT_NAMES]


_teams = Table(
    "teams",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("max_members", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
)

_members = Table(
    "team_members",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("team_id", Integer, nullable=False),
    Column("user_id", Integer, nullable=False, unique=True),  # one team per user
    Column("role", String(50), nullable=False, server_default=MEMBER_ROLE),
    Column("joined_at", String(32), nullable=False),
    *_rights_columns(),
)

_roles = Table(
    "team_roles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("team_id", Integer, nullable=False),
    Column("name", String(50), nullable=False),
    *_rights_columns(),
    UniqueConstraint("team_id", "name", name="uq_team_role_name"),
)

# Role templates every new team starts with.
_BUILTIN_TEMPLATES: dict[str, Rights] = {
    OWNER_ROLE: Rights.all(),
    MEMBER_ROLE: Rights.none(),
}


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _rights_values(rights: Rights) -> dict[str, int]:
    return {name: 1 if value else 0 for name, value in rights.as_dict().items()}


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class TeamStore:
    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Teams
    # ------------------------------------------------------------------

    def create_team(self, team: Team) -> int:
        """Insert a team, seed its built-in role templates, and return its ID."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _teams.insert().values(name=team.name, max_members=team.max_members, created_at=_now_iso())
            )
            team_id = result.inserted_primary_key[0]
            for name, rights in _BUILTIN_TEMPLATES.items():
                conn.execute(_roles.insert().values(team_id=team_id, name=name, **_rights_values(rights)))
        logger.info("Team %d created (%s, max %d members)", team_id, team.name, team.max_members)
        return team_id

    def get_team(self, team_id: int) -> Team | None:
        with self.engine.connect() as conn:
            row = conn.execute(_teams.select().where(_teams.c.id == team_id)).fetchone()
        return _row_to_team(row) if row is not None else None

    def list_teams(self) -> list[Team]:
        with self.engine.connect() as conn:
            rows = conn.execute(_teams.select().order_by(_teams.c.name)).fetchall()
        return [_row_to_team(r) for r in rows]

    def delete_team(self, team_id: int) -> bool:
        """Delete a team together with its memberships and role templates."""
        with self.engine.begin() as conn:
            conn.execute(_members.delete().where(_members.c.team_id == team_id))
            conn.execute(_roles.delete().where(_roles.c.team_id == team_id))
            result = conn.execute(_teams.delete().where(_teams.c.id == team_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Memberships
    # ------------------------------------------------------------------

    def get_membership(self, user_id: int) -> TeamMember | None:
        """Return the user's membership, or None if they belong to no team."""
        with self.engine.connect() as conn:
            row = conn.execute(_members.select().where(_members.c.user_id == user_id)).fetchone()
        return _row_to_member(row) if row is not None else None

    def get_member(self, team_id: int, user_id: int) -> TeamMember | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _members.select().where((_members.c.team_id == team_id) & (_members.c.user_id == user_id))
            ).fetchone()
        return _row_to_member(row) if row is not None else None

    def list_members(self, team_id: int) -> list[TeamMember]:
        """Return the roster ordered by join time (oldest first)."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _members.select()
                .where(_members.c.team_id == team_id)
                .order_by(_members.c.joined_at, _members.c.id)
            ).fetchall()
        return [_row_to_member(r) for r in rows]

    def count_members(self, team_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_members).where(_members.c.team_id == team_id)
            ).scalar()
        return result or 0

    def count_rights_holders(self, team_id: int, right: str) -> int:
        """Return how many members of team_id hold the named right."""
        if right not in RIGHT_NAMES:
            raise ValueError(f"Unknown right: {right!r}")
        column = _members.c[right]
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_members).where((_members.c.team_id == team_id) & (column == 1))
            ).scalar()
        return result or 0

    def add_member(self, member: TeamMember) -> int:
        """Insert a membership and return its ID.

        Raises NotFound if the team does not exist, TeamFull if the team is at
        max_members, Conflict if the user already belongs to a team.
        """
        with self.engine.begin() as conn:
            team_row = conn.execute(_teams.select().where(_teams.c.id == member.team_id)).fetchone()
            if team_row is None:
                raise NotFound("Team not found.")
            current = conn.execute(
                select(func.count()).select_from(_members).where(_members.c.team_id == member.team_id)
            ).scalar()
            if (current or 0) >= team_row.max_members:
                raise TeamFull(f"Team is full (max {team_row.max_members} members).")
            try:
                result = conn.execute(
                    _members.insert().values(
                        team_id=member.team_id,
                        user_id=member.user_id,
                        role=member.role,
                        joined_at=_now_iso(),
                        **_rights_values(member.rights),
                    )
                )
            except IntegrityError as exc:
                raise Conflict("User already belongs to a team.", code="already_member") from exc
            return result.inserted_primary_key[0]

    def remove_member(self, team_id: int, user_id: int, keep_holder_of: str | None = None) -> bool:
        """Delete a membership.

        keep_holder_of names a right the team must not lose its last holder
        of. The check runs inside the delete's transaction (see _last_holder_guard).
        """
        with self.engine.begin() as conn, _last_holder_guard(conn, team_id, user_id, keep_holder_of):
            result = conn.execute(
                _members.delete().where((_members.c.team_id == team_id) & (_members.c.user_id == user_id))
            )
        return result.rowcount > 0

    def set_member_rights(
        self, team_id: int, user_id: int, rights: Rights, keep_holder_of: str | None = None
    ) -> bool:
        with self.engine.begin() as conn, _last_holder_guard(conn, team_id, user_id, keep_holder_of):
            result = conn.execute(
                _members.update()
                .where((_members.c.team_id == team_id) & (_members.c.user_id == user_id))
                .values(**_rights_values(rights))
            )
        return result.rowcount > 0

    def set_member_role(
        self, team_id: int, user_id: int, role: str, rights: Rights, keep_holder_of: str | None = None
    ) -> bool:
        """Assign a role name and overwrite the member's rights with the template's."""
        with self.engine.begin() as conn, _last_holder_guard(conn, team_id, user_id, keep_holder_of):
            result = conn.execute(
                _members.update()
                .where((_members.c.team_id == team_id) & (_members.c.user_id == user_id))
                .values(role=role, **_rights_values(rights))
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Role templates
    # ------------------------------------------------------------------

    def list_roles(self, team_id: int) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(_roles.select().where(_roles.c.team_id == team_id).order_by(_roles.c.id)).fetchall()
        return [_row_to_role(r) for r in rows]

    def get_role(self, team_id: int, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _roles.select().where((_roles.c.team_id == team_id) & (_roles.c.name == name))
            ).fetchone()
        return _row_to_role(row) if row is not None else None

    def create_role(self, role: Role) -> int:
        """Insert a role template. Raises Conflict if the name is taken within the team."""
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _roles.insert().values(team_id=role.team_id, name=role.name, **_rights_values(role.rights))
                )
        except IntegrityError as exc:
            raise Conflict(f"Role {role.name!r} already exists.", code="role_exists") from exc
        return result.inserted_primary_key[0]

    def update_role(self, team_id: int, name: str, rights: Rights) -> bool:
        """Replace a template's rights. Existing members keep their current rights."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _roles.update()
                .where((_roles.c.team_id == team_id) & (_roles.c.name == name))
                .values(**_rights_values(rights))
            )
        return result.rowcount > 0

    def delete_role(self, team_id: int, name: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(_roles.delete().where((_roles.c.team_id == team_id) & (_roles.c.name == name)))
        return result.rowcount > 0

    def count_role_holders(self, team_id: int, name: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_members)
                .where((_members.c.team_id == team_id) & (_members.c.role == name))
            ).scalar()
        return result or 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_rights(row) -> Rights:
    return Rights(**{name: bool(getattr(row, name)) for name in RIGHT_NAMES})


def _row_to_team(row) -> Team:
    return Team(id=row.id, name=row.name, max_members=row.max_members, created_at=row.created_at)


def _row_to_member(row) -> TeamMember:
    return TeamMember(
        id=row.id,
        team_id=row.team_id,
        user_id=row.user_id,
        role=row.role,
        rights=_row_to_rights(row),
        joined_at=row.joined_at,
    )


def _row_to_role(row) -> Role:
    return Role(id=row.id, team_id=row.team_id, name=row.name, rights=_row_to_rights(row))


# ---------------------------------------------------------------------------
# Transaction helpers
# ---------------------------------------------------------------------------


def _holders(conn, team_id: int, right: str, lock: bool = False) -> list[int]:
    query = select(_members.c.user_id).where((_members.c.team_id == team_id) & (_members.c[right] == 1))
    if lock:
        query = query.with_for_update()
    return list(conn.execute(query).scalars().all())


@contextmanager
def _last_holder_guard(conn, team_id: int, user_id: int, right: str | None) -> Iterator[None]:
    """Roll the enclosing write back if it leaves the team with no holder of right.

    Holder rows are read FOR UPDATE before the write so concurrent writers
    queue on PostgreSQL. SQLite ignores FOR UPDATE and only opens the
    transaction at the first write, so the count is repeated after the write,
    when this transaction holds the write lock.
    """
    if right is None:
        yield
        return
    if right not in RIGHT_NAMES:
        raise ValueError(f"Unknown right: {right!r}")
    held_before = user_id in _holders(conn, team_id, right, lock=True)
    yield
    if held_before and not _holders(conn, team_id, right):
        raise Conflict(
            "At least one member must keep the right to change rights.",
            code="last_rights_holder",
        )
