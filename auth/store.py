"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper (same as teams/store.py).
UserStore is the repository; _row_to_user is the mapper. Route, service and
dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Normalization:
  username and email are lowercased on every write and every lookup, so the
  UNIQUE constraints behave case-insensitively without relying on collation
  support in the backing database.

Layer rule: no imports from api/, web/, teams/, or avatars/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import User
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(20), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("avatar", Text),  # public URL prefix, ends with "/"
    Column("about", String(560)),
    Column("superadmin", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
    Column("is_active", Integer, nullable=False, server_default="1"),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode; SQLite PRAGMAs are per-connection."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_username(username: str) -> str:
    return username.strip().lower()


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore()
        uid = store.create_user(User(username="ada", email="ada@example.org", hashed_password=hash_password("...")))
        user = store.get_by_username("Ada")
        store.close()
    """

    _UPDATABLE_FIELDS: set = {"is_active", "superadmin"}

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        """Return True if at least one user record exists (first-run detection)."""
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username or email already
        exists. Callers translate that into a 409.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=normalize_username(user.username),
                    email=normalize_email(user.email),
                    hashed_password=user.hashed_password,
                    avatar=user.avatar,
                    about=user.about or None,
                    superadmin=1 if user.superadmin else 0,
                    created_at=_now_iso(),
                    is_active=1 if user.is_active else 0,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by username, case-insensitively. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == normalize_username(username))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_login(self, login: str) -> User | None:
        """Resolve a login name that may be either a username or an email address."""
        if "@" in login:
            return self.get_by_email(login)
        return self.get_by_username(login)

    def get_many(self, user_ids: list[int]) -> list[User | None]:
        """Return users for the given IDs, preserving request order.

        Unknown IDs map to None at the same index so callers can zip the result
        against their own list without a second lookup.
        """
        if not user_ids:
            return []
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().where(_users.c.id.in_(set(user_ids)))).fetchall()
        by_id = {row.id: _row_to_user(row) for row in rows}
        return [by_id.get(uid) for uid in user_ids]

    def list_users(self) -> list[User]:
        """Return all users ordered by username."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.username)).fetchall()
        return [_row_to_user(r) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def update_profile(
        self,
        user_id: int,
        username: str | None = None,
        email: str | None = None,
        about: str | None = None,
    ) -> bool:
        """Update the self-editable profile fields.

        about="" clears the field (stored as NULL). None leaves a field untouched.
        Raises IntegrityError if the new username or email is taken.
        Returns True if a row was updated.
        """
        values: dict = {}
        if username is not None:
            values["username"] = normalize_username(username)
        if email is not None:
            values["email"] = normalize_email(email)
        if about is not None:
            values["about"] = about.strip() or None
        if not values:
            return False
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def set_password(self, user_id: int, hashed_password: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(hashed_password=hashed_password)
            )
            conn.commit()
        return result.rowcount > 0

    def set_avatar(self, user_id: int, avatar: str | None) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(avatar=avatar))
            conn.commit()
        return result.rowcount > 0

    def update_user(self, user_id: int, **fields) -> bool:
        """Update administrative flags (is_active, superadmin).

        Unknown keys raise ValueError rather than being silently ignored.
        """
        unknown = set(fields) - self._UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if not fields:
            return False
        values = {k: (1 if v else 0) for k, v in fields.items()}
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current UTC timestamp as last_login after a successful login."""
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user record. Team memberships are the caller's concern."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        avatar=row.avatar,
        about=row.about,
        superadmin=bool(row.superadmin),
        created_at=row.created_at,
        last_login=row.last_login,
        is_active=bool(row.is_active),
    )
