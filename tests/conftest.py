"""
tests/conftest.py -- Shared test fixtures for Crewroster.

This module provides:
  - make_stores(): isolated in-memory user + team databases
  - seed_team(): a superadmin, a team owner, a member and an outsider
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - world: function-scoped Crew (client + stores + seeded accounts) for
    API and web integration tests; follow_redirects=False
  - user_store / team_store / crew: plain store fixtures for unit tests
  - png_header(): a PNG that declares any size without carrying the pixels

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Each
fixture call uses a fresh name so tests never see each other's rows.

Environment variables must be set before any auth/core import:
  DEBUG             -- get_settings() auto-generates SECRET_KEY in dev mode
  LOGIN_RATE_LIMIT  -- raised so the suite never trips the per-IP login limit
  AVATAR_DIR        -- a temp dir, so the /avatars static mount serves test uploads
"""

from __future__ import annotations

import os
import struct
import tempfile
import uuid
import zlib
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set these before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("AVATAR_DIR", tempfile.mkdtemp(prefix="crewroster-avatars-"))

import pytest
from fastapi.testclient import TestClient

from asgi import app
from auth.models import User
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password
from avatars.store import AvatarStore
from core.config import get_settings
from teams.models import Team
from teams.service import TeamService
from teams.store import TeamStore

# Every seeded account shares this password; hashing once keeps the suite fast.
PASSWORD = "Crewr0ster"
PASSWORD_HASH = hash_password(PASSWORD)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_stores() -> tuple[UserStore, TeamStore]:
    """Create a fresh pair of named shared-memory stores."""
    suffix = uuid.uuid4().hex[:12]
    url = f"sqlite:///file:test_crew_{suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url=url), TeamStore(db_url=url)


def make_user(store: UserStore, username: str, superadmin: bool = False, active: bool = True) -> User:
    uid = store.create_user(
        User(
            username=username,
            email=f"{username}@crewroster.io",
            hashed_password=PASSWORD_HASH,
            superadmin=superadmin,
            is_active=active,
        )
    )
    return store.get_by_id(uid)


@dataclass
class Crew:
    """Seeded accounts plus the stores they live in."""

    users: UserStore
    teams: TeamStore
    service: TeamService
    admin: User
    owner: User
    member: User
    outsider: User
    team: Team
    avatars: AvatarStore | None = None
    client: TestClient | None = None

    def headers(self, user: User) -> dict[str, str]:
        token = create_access_token(user.id, user.username, user.superadmin, expire_seconds=3600)
        return {"Authorization": f"Bearer {token}"}

    def cookies(self, user: User) -> dict[str, str]:
        token = create_access_token(user.id, user.username, user.superadmin, expire_seconds=3600)
        return {get_settings().session_cookie_name: token}

    def login_as(self, user: User) -> None:
        """Put a session cookie for user into the client's cookie jar."""
        self.client.cookies = self.cookies(user)


def seed_team(user_store: UserStore, team_store: TeamStore) -> Crew:
    """Superadmin "root"; team "Platform" (max 5) owned by "olivia" with member "max"; outsider "nina"."""
    service = TeamService(user_store, team_store)
    admin = make_user(user_store, "root", superadmin=True)
    owner = make_user(user_store, "olivia")
    member = make_user(user_store, "max")
    outsider = make_user(user_store, "nina")
    team = service.create_team(admin, "Platform", 5, owner.id)
    service.add_member(admin, team.id, "max")
    return Crew(
        users=user_store,
        teams=team_store,
        service=service,
        admin=admin,
        owner=owner,
        member=member,
        outsider=outsider,
        team=team,
    )


def _patch_lifespan(user_store: UserStore, team_store: TeamStore, avatar_store: AvatarStore, setup_required=False):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the production database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.team_store = team_store
        app.state.team_service = TeamService(user_store, team_store)
        app.state.avatar_store = avatar_store
        app.state.setup_required = setup_required
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def stores() -> Generator[tuple[UserStore, TeamStore], None, None]:
    user_store, team_store = make_stores()
    yield user_store, team_store
    team_store.close()
    user_store.close()


@pytest.fixture
def user_store(stores) -> UserStore:
    return stores[0]


@pytest.fixture
def team_store(stores) -> TeamStore:
    return stores[1]


@pytest.fixture
def crew(stores) -> Crew:
    """Seeded stores and service without an HTTP client."""
    return seed_team(*stores)


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def world() -> Generator[Crew, None, None]:
    """Seeded Crew with a TestClient bound to the real app.

    follow_redirects=False is essential for web route tests: we assert on
    redirect *locations*, which are invisible once the client follows them.
    The avatar store writes under AVATAR_DIR so the static mount can serve it.
    """
    user_store, team_store = make_stores()
    crew = seed_team(user_store, team_store)
    crew.avatars = AvatarStore(get_settings().avatar_dir, get_settings().avatar_url_prefix)

    app.router.lifespan_context = _patch_lifespan(user_store, team_store, crew.avatars)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        crew.client = client
        yield crew

    team_store.close()
    user_store.close()


@pytest.fixture
def fresh_client() -> Generator[tuple[TestClient, UserStore], None, None]:
    """Yield (client, user_store) for an install with no accounts (first-run state)."""
    user_store, team_store = make_stores()
    avatars = AvatarStore(get_settings().avatar_dir, get_settings().avatar_url_prefix)
    app.router.lifespan_context = _patch_lifespan(user_store, team_store, avatars, setup_required=True)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, user_store

    team_store.close()
    user_store.close()


# ---------------------------------------------------------------------------
# Image helpers
# ---------------------------------------------------------------------------


def _png_chunk(kind: bytes, data: bytes) -> bytes:
    return struct.pack(">I", len(data)) + kind + data + struct.pack(">I", zlib.crc32(kind + data))


def png_header(width: int, height: int) -> bytes:
    """A tiny 1-bit grayscale PNG that declares width x height.

    Only the header is honest: the pixel data covers a single row, so Pillow
    can read the size without anyone having to allocate the full image.
    """
    ihdr = struct.pack(">IIBBBBB", width, height, 1, 0, 0, 0, 0)
    idat = zlib.compress(b"\x00" * (1 + (width + 7) // 8))
    return (
        b"\x89PNG\r\n\x1a\n"
        + _png_chunk(b"IHDR", ihdr)
        + _png_chunk(b"IDAT", idat)
        + _png_chunk(b"IEND", b"")
    )
