"""
api/routes/v1/team.py -- Team roster, membership, rights and role endpoints.

Routes:
  POST   /api/v1/teams                              -- create a team (superadmin only)
  GET    /api/v1/team                               -- joined roster, ?q= search
  POST   /api/v1/team/members                       -- add a member (add_team_member)
  DELETE /api/v1/team/members/{user_id}             -- remove (remove_team_member)
  POST   /api/v1/team/members/{user_id}/rights      -- set rights (change_team_member_rights)
  POST   /api/v1/team/members/{user_id}/role        -- assign role (change_team_member_role)
  GET    /api/v1/team/roles                         -- list role templates
  POST   /api/v1/team/roles                         -- create (change_team_member_rights)
  PATCH  /api/v1/team/roles/{name}                  -- update (change_team_member_rights)
  DELETE /api/v1/team/roles/{name}                  -- delete (change_team_member_rights)

Every route accepts an optional ?team_id= so a superadmin can act on a team
they are not a member of; members always act on their own team.

Authorization lives in teams.service.TeamService. Handlers only translate
HTTP to service calls; TeamError subclasses are rendered by api/main.py.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.models import (
    MemberAdd,
    MemberResponse,
    MemberRow,
    RightsModel,
    RightsPatch,
    RoleAssign,
    RoleCreate,
    RoleResponse,
    RoleUpdate,
    RosterResponse,
    TeamCreate,
    TeamResponse,
)
from auth.dependencies import get_current_user, require_superadmin
from auth.models import User
from core.config import get_settings
from teams.service import TeamService

router = APIRouter()


def _service(request: Request) -> TeamService:
    return request.app.state.team_service


@router.post("/teams", response_model=TeamResponse, status_code=201)
def create_team(
    request: Request,
    body: TeamCreate,
    current_user: User = Depends(require_superadmin),
) -> TeamResponse:
    max_members = body.max_members or get_settings().default_team_max_members
    team = _service(request).create_team(current_user, body.name, max_members, body.owner_id)
    return TeamResponse.from_team(team)


@router.get("/team", response_model=RosterResponse)
def get_team(
    request: Request,
    q: Optional[str] = None,
    team_id: Optional[int] = None,
    current_user: User = Depends(get_current_user),
) -> RosterResponse:
    """Return the team with each membership joined to the member's public profile."""
    service = _service(request)
    roster = service.get_roster(current_user, team_id=team_id, query=q)
    return RosterResponse(
        id=roster.team.id,
        name=roster.team.name,
        max_members=roster.team.max_members,
        member_count=service.teams.count_members(roster.team.id),
        members=[
            MemberRow(
                user_id=e.user.id,
                username=e.user.username,
                email=e.user.email,
                about=e.user.about or "",
                avatar=e.user.avatar,
                role=e.member.role,
                rights=RightsModel.from_rights(e.member.rights),
                joined_at=e.member.joined_at,
            )
            for e in roster.entries
        ],
        my_rights=RightsModel.from_rights(roster.my_rights) if roster.my_rights else None,
    )


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


@router.post("/team/members", response_model=MemberResponse, status_code=201)
def add_member(
    request: Request,
    body: MemberAdd,
    team_id: Optional[int] = None,
    current_user: User = Depends(get_current_user),
) -> MemberResponse:
    service = _service(request)
    tid = service.resolve_team_id(current_user, team_id)
    member = service.add_member(current_user, tid, body.login, body.role)
    return MemberResponse.from_member(member)


@router.delete("/team/members/{user_id}", status_code=204)
def remove_member(
    request: Request,
    user_id: int,
    team_id: Optional[int] = None,
    current_user: User = Depends(get_current_user),
) -> Response:
    service = _service(request)
    tid = service.resolve_team_id(current_user, team_id)
    service.remove_member(current_user, tid, user_id)
    return Response(status_code=204)


@router.post("/team/members/{user_id}/rights", response_model=MemberResponse)
def change_member_rights(
    request: Request,
    user_id: int,
    body: RightsPatch,
    team_id: Optional[int] = None,
    current_user: User = Depends(get_current_user),
) -> MemberResponse:
    """Set a member's rights: either a whole rights object, or one flag via key/value."""
    service = _service(request)
    tid = service.resolve_team_id(current_user, team_id)
    if body.rights is not None:
        rights = body.rights.to_rights()
    elif body.key is not None and body.value is not None:
        target = service.teams.get_member(tid, user_id)
        if target is None:
            raise HTTPException(
                status_code=404,
                detail={"code": "member_not_found", "message": "Member not found in this team."},
            )
        rights = target.rights.with_flag(body.key, body.value)
    else:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "Send either rights or key and value."},
        )
    member = service.change_member_rights(current_user, tid, user_id, rights)
    return MemberResponse.from_member(member)


@router.post("/team/members/{user_id}/role", response_model=MemberResponse)
def change_member_role(
    request: Request,
    user_id: int,
    body: RoleAssign,
    team_id: Optional[int] = None,
    current_user: User = Depends(get_current_user),
) -> MemberResponse:
    service = _service(request)
    tid = service.resolve_team_id(current_user, team_id)
    member = service.change_member_role(current_user, tid, user_id, body.role)
    return MemberResponse.from_member(member)


# ---------------------------------------------------------------------------
# Role templates
# ---------------------------------------------------------------------------


@router.get("/team/roles", response_model=list[RoleResponse])
def list_roles(
    request: Request,
    team_id: Optional[int] = None,
    current_user: User = Depends(get_current_user),
) -> list[RoleResponse]:
    roles = _service(request).list_roles(current_user, team_id)
    return [RoleResponse.from_role(r) for r in roles]


@router.post("/team/roles", response_model=RoleResponse, status_code=201)
def create_role(
    request: Request,
    body: RoleCreate,
    team_id: Optional[int] = None,
    current_user: User = Depends(get_current_user),
) -> RoleResponse:
    service = _service(request)
    tid = service.resolve_team_id(current_user, team_id)
    role = service.create_role(current_user, tid, body.name, body.rights.to_rights())
    return RoleResponse.from_role(role)


@router.patch("/team/roles/{name}", response_model=RoleResponse)
def update_role(
    request: Request,
    name: str,
    body: RoleUpdate,
    team_id: Optional[int] = None,
    current_user: User = Depends(get_current_user),
) -> RoleResponse:
    service = _service(request)
    tid = service.resolve_team_id(current_user, team_id)
    role = service.update_role(current_user, tid, name, body.rights.to_rights())
    return RoleResponse.from_role(role)


@router.delete("/team/roles/{name}", status_code=204)
def delete_role(
    request: Request,
    name: str,
    team_id: Optional[int] = None,
    current_user: User = Depends(get_current_user),
) -> Response:
    service = _service(request)
    tid = service.resolve_team_id(current_user, team_id)
    service.delete_role(current_user, tid, name)
    return Response(status_code=204)
