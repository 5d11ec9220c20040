"""
API request and response models for Crewroster REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
teams/models.py, which own the internal domain representation. Route handlers
map between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from auth.models import ABOUT_MAX_LENGTH, User, clean_email, clean_username
from teams.models import RIGHT_NAMES, Rights, Role, Team, TeamMember

# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str


class Acknowledged(BaseModel):
    model_config = ConfigDict(frozen=True)

    acknowledged: bool = True


class RightsModel(BaseModel):
    """Wire form of teams.models.Rights."""

    add_team_member: bool = False
    remove_team_member: bool = False
    change_team_member_role: bool = False
    change_team_member_rights: bool = False

    @classmethod
    def from_rights(cls, rights: Rights) -> "RightsModel":
        return cls(**rights.as_dict())

    def to_rights(self) -> Rights:
        return Rights.from_dict(self.model_dump())


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """username accepts either the account name or its email address."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str
    expires_in: int
    user_id: int
    username: str


class CheckPasswordRequest(BaseModel):
    password: str = Field(max_length=255)


class CheckPasswordResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    auth: bool


class ChangePasswordRequest(BaseModel):
    """Length limits are enforced by auth.policy so the error order stays stable."""

    old_password: str = Field(default="", max_length=255)
    new_password: str = Field(default="", max_length=255)
    new_password_confirm: str = Field(default="", max_length=255)


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


class MeResponse(BaseModel):
    """Identity and team context for the current session."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    about: str
    avatar: Optional[str]
    superadmin: bool
    team_id: Optional[int] = None
    role: Optional[str] = None
    rights: Optional[RightsModel] = None


class ProfileUpdate(BaseModel):
    """Request body for POST /api/v1/user."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str
    email: EmailStr
    about: str = Field(default="", max_length=ABOUT_MAX_LENGTH)

    @field_validator("username")
    @classmethod
    def check_username(cls, value: str) -> str:
        return clean_username(value)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, value: str) -> str:
        return clean_email(value)


class ProfileUpdateResponse(BaseModel):
    """refresh tells the client its cached identity is stale and should be reloaded."""

    model_config = ConfigDict(frozen=True)

    acknowledged: bool
    refresh: bool


class AvatarUpload(BaseModel):
    """Request body for POST /api/v1/avatar.

    file is a "data:<mime>;base64,..." URL. type/name/size are informational;
    the server trusts only the decoded pixels.
    """

    type: str = Field(max_length=50)
    name: str = Field(default="", max_length=255)
    size: int = Field(default=0, ge=0)
    file: str


class AvatarResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    acknowledged: bool
    avatar: str


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class PublicUser(BaseModel):
    """Profile fields visible to teammates."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    about: str
    avatar: Optional[str]

    @classmethod
    def from_user(cls, user: User) -> "PublicUser":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            about=user.about or "",
            avatar=user.avatar,
        )


class UserLookupRequest(BaseModel):
    ids: list[int] = Field(min_length=1, max_length=100)


class UserCreate(BaseModel):
    """Request body for POST /api/v1/users (superadmin only)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str
    email: EmailStr
    password: str = Field(max_length=255)
    about: str = Field(default="", max_length=ABOUT_MAX_LENGTH)
    superadmin: bool = False

    @field_validator("username")
    @classmethod
    def check_username(cls, value: str) -> str:
        return clean_username(value)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, value: str) -> str:
        return clean_email(value)


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    superadmin: bool
    is_active: bool
    created_at: str
    last_login: Optional[str] = None


# ---------------------------------------------------------------------------
# Teams
# ---------------------------------------------------------------------------


class TeamCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    max_members: Optional[int] = Field(default=None, ge=1, le=1000)
    owner_id: int


class TeamResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    max_members: int
    created_at: str

    @classmethod
    def from_team(cls, team: Team) -> "TeamResponse":
        return cls(id=team.id, name=team.name, max_members=team.max_members, created_at=team.created_at)


class MemberRow(BaseModel):
    """A roster row: membership joined with the member's public profile."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    username: str
    email: str
    about: str
    avatar: Optional[str]
    role: str
    rights: RightsModel
    joined_at: str


class RosterResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    max_members: int
    member_count: int
    members: list[MemberRow]
    my_rights: Optional[RightsModel] = None


class MemberAdd(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    login: str = Field(min_length=1, max_length=255, description="Username or email of an existing account.")
    role: str = Field(default="member", min_length=1, max_length=50)


class MemberResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    team_id: int
    user_id: int
    role: str
    rights: RightsModel

    @classmethod
    def from_member(cls, member: TeamMember) -> "MemberResponse":
        return cls(
            team_id=member.team_id,
            user_id=member.user_id,
            role=member.role,
            rights=RightsModel.from_rights(member.rights),
        )


class RightsPatch(BaseModel):
    """Request body for POST /team/members/{user_id}/rights.

    Either a full rights object, or a single flag to flip (key/value), which
    is what a toggle switch sends.
    """

    rights: Optional[RightsModel] = None
    key: Optional[str] = None
    value: Optional[bool] = None

    @field_validator("key")
    @classmethod
    def known_right(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in RIGHT_NAMES:
            raise ValueError(f"Unknown right: {value}")
        return value


class RoleAssign(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    role: str = Field(min_length=1, max_length=50)


class RoleCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=50)
    rights: RightsModel = Field(default_factory=RightsModel)


class RoleUpdate(BaseModel):
    rights: RightsModel


class RoleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    rights: RightsModel

    @classmethod
    def from_role(cls, role: Role) -> "RoleResponse":
        return cls(name=role.name, rights=RightsModel.from_rights(role.rights))
