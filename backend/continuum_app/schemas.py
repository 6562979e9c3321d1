# ---------------------------------------------------------------------------
# schemas.py
#
# Pydantic request/response models.
#
# These schemas define the public API contract:
# - request validation (inputs accept the camelCase keys the clients send)
# - response serialization (rows are returned with snake_case column names)
# - OpenAPI documentation generation
#
# Notes:
# - Pydantic v2 style (`model_dump()` in handlers).
# - Vote payload fields are typed loosely on purpose: values are clamped and
#   unknown continuums skipped rather than rejected.
# ---------------------------------------------------------------------------

from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from .models import Continuum, Participant, Project, VotingSession
from .utils import fmt_dt


class _CamelIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class RegisterIn(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class LoginIn(BaseModel):
    email: str = ""
    password: str = ""


class TokenOut(BaseModel):
    token: str


class MeOut(BaseModel):
    id: str
    email: EmailStr


# ---------------------------------------------------------------------------
# Projects / continuums / sessions
# ---------------------------------------------------------------------------


class ProjectCreateIn(_CamelIn):
    name: Optional[str] = None
    min_value: int = Field(-5, alias="minValue")
    max_value: int = Field(5, alias="maxValue")


class ProjectOut(BaseModel):
    id: str
    name: str
    min_value: int
    max_value: int
    owner_id: Optional[str] = None
    created_at: str
    updated_at: str

    @classmethod
    def of(cls, p: Project) -> "ProjectOut":
        return cls(
            id=p.id,
            name=p.name,
            min_value=p.min_value,
            max_value=p.max_value,
            owner_id=p.owner_id,
            created_at=fmt_dt(p.created_at),
            updated_at=fmt_dt(p.updated_at),
        )


class ContinuumCreateIn(_CamelIn):
    title: Optional[str] = None
    left_aim: str = Field("", alias="leftAim")
    right_aim: str = Field("", alias="rightAim")
    left_desc: str = Field("", alias="leftDesc")
    right_desc: str = Field("", alias="rightDesc")


class ContinuumUpdateIn(_CamelIn):
    title: Optional[str] = None
    left_aim: Optional[str] = Field(None, alias="leftAim")
    right_aim: Optional[str] = Field(None, alias="rightAim")
    left_desc: Optional[str] = Field(None, alias="leftDesc")
    right_desc: Optional[str] = Field(None, alias="rightDesc")
    # Only a JSON boolean toggles visibility; anything else keeps the current value.
    is_hidden: Any = Field(None, alias="isHidden")


class ContinuumOut(BaseModel):
    id: str
    project_id: str
    title: str
    left_aim: Optional[str] = None
    right_aim: Optional[str] = None
    left_desc: Optional[str] = None
    right_desc: Optional[str] = None
    sort_order: int
    is_hidden: bool
    created_at: str
    updated_at: str

    @classmethod
    def of(cls, c: Continuum) -> "ContinuumOut":
        return cls(
            id=c.id,
            project_id=c.project_id,
            title=c.title,
            left_aim=c.left_aim,
            right_aim=c.right_aim,
            left_desc=c.left_desc,
            right_desc=c.right_desc,
            sort_order=c.sort_order,
            is_hidden=bool(c.is_hidden),
            created_at=fmt_dt(c.created_at),
            updated_at=fmt_dt(c.updated_at),
        )


class SessionCreateIn(BaseModel):
    type: Optional[str] = None


class SessionStatusIn(BaseModel):
    status: Optional[str] = None


class SessionOut(BaseModel):
    id: str
    project_id: str
    type: str
    status: str
    created_at: str
    updated_at: str

    @classmethod
    def of(cls, s: VotingSession) -> "SessionOut":
        return cls(
            id=s.id,
            project_id=s.project_id,
            type=s.type,
            status=s.status,
            created_at=fmt_dt(s.created_at),
            updated_at=fmt_dt(s.updated_at),
        )


class InviteCreateIn(BaseModel):
    email: EmailStr


class InviteOut(BaseModel):
    ok: bool = True
    inviteUrl: str
    mailStatus: str = "manual"


class ParticipantOut(BaseModel):
    id: str
    session_id: str
    name: str
    email: Optional[str] = None
    joined_at: str

    @classmethod
    def of(cls, p: Participant) -> "ParticipantOut":
        return cls(
            id=p.id,
            session_id=p.session_id,
            name=p.name,
            email=p.email,
            joined_at=fmt_dt(p.joined_at),
        )


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class ContinuumResultOut(BaseModel):
    continuumId: str
    title: str
    values: List[int] = Field(default_factory=list)
    count: int
    avg: float


class ResultsOut(BaseModel):
    sessionId: str
    results: List[ContinuumResultOut]


# ---------------------------------------------------------------------------
# Public invite / voting flow
# ---------------------------------------------------------------------------


class InviteSessionOut(BaseModel):
    id: str
    type: str
    status: str


class InviteProjectOut(BaseModel):
    id: str
    name: str
    minValue: int
    maxValue: int


class InviteDetailsOut(BaseModel):
    session: InviteSessionOut
    project: InviteProjectOut
    continuums: List[ContinuumOut]
    inviteEmail: str


class JoinIn(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None


class JoinOut(BaseModel):
    participantId: str


class SubmitIn(_CamelIn):
    participant_id: Any = Field(None, alias="participantId")
    # [{continuumId, value}, ...]; checked in the handler so a bad shape is a 400.
    votes: Any = None


class OkOut(BaseModel):
    ok: bool = True
