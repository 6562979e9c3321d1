# ---------------------------------------------------------------------------
# main.py
#
# FastAPI application entrypoint.
#
# This module wires together:
# - FastAPI app instance, middleware, error rendering and the startup phase
#   (secret check + idempotent schema bootstrap)
# - Auth routes, authenticated admin routes and the public invite/voting flow
#
# Route handlers are kept thin; DB operations live in crud.py. Every error
# leaves the API as {"error": "<message>"}.
# ---------------------------------------------------------------------------

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import List

from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import crud
from .auth import create_access_token, get_current_user, get_db, hash_password, verify_password
from .config import CORS_ORIGINS, FRONTEND_BASE_URL, check_secret, secret_is_insecure
from .db import init_db
from .errors import bad_request, unauthorized
from .middleware import ApiLoggingMiddleware, BodySizeLimitMiddleware, RateLimitMiddleware
from .models import SESSION_STATUSES, SESSION_TYPES
from .observability import log_event, logger
from .schemas import (
    ContinuumCreateIn,
    ContinuumOut,
    ContinuumResultOut,
    ContinuumUpdateIn,
    InviteCreateIn,
    InviteDetailsOut,
    InviteOut,
    InviteProjectOut,
    InviteSessionOut,
    JoinIn,
    JoinOut,
    LoginIn,
    MeOut,
    OkOut,
    ParticipantOut,
    ProjectCreateIn,
    ProjectOut,
    RegisterIn,
    ResultsOut,
    SessionCreateIn,
    SessionOut,
    SessionStatusIn,
    SubmitIn,
    TokenOut,
)
from .utils import render_csv

# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    check_secret()
    if secret_is_insecure():
        log_event("config.insecure_secret", level=logging.WARNING, detail="JWT_SECRET is not set")
    tables = init_db()
    log_event("schema.ready", tables=tables)
    yield


app = FastAPI(
    title="Continuum Voting API",
    openapi_url="/api/openapi.json",
    docs_url="/api/docs",
    lifespan=lifespan,
)

# Request-level safety and observability.
app.add_middleware(BodySizeLimitMiddleware)
app.add_middleware(ApiLoggingMiddleware)
app.add_middleware(RateLimitMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error rendering
# ---------------------------------------------------------------------------


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        problems.append(f"{'.'.join(loc)}: {err.get('msg')}" if loc else str(err.get("msg")))
    return JSONResponse({"error": "; ".join(problems) or "Invalid payload"}, status_code=400)


@app.exception_handler(Exception)
async def internal_error(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


def _list_response(items: list) -> JSONResponse:
    return JSONResponse(
        content=[i.model_dump() for i in items],
        headers={"x-returned-items": str(len(items))},
    )


# ---------------------------------------------------------------------------
# Auth routes
# ---------------------------------------------------------------------------


@app.get("/api/health")
def health():
    return {"ok": True}


@app.post("/api/auth/register", response_model=TokenOut)
def register(payload: RegisterIn, request: Request, db=Depends(get_db)):
    user = crud.create_user(db, payload.email, hash_password(payload.password))
    request.state.user_id = user.id
    log_event("auth.register", user_id=user.id)
    return TokenOut(token=create_access_token(user))


@app.post("/api/auth/login", response_model=TokenOut)
def login(payload: LoginIn, request: Request, db=Depends(get_db)):
    user = crud.get_user_by_email(db, payload.email)
    if not user or not verify_password(payload.password, user.password_hash):
        log_event("auth.login_failed", level=logging.WARNING, email=payload.email)
        raise unauthorized("Invalid credentials")

    request.state.user_id = user.id
    return TokenOut(token=create_access_token(user))


@app.get("/api/auth/me", response_model=MeOut)
def me(user=Depends(get_current_user)):
    return MeOut(id=user.id, email=user.email)


# ---------------------------------------------------------------------------
# Project routes
# ---------------------------------------------------------------------------


@app.get("/api/projects", response_model=List[ProjectOut])
def list_projects(db=Depends(get_db), user=Depends(get_current_user)):
    return _list_response([ProjectOut.of(p) for p in crud.list_projects(db, user)])


@app.post("/api/projects", response_model=ProjectOut)
def create_project(payload: ProjectCreateIn, db=Depends(get_db), user=Depends(get_current_user)):
    p = crud.create_project(db, user, payload.name, payload.min_value, payload.max_value)
    return ProjectOut.of(p)


@app.get("/api/projects/{project_id}", response_model=ProjectOut)
def get_project(project_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    return ProjectOut.of(crud.get_project(db, user, project_id))


@app.delete("/api/projects/{project_id}", response_model=OkOut)
def delete_project(project_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    p = crud.get_project(db, user, project_id)
    crud.delete_project(db, p)
    log_event("project.deleted", project_id=project_id, user_id=user.id)
    return OkOut()


# ---------------------------------------------------------------------------
# Continuum routes
# ---------------------------------------------------------------------------


@app.get("/api/projects/{project_id}/continuums", response_model=List[ContinuumOut])
def list_continuums(project_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    p = crud.get_project(db, user, project_id)
    return _list_response([ContinuumOut.of(c) for c in crud.list_continuums(db, p.id)])


@app.post("/api/projects/{project_id}/continuums", response_model=ContinuumOut)
def create_continuum(
    project_id: str, payload: ContinuumCreateIn, db=Depends(get_db), user=Depends(get_current_user)
):
    p = crud.get_project(db, user, project_id)
    c = crud.create_continuum(
        db,
        p,
        payload.title,
        left_aim=payload.left_aim,
        right_aim=payload.right_aim,
        left_desc=payload.left_desc,
        right_desc=payload.right_desc,
    )
    return ContinuumOut.of(c)


@app.put("/api/continuums/{continuum_id}", response_model=ContinuumOut)
def update_continuum(
    continuum_id: str, payload: ContinuumUpdateIn, db=Depends(get_db), user=Depends(get_current_user)
):
    c = crud.get_continuum(db, user, continuum_id)
    return ContinuumOut.of(crud.update_continuum(db, c, payload.model_dump()))


@app.delete("/api/continuums/{continuum_id}", response_model=OkOut)
def delete_continuum(continuum_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    c = crud.get_continuum(db, user, continuum_id)
    crud.delete_continuum(db, c)
    return OkOut()


# ---------------------------------------------------------------------------
# Session routes
# ---------------------------------------------------------------------------


@app.get("/api/projects/{project_id}/sessions", response_model=List[SessionOut])
def list_sessions(project_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    p = crud.get_project(db, user, project_id)
    return _list_response([SessionOut.of(s) for s in crud.list_sessions(db, p.id)])


@app.post("/api/projects/{project_id}/sessions", response_model=SessionOut)
def create_session(project_id: str, payload: SessionCreateIn, db=Depends(get_db), user=Depends(get_current_user)):
    p = crud.get_project(db, user, project_id)
    if payload.type not in SESSION_TYPES:
        raise bad_request("Invalid type")
    return SessionOut.of(crud.create_session(db, p, payload.type))


@app.put("/api/sessions/{session_id}/status", response_model=SessionOut)
def set_session_status(
    session_id: str, payload: SessionStatusIn, db=Depends(get_db), user=Depends(get_current_user)
):
    s = crud.get_session(db, user, session_id)
    if payload.status not in SESSION_STATUSES:
        raise bad_request("Invalid status")
    s = crud.set_session_status(db, s, payload.status)
    log_event("session.status_changed", session_id=s.id, status=s.status)
    return SessionOut.of(s)


@app.post("/api/sessions/{session_id}/invite", response_model=InviteOut)
def create_invite(session_id: str, payload: InviteCreateIn, db=Depends(get_db), user=Depends(get_current_user)):
    s = crud.get_session(db, user, session_id)
    inv = crud.create_invite(db, s, payload.email)
    log_event("invite.created", session_id=s.id, invite_id=inv.id)
    return InviteOut(inviteUrl=f"{FRONTEND_BASE_URL}/participant.html?token={inv.token}")


@app.get("/api/sessions/{session_id}/participants", response_model=List[ParticipantOut])
def list_participants(session_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    s = crud.get_session(db, user, session_id)
    return _list_response([ParticipantOut.of(p) for p in crud.list_participants(db, s.id)])


@app.get("/api/sessions/{session_id}/results", response_model=ResultsOut)
def session_results(session_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    s = crud.get_session(db, user, session_id)
    results = [ContinuumResultOut(**r) for r in crud.session_results(db, s)]
    return ResultsOut(sessionId=s.id, results=results)


@app.get("/api/sessions/{session_id}/export.csv")
def export_csv(session_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    s = crud.get_session(db, user, session_id)
    body = render_csv(crud.EXPORT_HEADER, crud.export_rows(db, s.id))
    return Response(
        content=body,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="session.csv"'},
    )


# ---------------------------------------------------------------------------
# Public invite / voting routes (no auth; the invite token is the capability)
# ---------------------------------------------------------------------------


@app.get("/api/public/invite/{token}", response_model=InviteDetailsOut)
def get_invite(token: str, db=Depends(get_db)):
    inv, s, p = crud.resolve_invite(db, token)
    continuums = crud.list_continuums(db, p.id, include_hidden=False)
    return InviteDetailsOut(
        session=InviteSessionOut(id=s.id, type=s.type, status=s.status),
        project=InviteProjectOut(id=p.id, name=p.name, minValue=p.min_value, maxValue=p.max_value),
        continuums=[ContinuumOut.of(c) for c in continuums],
        inviteEmail=inv.email,
    )


@app.post("/api/public/invite/{token}/join", response_model=JoinOut)
def join(token: str, payload: JoinIn, db=Depends(get_db)):
    participant = crud.join_session(db, token, payload.name, payload.email)
    log_event("participant.joined", session_id=participant.session_id, participant_id=participant.id)
    return JoinOut(participantId=participant.id)


@app.post("/api/public/invite/{token}/submit", response_model=OkOut)
def submit(token: str, payload: SubmitIn, db=Depends(get_db)):
    accepted, skipped = crud.submit_votes(db, token, payload.participant_id, payload.votes)
    log_event("votes.submitted", participant_id=str(payload.participant_id), accepted=accepted, skipped=skipped)
    return OkOut()


# ---------------------------------------------------------------------------
# Fallback
# ---------------------------------------------------------------------------


@app.api_route(
    "/{path:path}",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    include_in_schema=False,
)
def not_found_fallback(path: str, request: Request):
    return JSONResponse(
        {"error": "Not found", "path": request.url.path, "method": request.method},
        status_code=404,
    )
