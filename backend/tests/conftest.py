from __future__ import annotations

import os
import tempfile
import uuid

_DB_DIR = tempfile.mkdtemp(prefix="continuum-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR}/test.db"
os.environ["JWT_SECRET"] = "test-secret-not-for-production"
os.environ["APP_ENV"] = "test"
os.environ["RATE_LIMIT_RPM"] = "100000"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from continuum_app.db import Base, SessionLocal, engine, init_db  # noqa: E402
from continuum_app.main import app  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_db() -> None:
    Base.metadata.drop_all(bind=engine)
    init_db()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def register(client, email: str | None = None, password: str = "s3cret-pass") -> dict:
    email = email or f"user-{uuid.uuid4().hex[:8]}@example.com"
    r = client.post("/api/auth/register", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['token']}"}


@pytest.fixture
def auth_headers(client) -> dict:
    return register(client, "owner@example.com")


@pytest.fixture
def voting_setup(client, auth_headers) -> dict:
    """A [-5, 5] project with three continuums (the last hidden), an open
    baseline session and one invite token."""
    project = client.post(
        "/api/projects",
        json={"name": "Team culture", "minValue": -5, "maxValue": 5},
        headers=auth_headers,
    ).json()

    continuum_ids = []
    for title, left, right in [
        ("Risk", "risk-averse", "risk-seeking"),
        ("Pace", "deliberate", "fast"),
        ("Scope", "narrow", "broad"),
    ]:
        c = client.post(
            f"/api/projects/{project['id']}/continuums",
            json={"title": title, "leftAim": left, "rightAim": right},
            headers=auth_headers,
        ).json()
        continuum_ids.append(c["id"])
    client.put(f"/api/continuums/{continuum_ids[2]}", json={"isHidden": True}, headers=auth_headers)

    session = client.post(
        f"/api/projects/{project['id']}/sessions", json={"type": "baseline"}, headers=auth_headers
    ).json()
    invite = client.post(
        f"/api/sessions/{session['id']}/invite", json={"email": "guest@example.com"}, headers=auth_headers
    ).json()
    token = invite["inviteUrl"].split("token=", 1)[1]

    return {
        "headers": auth_headers,
        "project": project,
        "continuum_ids": continuum_ids,
        "session": session,
        "token": token,
    }


def join(client, token: str, name: str = "Ada", email: str | None = None) -> str:
    r = client.post(f"/api/public/invite/{token}/join", json={"name": name, "email": email})
    assert r.status_code == 200, r.text
    return r.json()["participantId"]
