from __future__ import annotations

from datetime import timedelta

import pytest
from jose import jwt

from conftest import register
from continuum_app.auth import create_access_token, hash_password, verify_password
from continuum_app.models import User


def test_register_returns_token(client):
    r = client.post("/api/auth/register", json={"email": "a@example.com", "password": "pw"})
    assert r.status_code == 200
    token = r.json()["token"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["email"] == "a@example.com"


def test_register_duplicate_email_conflicts(client):
    register(client, "dup@example.com")
    r = client.post("/api/auth/register", json={"email": "dup@example.com", "password": "other"})
    assert r.status_code == 409
    assert r.json() == {"error": "Email exists"}


@pytest.mark.parametrize("body", [{}, {"email": "x@example.com"}, {"password": "pw"}, {"email": "nope", "password": "pw"}])
def test_register_requires_email_and_password(client, body):
    r = client.post("/api/auth/register", json=body)
    assert r.status_code == 400
    assert "error" in r.json()


def test_login_roundtrip(client):
    register(client, "b@example.com", password="correct horse")
    r = client.post("/api/auth/login", json={"email": "b@example.com", "password": "correct horse"})
    assert r.status_code == 200
    assert r.json()["token"]


@pytest.mark.parametrize(
    "email,password",
    [
        ("b@example.com", "wrong"),
        ("nobody@example.com", "correct horse"),
        ("b@example.com", ""),
        ("admin", "x"),
        ("", ""),
    ],
)
def test_login_rejects_bad_credentials(client, email, password):
    register(client, "b@example.com", password="correct horse")
    r = client.post("/api/auth/login", json={"email": email, "password": password})
    assert r.status_code == 401
    assert r.json() == {"error": "Invalid credentials"}


def test_password_hash_is_salted():
    h1, h2 = hash_password("pw"), hash_password("pw")
    assert h1 != h2
    assert "pw" not in h1
    assert verify_password("pw", h1)
    assert not verify_password("pw2", h1)
    assert not verify_password("pw", "not-a-hash")


def _expired_token() -> str:
    return create_access_token(User(id="u1", email="u1@example.com"), ttl=timedelta(seconds=-10))


def _foreign_token() -> str:
    return jwt.encode({"id": "u1", "email": "u1@example.com"}, "some-other-secret", algorithm="HS256")


PROTECTED_ROUTES = [
    ("GET", "/api/auth/me"),
    ("GET", "/api/projects"),
    ("POST", "/api/projects"),
    ("GET", "/api/projects/p1"),
    ("DELETE", "/api/projects/p1"),
    ("GET", "/api/projects/p1/continuums"),
    ("POST", "/api/projects/p1/continuums"),
    ("PUT", "/api/continuums/c1"),
    ("DELETE", "/api/continuums/c1"),
    ("GET", "/api/projects/p1/sessions"),
    ("POST", "/api/projects/p1/sessions"),
    ("PUT", "/api/sessions/s1/status"),
    ("POST", "/api/sessions/s1/invite"),
    ("GET", "/api/sessions/s1/participants"),
    ("GET", "/api/sessions/s1/results"),
    ("GET", "/api/sessions/s1/export.csv"),
]


@pytest.mark.parametrize("method,path", PROTECTED_ROUTES)
@pytest.mark.parametrize(
    "header",
    [
        None,
        "Bearer",
        "Bearer not-a-jwt",
        "Basic dXNlcjpwdw==",
        "expired",
        "foreign",
    ],
)
def test_protected_routes_reject_bad_tokens(client, method, path, header):
    if header == "expired":
        header = f"Bearer {_expired_token()}"
    elif header == "foreign":
        header = f"Bearer {_foreign_token()}"
    headers = {"Authorization": header} if header else {}

    r = client.request(method, path, headers=headers, json={})
    assert r.status_code == 401
    assert "error" in r.json()


def test_token_for_deleted_user_is_rejected(client, db):
    headers = register(client, "gone@example.com")
    db.query(User).filter(User.email == "gone@example.com").delete()
    db.commit()

    r = client.get("/api/projects", headers=headers)
    assert r.status_code == 401
