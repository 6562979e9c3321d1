# ---------------------------------------------------------------------------
# auth.py
#
# Authentication helpers.
#
# This module implements:
# - Database session dependency (`get_db`)
# - Password hashing/verification (Argon2 via passlib)
# - Signed, time-limited bearer tokens (HS256 JWT via python-jose) carrying
#   {id, email}
# - The `get_current_user` dependency guarding every admin route
#
# Tokens are stateless: there is no server-side revocation, they simply
# expire after TOKEN_TTL_DAYS.
# ---------------------------------------------------------------------------

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Generator, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from .config import JWT_ALGORITHM, JWT_SECRET, TOKEN_TTL_DAYS
from .db import SessionLocal
from .errors import unauthorized
from .models import User

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")
bearer = HTTPBearer(auto_error=False)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a DB session and guarantees close."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def hash_password(password: str) -> str:
    """Hash a plaintext password using Argon2 (salted)."""
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a plaintext password against an Argon2 hash."""
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        # Unrecognized / corrupt hash.
        return False


def create_access_token(user: User, ttl: Optional[timedelta] = None) -> str:
    """Issue a signed token for `user` that expires after TOKEN_TTL_DAYS."""
    expire = datetime.now(timezone.utc) + (ttl if ttl is not None else timedelta(days=TOKEN_TTL_DAYS))
    claims = {"id": user.id, "email": user.email, "exp": expire}
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Return the verified claims of `token`.

    Raises a 401 HTTPException if the token is malformed, expired or signed
    with another key.
    """
    try:
        claims = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise unauthorized("Invalid token")
    if not claims.get("id"):
        raise unauthorized("Invalid token")
    return claims


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> User:
    """Authenticate the request using the `Authorization: Bearer <token>` header."""
    if creds is None or creds.scheme.lower() != "bearer" or not creds.credentials:
        raise unauthorized("Missing token")

    claims = decode_access_token(creds.credentials)
    user = db.get(User, claims["id"])
    if not user:
        raise unauthorized("Unknown user")

    request.state.user_id = user.id
    request.state.auth_type = "bearer"
    return user
