# ---------------------------------------------------------------------------
# errors.py
#
# HTTP error constructors.
#
# Handlers raise the HTTPException returned by these helpers; main.py renders
# every error as {"error": "<message>"}.
# ---------------------------------------------------------------------------

from __future__ import annotations

from fastapi import HTTPException, status


def error(status_code: int, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail=message)


def bad_request(message: str) -> HTTPException:
    return error(status.HTTP_400_BAD_REQUEST, message)


def unauthorized(message: str = "Not authenticated") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=message,
        headers={"WWW-Authenticate": "Bearer"},
    )


def forbidden(message: str) -> HTTPException:
    return error(status.HTTP_403_FORBIDDEN, message)


def not_found(message: str = "Not found") -> HTTPException:
    return error(status.HTTP_404_NOT_FOUND, message)


def conflict(message: str) -> HTTPException:
    return error(status.HTTP_409_CONFLICT, message)
