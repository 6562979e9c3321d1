# ---------------------------------------------------------------------------
# middleware.py
#
# FastAPI / Starlette middleware used by the API service.
#
# Included middleware:
# - BodySizeLimitMiddleware: rejects requests exceeding MAX_BODY_BYTES based on
#   Content-Length (best-effort; streaming bodies cannot be measured reliably).
# - RateLimitMiddleware: in-memory sliding window limiter keyed by the bearer
#   token hash. Suitable for a single instance.
# - ApiLoggingMiddleware: one structured access-log line per request.
#
# Failures in logging must not crash the request path.
# ---------------------------------------------------------------------------

from __future__ import annotations

import logging
import time
import uuid
from collections import OrderedDict, deque
from typing import Callable, Deque, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from .config import MAX_BODY_BYTES, RATE_LIMIT_RPM
from .observability import log_event, logger
from .utils import sha256_hex


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject requests above MAX_BODY_BYTES based on Content-Length header."""

    async def dispatch(self, request: Request, call_next: Callable):
        content_length = request.headers.get("content-length")
        if content_length:
            try:
                if int(content_length) > MAX_BODY_BYTES:
                    return JSONResponse({"error": "Request too large"}, status_code=413)
            except ValueError:
                # If Content-Length isn't an int, ignore and let downstream handle.
                pass
        return await call_next(request)


class _SlidingWindowLimiter:
    """A simple in-memory sliding window limiter (requests per minute).

    Keys are tracked in least-recently-used order and capped at `max_keys`,
    so unauthenticated junk tokens cannot grow the table without bound.
    """

    def __init__(self, max_keys: int = 10_000) -> None:
        self._hits: "OrderedDict[str, Deque[float]]" = OrderedDict()
        self._max_keys = max_keys

    def allow(self, key: str, limit_per_minute: int) -> bool:
        now = time.time()
        window_seconds = 60.0
        q = self._hits.get(key)
        if q is None:
            q = self._hits[key] = deque()
        else:
            self._hits.move_to_end(key)

        # Drop timestamps outside the window.
        while q and (now - q[0]) > window_seconds:
            q.popleft()

        allowed = len(q) < limit_per_minute
        if allowed:
            q.append(now)

        while len(self._hits) > self._max_keys:
            self._hits.popitem(last=False)
        return allowed

    def __len__(self) -> int:
        return len(self._hits)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """In-memory rate limiter keyed by bearer token hash.

    Unauthenticated requests (login, public invite flow) are not limited here;
    put those behind a gateway/WAF for multi-instance deployments.
    """

    def __init__(self, app, limit_per_minute: Optional[int] = None, max_keys: int = 10_000):
        super().__init__(app)
        self._limiter = _SlidingWindowLimiter(max_keys)
        self._limit = limit_per_minute if limit_per_minute is not None else RATE_LIMIT_RPM

    def _rate_key(self, request: Request) -> Optional[str]:
        auth = request.headers.get("authorization", "")
        if auth.lower().startswith("bearer "):
            token = auth.split(" ", 1)[1].strip()
            if token:
                return f"api:{sha256_hex(token)}"
        return None

    async def dispatch(self, request: Request, call_next: Callable):
        key = self._rate_key(request)
        if key is not None and self._limit > 0:
            if not self._limiter.allow(key, self._limit):
                return JSONResponse({"error": "Rate limit exceeded"}, status_code=429)

        return await call_next(request)


class ApiLoggingMiddleware(BaseHTTPMiddleware):
    """Log one `http.request` event per request and tag the response."""

    def _log(self, request: Request, request_id: str, status: int, duration_ms: float) -> None:
        try:
            log_event(
                "http.request",
                level=logging.WARNING if status >= 500 else logging.INFO,
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                status=status,
                duration_ms=round(duration_ms, 2),
                user_id=getattr(request.state, "user_id", None),
            )
        except Exception:
            logger.debug("access log failed", exc_info=True)

    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        start = time.perf_counter()
        try:
            response: Response = await call_next(request)
        except Exception:
            self._log(request, request_id, 500, (time.perf_counter() - start) * 1000.0)
            raise
        duration_ms = (time.perf_counter() - start) * 1000.0
        self._log(request, request_id, response.status_code, duration_ms)

        response.headers["x-request-id"] = request_id
        response.headers["x-server-timing-ms"] = str(int(duration_ms))
        return response
