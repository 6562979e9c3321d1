# ---------------------------------------------------------------------------
# utils.py
#
# Shared utility helpers.
#
# Small, dependency-light helpers used across the API:
# - secure random tokens for invite links
# - vote value coercion and clamping into a project's scale
# - half-up rounding and averaging for session results
# - timestamp formatting and CSV rendering for exports
# ---------------------------------------------------------------------------

from __future__ import annotations

import csv
import hashlib
import io
import math
import secrets
import sys
from datetime import datetime
from typing import Any, Iterable, Sequence


# ---------------------------------------------------------------------------
# Crypto helpers
# ---------------------------------------------------------------------------


def sha256_hex(value: str) -> str:
    """Return a SHA-256 hex digest of a UTF-8 string."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def new_key(nbytes: int = 18) -> str:
    """Generate a URL-safe random string (18 bytes -> 24 characters)."""
    return secrets.token_urlsafe(nbytes)


# ---------------------------------------------------------------------------
# Numeric helpers
# ---------------------------------------------------------------------------


def parse_numeric(value: Any) -> float | None:
    """Best-effort numeric coercion; return None if not a finite number.

    Booleans count as 0/1 and a blank string as 0, the way browser clients
    serialize unset inputs.
    """
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, int):
        try:
            number = float(value)
        except OverflowError:
            # Beyond float range: saturate so the sign still clamps.
            number = sys.float_info.max if value > 0 else -sys.float_info.max
    elif isinstance(value, float):
        number = value
    elif isinstance(value, str):
        text = value.strip()
        if text == "":
            return 0.0
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def round_half_up(value: float, digits: int = 0) -> float:
    """Round halves towards positive infinity (2.5 -> 3, -2.5 -> -2)."""
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


def clamp_vote(value: Any, min_value: int, max_value: int) -> int:
    """Coerce a submitted vote into an integer within [min_value, max_value].

    Anything that is not a finite number clamps to `min_value`.
    """
    number = parse_numeric(value)
    if number is None:
        return min_value
    return max(min_value, min(max_value, int(round_half_up(number))))


def average(values: Sequence[int]) -> float:
    """Arithmetic mean rounded to one decimal place; 0 for no values."""
    if not values:
        return 0
    return round_half_up(sum(values) / len(values), 1)


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def fmt_dt(dt: datetime | None) -> str | None:
    """ISO-8601 UTC timestamp with millisecond precision (e.g. 2024-01-31T09:15:00.000Z)."""
    if dt is None:
        return None
    return dt.isoformat(timespec="milliseconds") + "Z"


def render_csv(header: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    """Render rows as CSV text.

    Fields containing a comma, quote or newline are quoted and internal quotes
    are doubled; None renders as an empty field.
    """
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n", quoting=csv.QUOTE_MINIMAL)
    writer.writerow(header)
    for row in rows:
        writer.writerow(["" if v is None else v for v in row])
    return buf.getvalue()
