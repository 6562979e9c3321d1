from __future__ import annotations

import json
import logging
from typing import Any

from .config import LOG_LEVEL

logger = logging.getLogger("continuum_app")

if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    logger.addHandler(handler)
logger.setLevel(LOG_LEVEL)


def log_event(event: str, level: int = logging.INFO, **fields: Any) -> None:
    payload = {"event": event, **fields}
    logger.log(level, json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str))
