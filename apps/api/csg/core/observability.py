"""
Structured event lines (one JSON object per line on stdout).

Contract keys: ts, level, message, request_id, event, module (+ extras).
"""
from __future__ import annotations

import datetime
import json
import logging
import os
import time
from typing import Any, Dict, Optional

_log = logging.getLogger("csg")
if not _log.handlers:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

_last_error: Optional[Dict[str, Any]] = None


def now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat().replace("+00:00", "Z")


def now_ms() -> int:
    return int(time.time() * 1000)


def ms_to_iso(ms: Optional[int]) -> Optional[str]:
    if ms is None:
        return None
    dt = datetime.datetime.fromtimestamp(ms / 1000.0, tz=datetime.timezone.utc)
    return dt.isoformat().replace("+00:00", "Z")


def emit(level: str, event: str, message: str, request_id: Optional[str], module: str, **extra: Any) -> None:
    global _last_error
    payload: Dict[str, Any] = {
        "ts": now_iso(),
        "level": level.lower(),
        "message": message,
        "request_id": request_id,
        "event": event,
        "module": module,
    }
    payload.update(extra)
    if payload["level"] == "error":
        _last_error = {"ts": payload["ts"], "event": event, "message": message}
    print(json.dumps(payload, ensure_ascii=False, default=str), flush=True)


def last_error_summary() -> Optional[Dict[str, Any]]:
    return dict(_last_error) if _last_error else None
