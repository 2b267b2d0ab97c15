from __future__ import annotations

import contextvars
import json
import os
import time
import uuid
from typing import Any, Dict, Optional

_CURRENT_CTX: contextvars.ContextVar[Optional[Dict[str, Any]]] = contextvars.ContextVar(
    "txguard_log_ctx",
    default=None,
)


def get_current_context() -> Optional[Dict[str, Any]]:
    return _CURRENT_CTX.get()


def set_current_context(ctx: Optional[Dict[str, Any]]) -> None:
    _CURRENT_CTX.set(ctx)


_LEVELS = {"debug": 10, "info": 20, "warn": 30, "warning": 30, "error": 40}


def _level_value(level: str) -> int:
    return _LEVELS.get(str(level or "").strip().lower(), 20)


def _min_level_value() -> int:
    raw = (os.getenv("TXGUARD_LOG_LEVEL") or os.getenv("LOG_LEVEL") or "info").strip().lower()
    return _level_value(raw)


# signedTx is a full raw transaction; it never needs to be in a log line.
_SENSITIVE_KEYWORDS = ("secret", "password", "private", "mnemonic", "api_key", "apikey", "seed", "signedtx")


def redact(value: Any) -> Any:
    """
    Best-effort redaction of secret-looking keys before anything reaches stdout.
    """
    if isinstance(value, dict):
        out: Dict[str, Any] = {}
        for k, v in value.items():
            ks = str(k).lower()
            if any(x in ks for x in _SENSITIVE_KEYWORDS):
                out[k] = "***REDACTED***"
            else:
                out[k] = redact(v)
        return out
    if isinstance(value, (list, tuple)):
        return [redact(x) for x in value]
    return value


def build_log_context(*, tool: str, request_id: str | None = None, intent_id: str | None = None) -> Dict[str, Any]:
    """
    Build a per-invocation context object for structured logs.
    """
    ctx = {
        "tool": tool,
        "request_id": str(request_id or uuid.uuid4()),
        "ts_ms": int(time.time() * 1000),
        "service": os.getenv("TXGUARD_SERVICE_NAME", "txguard"),
    }
    if intent_id:
        ctx["intent_id"] = str(intent_id)
    return ctx


def log_event(event: str, *, ctx: Optional[Dict[str, Any]] = None, data: Optional[Dict[str, Any]] = None, level: str = "info") -> None:
    """
    Emit a single-line JSON log event to stdout.

    Falls back to the context bound to the current tool invocation when `ctx` is omitted,
    so core components can log without threading a context through every call.
    """
    if _level_value(level) < _min_level_value():
        return
    payload = dict(ctx if ctx is not None else (get_current_context() or {}))
    payload["level"] = str(level).upper()
    payload["event"] = event
    if data:
        payload["data"] = redact(data)
    print(json.dumps(payload, sort_keys=True, default=str))
