import json
import os
import time
from typing import Any, Callable, Dict, Optional

from app.core.container import global_container
from common.rate_limiter import RateLimitError
from core.results import Failure, PipelineResult, Success
from observability import build_log_context, log_event, now_ms
from observability.logging import set_current_context

# Tools whose outcomes go to the audit log.
AUDITED_TOOLS = {
    "tx.simulate",
    "tx.execute",
    "guard.setRules",
    "guard.setEmergencyStop",
    "guard.removeRule",
    "guard.toggleRule",
}

EXECUTION_TOOLS = {"tx.execute"}


def _dump(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, indent=2, sort_keys=True, default=str)


def json_result(result: PipelineResult) -> str:
    return _dump(result.to_dict())


def json_ok(data: Any = None) -> str:
    return json_result(Success(data if data is not None else {}))


def json_err(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> str:
    return json_result(Failure(code, message, details))


def rate_limit(tool_name: str) -> Optional[str]:
    """
    Per-tool fixed-window limit.

    Env:
      - RATE_LIMIT_DEFAULT_PER_MIN (default 120)
      - RATE_LIMIT_EXECUTION_PER_MIN (default 20, execution tools)
      - RATE_LIMIT_<TOOL>_PER_MIN overrides one tool, e.g. RATE_LIMIT_TX_SIMULATE_PER_MIN
    """
    tool_key = tool_name.strip().replace(".", "_").upper()
    per_tool = os.getenv(f"RATE_LIMIT_{tool_key}_PER_MIN")
    if per_tool is not None:
        limit = int(per_tool)
    elif tool_name in EXECUTION_TOOLS:
        limit = int(os.getenv("RATE_LIMIT_EXECUTION_PER_MIN", "20"))
    else:
        limit = int(os.getenv("RATE_LIMIT_DEFAULT_PER_MIN", "120"))

    metrics = global_container.metrics
    try:
        metrics.inc("rate_limit_checks_total")
        global_container.rate_limiter.check(key=f"tool:{tool_name}", limit=limit, window_seconds=60)
        return None
    except RateLimitError as e:
        metrics.inc("rate_limited_total")
        return json_err(e.code, e.message, e.data)


def _audit(tool: str, ctx: Dict[str, Any], out: str) -> None:
    payload = json.loads(out)
    if not isinstance(payload, dict):
        return
    summary: Dict[str, Any] = {}
    error_code = None
    if "success" not in payload:
        ok = False
        error_code = "PAYMENT_REQUIRED"
        summary["invoiceId"] = payload.get("invoiceId")
    elif payload.get("success"):
        ok = True
        data = payload.get("data") or {}
        if isinstance(data, dict):
            # keep summary small; never the raw tx or proof
            for k in ("status", "txHash", "route", "guardsTriggered", "emergencyStop"):
                if k in data:
                    summary[k] = data[k]
            rule = data.get("rule")
            if isinstance(rule, dict):
                summary["rule"] = {"name": rule.get("name"), "type": rule.get("type")}
    else:
        ok = False
        err = payload.get("error") or {}
        error_code = err.get("code")
        details = err.get("details") or {}
        if isinstance(details, dict) and "triggeredGuards" in details:
            summary["triggeredGuards"] = details["triggeredGuards"]
    global_container.audit_log.append(
        ts_ms=ctx.get("ts_ms") or now_ms(),
        request_id=str(ctx.get("request_id") or ""),
        tool=tool,
        ok=ok,
        error_code=error_code,
        intent_id=ctx.get("intent_id"),
        summary=summary or None,
    )


def with_observability(tool: str, fn: Callable[[], str], *, intent_id: Optional[str] = None) -> str:
    """
    Run a tool handler with rate limiting, structured logs, timing metrics and the audit trail.
    """
    limited = rate_limit(tool)
    if limited:
        return limited

    metrics = global_container.metrics
    ctx = build_log_context(tool=tool, intent_id=intent_id)
    started = time.time()
    ok = False
    log_event("tool_start", ctx=ctx)
    set_current_context(ctx)
    try:
        out = fn()
        ok = True
        if tool in AUDITED_TOOLS and global_container.audit_log.enabled():
            try:
                _audit(tool, ctx, out)
            except Exception as e:
                # Audit is best-effort; the tool result stands.
                log_event("audit_error", ctx=ctx, data={"error": str(e)}, level="warn")
        return out
    except Exception as e:
        log_event("tool_error", ctx=ctx, data={"error": str(e)}, level="error")
        raise
    finally:
        elapsed_ms = (time.time() - started) * 1000.0
        metrics.record_tool_call(tool, ok=ok, elapsed_ms=elapsed_ms)
        log_event("tool_end", ctx=ctx, data={"elapsed_ms": round(elapsed_ms, 3)})
        set_current_context(None)
