from datetime import datetime, timezone

from fastmcp import FastMCP

from app.core.config import settings
from app.core.container import global_container
from app.tools.common import json_ok, with_observability


def system_health() -> str:
    """Service status, uptime and the state of each dependency."""

    def _run() -> str:
        c = global_container
        engine = c.guard_engine
        emergency = engine.is_emergency_stop_active()
        rules = engine.get_all_rules()
        audit_ok = c.audit_log.verify_integrity()
        active = c.intent_store.list_active()
        by_state: dict = {}
        for it in active:
            by_state[it["state"]] = by_state.get(it["state"], 0) + 1
        dependencies = {
            "guardEngine": {
                "status": "halted" if emergency else "ok",
                "rules": len(rules),
                "enabledRules": sum(1 for r in rules.values() if r.enabled),
                "emergencyStop": emergency,
                "dailyUsage": c.daily_counter.usage(),
                "guardHits": c.metrics.guard_hits(),
            },
            "provider": {
                "status": "configured" if c.portfolio_provider.is_configured() else "missing",
                "url": c.portfolio_provider.api_url,
            },
            "broadcaster": {"mode": c.broadcaster.mode},
            "intents": {"active": len(active), "byState": by_state},
            "audit": {"enabled": c.audit_log.enabled(), "integrity": audit_ok, "recent": c.audit_log.recent(limit=5)},
        }
        degraded = emergency or not audit_ok or not c.portfolio_provider.is_configured()
        return json_ok(
            {
                "status": "degraded" if degraded else "ok",
                "version": settings.VERSION,
                "time": datetime.now(timezone.utc).isoformat(),
                "uptime": c.metrics.uptime_sec(),
                "paperMode": settings.PAPER_MODE,
                "dependencies": dependencies,
                "metrics": c.metrics.snapshot(),
            }
        )

    return with_observability("system.health", _run)


def register_system_tools(mcp: FastMCP):
    mcp.tool(name="system.health")(system_health)
