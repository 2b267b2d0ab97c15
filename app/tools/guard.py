import time
from typing import Any, Dict, Optional

from fastmcp import FastMCP

from app.core.container import global_container
from app.tools.common import json_err, json_ok, with_observability

SET_RULES_ERROR = "SET_RULES_ERROR"


def guard_set_rules(ruleType: str, params: Dict[str, Any], name: Optional[str] = None) -> str:
    """Create or replace a guard rule (risk, gas, route or deny). The rule is enabled on save."""

    def _run() -> str:
        rule_name = name or f"{ruleType}_{int(time.time() * 1000)}"
        try:
            rule = global_container.guard_engine.set_rule(rule_name, ruleType, params)
        except ValueError as e:
            return json_err(SET_RULES_ERROR, str(e), {"ruleType": ruleType})
        return json_ok({"ok": True, "rule": rule.to_dict()})

    return with_observability("guard.setRules", _run)


def guard_set_emergency_stop(enabled: bool) -> str:
    """[SAFETY] Turn the emergency stop on or off. While on, every simulate/execute is blocked."""

    def _run() -> str:
        global_container.guard_engine.set_emergency_stop(enabled)
        return json_ok({"ok": True, "emergencyStop": bool(enabled)})

    return with_observability("guard.setEmergencyStop", _run)


def guard_list_rules() -> str:
    """List all guard rules and the effective emergency-stop state."""

    def _run() -> str:
        engine = global_container.guard_engine
        rules = [r.to_dict() for r in engine.get_all_rules().values()]
        return json_ok({"rules": rules, "emergencyStop": engine.is_emergency_stop_active()})

    return with_observability("guard.listRules", _run)


def guard_remove_rule(name: str) -> str:
    """Delete a guard rule by name. Removing an unknown rule is not an error."""

    def _run() -> str:
        removed = global_container.guard_engine.remove_rule(name)
        return json_ok({"ok": True, "name": name, "removed": removed})

    return with_observability("guard.removeRule", _run)


def guard_toggle_rule(name: str, enabled: bool) -> str:
    """Enable or disable a guard rule without deleting it."""

    def _run() -> str:
        found = global_container.guard_engine.toggle_rule(name, enabled)
        return json_ok({"ok": True, "name": name, "enabled": bool(enabled), "found": found})

    return with_observability("guard.toggleRule", _run)


def register_guard_tools(mcp: FastMCP):
    mcp.tool(name="guard.setRules")(guard_set_rules)
    mcp.tool(name="guard.setEmergencyStop")(guard_set_emergency_stop)
    mcp.tool(name="guard.listRules")(guard_list_rules)
    mcp.tool(name="guard.removeRule")(guard_remove_rule)
    mcp.tool(name="guard.toggleRule")(guard_toggle_rule)
