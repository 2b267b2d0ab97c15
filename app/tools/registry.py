"""
Tool name -> handler table shared by the MCP server and the HTTP dispatcher.
"""

import inspect
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, Tuple, get_type_hints

from pydantic import TypeAdapter, ValidationError

from app.tools.common import json_err
from app.tools.guard import (
    guard_list_rules,
    guard_remove_rule,
    guard_set_emergency_stop,
    guard_set_rules,
    guard_toggle_rule,
)
from app.tools.portfolio import portfolio_get_balance, portfolio_get_positions
from app.tools.strategy import strategy_propose
from app.tools.system import system_health
from app.tools.transaction import tx_execute, tx_simulate
from common.errors import INVALID_PARAMS, UNKNOWN_TOOL

TOOLS: Dict[str, Callable[..., str]] = {
    "tx.simulate": tx_simulate,
    "tx.execute": tx_execute,
    "guard.setRules": guard_set_rules,
    "guard.setEmergencyStop": guard_set_emergency_stop,
    "guard.listRules": guard_list_rules,
    "guard.removeRule": guard_remove_rule,
    "guard.toggleRule": guard_toggle_rule,
    "strategy.propose": strategy_propose,
    "portfolio.getBalance": portfolio_get_balance,
    "portfolio.getPositions": portfolio_get_positions,
    "system.health": system_health,
}


def list_tools() -> List[Dict[str, Any]]:
    out = []
    for name, fn in TOOLS.items():
        params = list(inspect.signature(fn).parameters.values())
        out.append(
            {
                "name": name,
                "description": inspect.getdoc(fn) or "",
                "params": [p.name for p in params],
                "required": [p.name for p in params if p.default is inspect.Parameter.empty],
            }
        )
    return out


@lru_cache(maxsize=None)
def _adapters(fn: Callable[..., str]) -> Dict[str, TypeAdapter]:
    return {name: TypeAdapter(hint) for name, hint in get_type_hints(fn).items() if name != "return"}


def _validate_args(fn: Callable[..., str], args: Dict[str, Any]) -> Tuple[Dict[str, Any], List[Dict[str, str]]]:
    """
    Bind `args` to the handler and coerce each value to its annotation, the same way the MCP
    transport does (e.g. "false" -> False for a bool). Raises TypeError on unknown or missing names.
    """
    bound = inspect.signature(fn).bind(**args)
    adapters = _adapters(fn)
    values: Dict[str, Any] = {}
    errors: List[Dict[str, str]] = []
    for name, value in bound.arguments.items():
        adapter = adapters.get(name)
        if adapter is None:
            values[name] = value
            continue
        try:
            values[name] = adapter.validate_python(value)
        except ValidationError as e:
            for err in e.errors():
                loc = ".".join(str(p) for p in (name, *err["loc"]))
                errors.append({"loc": loc, "msg": err["msg"]})
    return values, errors


def dispatch(name: str, args: Optional[Dict[str, Any]] = None) -> str:
    fn = TOOLS.get(name)
    if fn is None:
        return json_err(UNKNOWN_TOOL, f"Unknown tool: {name}", {"tool": name})
    try:
        values, errors = _validate_args(fn, args or {})
    except TypeError as e:
        return json_err(INVALID_PARAMS, f"Invalid arguments for {name}: {e}", {"tool": name})
    if errors:
        return json_err(INVALID_PARAMS, f"Invalid arguments for {name}", {"tool": name, "errors": errors})
    return fn(**values)
