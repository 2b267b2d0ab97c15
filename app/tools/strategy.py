from typing import Any, Dict, Optional

from fastmcp import FastMCP

from app.core.container import global_container
from app.tools.common import json_err, json_ok, with_observability
from common.errors import INVALID_PARAMS, UNKNOWN_STRATEGY, AppError

PROPOSE_ERROR = "PROPOSE_ERROR"


def strategy_propose(intent: str, params: Dict[str, Any], address: Optional[str] = None) -> str:
    """
    Propose a plan for a strategy intent (`dca_event_aware` or `liquidation_guard`).

    Returns an intentId to pass to tx.simulate, the plan, and any risk flags.
    """

    def _run() -> str:
        try:
            proposal = global_container.strategy_planner.propose(intent, params, address)
        except AppError as e:
            if e.code in {UNKNOWN_STRATEGY, INVALID_PARAMS}:
                return json_err(e.code, e.message, e.data)
            return json_err(PROPOSE_ERROR, e.message, {"kind": e.code})
        except Exception as e:
            return json_err(PROPOSE_ERROR, str(e))
        return json_ok(proposal)

    return with_observability("strategy.propose", _run)


def register_strategy_tools(mcp: FastMCP):
    mcp.tool(name="strategy.propose")(strategy_propose)
