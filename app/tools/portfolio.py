from fastmcp import FastMCP

from app.core.container import global_container
from app.tools.common import json_err, json_ok, with_observability
from common.errors import classify_exception

BALANCE_FETCH_ERROR = "BALANCE_FETCH_ERROR"
POSITIONS_FETCH_ERROR = "POSITIONS_FETCH_ERROR"


def portfolio_get_balance(address: str) -> str:
    """Get total USD value and token balances for a wallet across supported chains."""

    def _run() -> str:
        try:
            return json_ok(global_container.portfolio_provider.get_balances(address))
        except Exception as e:
            err = classify_exception(e)
            return json_err(BALANCE_FETCH_ERROR, err.message, {"kind": err.code})

    return with_observability("portfolio.getBalance", _run)


def portfolio_get_positions(address: str) -> str:
    """List wallet holdings with a positive USD value, per network."""

    def _run() -> str:
        try:
            return json_ok(global_container.portfolio_provider.get_positions(address))
        except Exception as e:
            err = classify_exception(e)
            return json_err(POSITIONS_FETCH_ERROR, err.message, {"kind": err.code})

    return with_observability("portfolio.getPositions", _run)


def register_portfolio_tools(mcp: FastMCP):
    mcp.tool(name="portfolio.getBalance")(portfolio_get_balance)
    mcp.tool(name="portfolio.getPositions")(portfolio_get_positions)
