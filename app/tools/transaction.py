from typing import Any, Dict, Optional

from fastmcp import FastMCP

from app.core.container import global_container
from app.tools.common import json_result, with_observability

# Argument names are camelCase: they are the tool's wire contract.


def tx_simulate(intentId: Optional[str] = None, txParams: Optional[Dict[str, Any]] = None) -> str:
    """Simulate a transaction (fee, slippage, route) and check it against the active guard rules."""
    request = {"intentId": intentId, "txParams": txParams or {}}
    return with_observability(
        "tx.simulate",
        lambda: json_result(global_container.pipeline.simulate(request)),
        intent_id=intentId,
    )


def tx_execute(
    intentId: Optional[str] = None,
    txParams: Optional[Dict[str, Any]] = None,
    paymentProof: Optional[Dict[str, Any]] = None,
) -> str:
    """
    [RISK] Broadcast a pre-signed transaction after guard checks.

    High-value transactions return an x402 invoice (invoiceId, amount, asset, receiver) instead
    of executing; pay it and call again with `paymentProof`.
    """
    request = {"intentId": intentId, "txParams": txParams or {}, "paymentProof": paymentProof}
    return with_observability(
        "tx.execute",
        lambda: json_result(global_container.pipeline.execute(request)),
        intent_id=intentId,
    )


def register_transaction_tools(mcp: FastMCP):
    mcp.tool(name="tx.simulate")(tx_simulate)
    mcp.tool(name="tx.execute")(tx_execute)
