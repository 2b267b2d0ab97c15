from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

GUARD_VIOLATION = "GUARD_VIOLATION"
INVALID_PAYMENT_PROOF = "INVALID_PAYMENT_PROOF"
SIMULATION_ERROR = "SIMULATION_ERROR"
EXECUTION_ERROR = "EXECUTION_ERROR"
UNKNOWN_TOOL = "UNKNOWN_TOOL"
UNKNOWN_STRATEGY = "UNKNOWN_STRATEGY"
INVALID_PARAMS = "INVALID_PARAMS"


@dataclass
class AppError(Exception):
    code: str
    message: str
    data: Dict[str, Any]


class UnknownStrategyError(AppError):
    def __init__(self, intent: str):
        super().__init__(UNKNOWN_STRATEGY, f"Unknown strategy intent: {intent}", {"intent": intent})


class BroadcastError(AppError):
    def __init__(self, message: str, data: Dict[str, Any] = None):
        super().__init__("broadcast_failed", message, data or {})


def classify_exception(e: Exception) -> AppError:
    """
    Map provider / RPC / network failures into stable error kinds.
    """
    if isinstance(e, AppError):
        return e

    err_str = str(e).lower()

    if "rate limit" in err_str or "429" in err_str:
        return AppError("rate_limited", str(e), {})
    if "timeout" in err_str or "timed out" in err_str:
        return AppError("timeout", str(e), {})
    if "api key" in err_str or "unauthorized" in err_str or "forbidden" in err_str:
        return AppError("auth_error", str(e), {})
    if "nonce too low" in err_str or "already known" in err_str:
        return AppError("tx_rejected", str(e), {})
    if "network" in err_str or "connection" in err_str:
        return AppError("network_error", str(e), {})

    return AppError("unknown_error", str(e), {})
