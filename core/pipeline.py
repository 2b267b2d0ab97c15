"""
Two-phase transaction pipeline: simulate, then execute.

simulate: estimate -> guard check on the estimate
execute:  intent state check -> reserve daily usage -> x402 payment gate -> claim intent -> broadcast

Each call returns a PipelineResult (Success / Failure / PaymentRequired); nothing raises past here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from common.errors import (
    EXECUTION_ERROR,
    GUARD_VIOLATION,
    INVALID_PAYMENT_PROOF,
    SIMULATION_ERROR,
    AppError,
    classify_exception,
)
from core.guard import GuardEngine, GuardResult
from core.payments import PaymentGate
from core.results import Failure, PipelineResult, Success
from core.units import WEI_PER_ETH, parse_wei
from execution.broadcast import Broadcaster
from execution.intents import EXECUTED, EXECUTING, PAYMENT_REQUIRED, REJECTED, SIMULATED, IntentStore
from observability.logging import log_event
from observability.metrics import Metrics

REFERENCE_PRICES_USD = {
    "ETH": 2000.0,
    "WETH": 2000.0,
    "USDC": 1.0,
    "USDT": 1.0,
    "DAI": 1.0,
    "BTC": 45000.0,
    "ADA": 0.5,
    "DOT": 7.0,
}

DEFAULT_GAS_PRICE_WEI = 20 * 10**9
DEFAULT_GAS_LIMIT = 150_000
DEFAULT_CHAIN = "ethereum"
INTENT_STATE_GUARD = "intent_state"


def estimate_slippage_pct(asset: Optional[str]) -> float:
    a = (asset or "").strip().upper()
    if a in {"ETH", "WETH"}:
        return 0.2
    if a in {"USDC", "USDT", "DAI"}:
        return 0.1
    return 0.3


@dataclass
class SimulationEstimate:
    fee_usd: float
    slippage_pct: float
    avg_price: Optional[float] = None
    route: Any = None
    guards_triggered: List[str] = field(default_factory=list)

    def for_guards(self) -> Dict[str, Any]:
        return {"feeUsd": self.fee_usd, "slippagePct": self.slippage_pct, "avgPrice": self.avg_price, "route": self.route}

    def to_dict(self) -> Dict[str, Any]:
        est: Dict[str, Any] = {"feeUsd": self.fee_usd, "slippagePct": self.slippage_pct}
        if self.avg_price is not None:
            est["avgPrice"] = self.avg_price
        out: Dict[str, Any] = {"ok": True, "est": est, "guardsTriggered": list(self.guards_triggered)}
        if self.route is not None:
            out["route"] = self.route
        return out


class TransactionEstimator:
    """
    Offline estimate: fee from gas price x gas limit at a fixed native price, slippage by asset class.
    """

    def __init__(self, native_price_usd: float = 2000.0) -> None:
        self.native_price_usd = float(native_price_usd)

    def estimate(self, tx_params: Mapping[str, Any]) -> SimulationEstimate:
        gas_price = parse_wei(tx_params.get("gasPrice"))
        gas_limit = parse_wei(tx_params.get("gasLimit") or tx_params.get("gas"))
        gas_price = DEFAULT_GAS_PRICE_WEI if gas_price is None else gas_price
        gas_limit = DEFAULT_GAS_LIMIT if gas_limit is None else gas_limit
        fee_usd = round(gas_price * gas_limit / WEI_PER_ETH * self.native_price_usd, 6)

        asset = tx_params.get("asset")
        if tx_params.get("slippagePct") is not None:
            slippage = float(tx_params["slippagePct"])
        else:
            slippage = estimate_slippage_pct(asset)

        avg_price = REFERENCE_PRICES_USD.get(str(asset or "").upper()) if asset else None
        return SimulationEstimate(fee_usd=fee_usd, slippage_pct=slippage, avg_price=avg_price, route=tx_params.get("route"))


def _plan_defaults(plan: Mapping[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if plan.get("asset"):
        out["asset"] = plan["asset"]
    if plan.get("venue"):
        out["route"] = list(plan["venue"])
    budget, splits = plan.get("budgetUsd"), plan.get("splits")
    if budget and splits:
        out["valueUsd"] = round(float(budget) / int(splits), 2)
    return out


def _route_label(route: Any) -> str:
    if route is None or route == "":
        return "direct"
    if isinstance(route, str):
        return route
    return " > ".join(str(x) for x in route)


def _guard_details(result: GuardResult) -> Dict[str, Any]:
    return {"triggeredGuards": result.triggered_guards, "warnings": result.warnings, "violations": result.violations}


class TransactionPipeline:
    def __init__(
        self,
        *,
        guard_engine: GuardEngine,
        payment_gate: PaymentGate,
        broadcaster: Broadcaster,
        intents: Optional[IntentStore] = None,
        estimator: Optional[TransactionEstimator] = None,
        metrics: Optional[Metrics] = None,
    ) -> None:
        self.guard_engine = guard_engine
        self.payment_gate = payment_gate
        self.broadcaster = broadcaster
        self.intents = intents or IntentStore()
        self.estimator = estimator or TransactionEstimator()
        self.metrics = metrics or Metrics()

    def _resolve_tx_params(self, request: Mapping[str, Any]) -> Dict[str, Any]:
        tx_params: Dict[str, Any] = {}
        intent_id = request.get("intentId")
        if intent_id:
            it = self.intents.get(str(intent_id))
            if it is not None:
                tx_params.update(_plan_defaults(it.plan))
        tx_params.update(request.get("txParams") or {})
        return tx_params

    def _transition(self, request: Mapping[str, Any], state: str) -> None:
        intent_id = request.get("intentId")
        if intent_id:
            self.intents.transition(str(intent_id), state)

    def _reject(self, request: Mapping[str, Any], result: GuardResult, message: str) -> Failure:
        self._transition(request, REJECTED)
        self.metrics.record_guard_violation(result.triggered_guards)
        log_event(
            "guard_violation",
            data={"triggered_guards": result.triggered_guards, "warnings": result.warnings},
            level="warn",
        )
        return Failure(GUARD_VIOLATION, f"{message}: {', '.join(result.triggered_guards)}", _guard_details(result))

    def simulate(self, request: Mapping[str, Any]) -> PipelineResult:
        try:
            tx_params = self._resolve_tx_params(request)
            estimate = self.estimator.estimate(tx_params)
            result = self.guard_engine.validate_simulation(estimate.for_guards(), tx_params)
            estimate.guards_triggered = list(result.triggered_guards)
        except Exception as e:
            log_event("simulation_error", data={"error": str(e)}, level="error")
            return Failure(SIMULATION_ERROR, str(e))

        if not result.passed:
            return self._reject(request, result, "Simulation blocked by guards")

        self._transition(request, SIMULATED)
        self.metrics.inc("simulations_passed_total")
        return Success(estimate.to_dict())

    def _intent_state_failure(self, intent_id: str, state: str) -> Failure:
        result = GuardResult(
            passed=False,
            triggered_guards=[INTENT_STATE_GUARD],
            warnings=[f"Intent {intent_id} is {state}; only simulated intents can be executed"],
            violations={INTENT_STATE_GUARD: ["invalid_intent_state"]},
        )
        self.metrics.record_guard_violation(result.triggered_guards)
        log_event("intent_state_blocked", data={"intent_id": intent_id, "state": state}, level="warn")
        details = _guard_details(result)
        details["intentState"] = state
        return Failure(GUARD_VIOLATION, f"Transaction blocked by guards: {INTENT_STATE_GUARD}", details)

    def execute(self, request: Mapping[str, Any]) -> PipelineResult:
        intent_id = str(request.get("intentId") or "")
        intent = self.intents.get(intent_id) if intent_id else None
        if intent is not None and not self.intents.can_transition(intent_id, EXECUTING):
            return self._intent_state_failure(intent_id, intent.state)

        reserved = redeemed = claimed = False
        exec_request: Dict[str, Any] = {}
        proof = request.get("paymentProof")
        try:
            tx_params = self._resolve_tx_params(request)
            exec_request = {"intentId": request.get("intentId"), "txParams": tx_params, "paymentProof": proof}
            result = self.guard_engine.reserve_execution(exec_request)
            if not result.passed:
                return self._reject(request, result, "Transaction blocked by guards")
            reserved = True

            if self.payment_gate.requires_payment(tx_params) and not proof:
                self.guard_engine.release_execution(exec_request)
                reserved = False
                self._transition(request, PAYMENT_REQUIRED)
                self.metrics.inc("payments_required_total")
                return self.payment_gate.issue_invoice()

            if proof:
                if not self.payment_gate.redeem(proof):
                    self.guard_engine.release_execution(exec_request)
                    reserved = False
                    self.metrics.inc("payment_proofs_rejected_total")
                    log_event("payment_proof_rejected", level="warn")
                    return Failure(INVALID_PAYMENT_PROOF, "Payment proof verification failed")
                redeemed = True

            if intent is not None:
                if not self.intents.transition(intent_id, EXECUTING):
                    # another call claimed this intent after the state check above
                    current = self.intents.get(intent_id)
                    self._release(exec_request, proof if redeemed else None)
                    reserved = redeemed = False
                    return self._intent_state_failure(intent_id, current.state if current else "expired")
                claimed = True

            chain = str(tx_params.get("chain") or DEFAULT_CHAIN)
            tx_hash = self.broadcaster.broadcast(tx_params.get("signedTx"), chain)
        except Exception as e:
            if reserved:
                self._release(exec_request, proof if redeemed else None)
            if claimed:
                self.intents.abort_execution(intent_id)
            err = classify_exception(e)
            details = {"kind": err.code}
            if isinstance(e, AppError) and e.data:
                details.update(e.data)
            log_event("execution_error", data={"error": err.message, "kind": err.code}, level="error")
            return Failure(EXECUTION_ERROR, err.message, details)

        self._transition(request, EXECUTED)
        self.metrics.inc("executions_submitted_total")
        return Success(
            {
                "status": "submitted",
                "txHash": tx_hash,
                "route": _route_label(tx_params.get("route")),
                "notes": f"Submitted on {chain} via {self.broadcaster.mode} broadcaster",
            }
        )

    def _release(self, exec_request: Mapping[str, Any], proof: Any) -> None:
        self.guard_engine.release_execution(exec_request)
        if proof:
            self.payment_gate.release(proof)
