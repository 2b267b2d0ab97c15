import json
import os
from unittest.mock import patch

from app.tools import guard, portfolio, strategy, system, transaction
from app.tools.registry import TOOLS, dispatch, list_tools

SIGNED = "0x02f8" + "11" * 40


def _load(out):
    return json.loads(out)


def test_set_rules_and_simulate_violation(container):
    res = _load(guard.guard_set_rules("risk", {"maxSlippagePct": 1.0}, name="r1"))
    assert res["success"] is True
    assert res["data"]["ok"] is True
    assert res["data"]["rule"]["name"] == "r1"

    sim = _load(transaction.tx_simulate(txParams={"slippagePct": 2.0}))
    assert sim["success"] is False
    assert sim["error"]["code"] == "GUARD_VIOLATION"
    assert "r1_risk" in sim["error"]["details"]["triggeredGuards"]
    assert "timestamp" in sim["metadata"]


def test_set_rules_generates_name(container):
    res = _load(guard.guard_set_rules("gas", {"maxGasGwei": 40}))
    assert res["data"]["rule"]["name"].startswith("gas_")


def test_set_rules_bad_type(container):
    res = _load(guard.guard_set_rules("volume", {}))
    assert res["error"]["code"] == "SET_RULES_ERROR"


def test_default_rules_listed(container):
    res = _load(guard.guard_list_rules())
    names = {r["name"] for r in res["data"]["rules"]}
    assert names == {"risk", "gas", "route", "deny"}
    assert all(r["type"] == "risk" for r in res["data"]["rules"])
    assert res["data"]["emergencyStop"] is False


def test_toggle_and_remove(container):
    guard.guard_set_rules("risk", {"maxSlippagePct": 0.05}, name="tight")
    assert _load(transaction.tx_simulate(txParams={"asset": "ETH"}))["success"] is False
    guard.guard_toggle_rule("tight", False)
    assert _load(transaction.tx_simulate(txParams={"asset": "ETH"}))["success"] is True
    removed = _load(guard.guard_remove_rule("tight"))
    assert removed["data"]["removed"] is True
    assert _load(guard.guard_remove_rule("tight"))["data"]["removed"] is False


def test_emergency_stop_tool(container):
    ack = _load(guard.guard_set_emergency_stop(True))
    assert ack["data"] == {"ok": True, "emergencyStop": True}
    sim = _load(transaction.tx_simulate(txParams={}))
    assert sim["error"]["details"]["triggeredGuards"] == ["emergency_stop"]
    guard.guard_set_emergency_stop(False)
    assert _load(transaction.tx_simulate(txParams={}))["success"] is True


def test_simulate_success_envelope(container):
    out = _load(transaction.tx_simulate(txParams={"asset": "USDC", "route": "uniswap"}))
    assert out["success"] is True
    assert out["data"]["est"]["slippagePct"] == 0.1
    assert out["metadata"]["requestId"]


def test_execute_flow_paper_mode(container):
    pay = _load(transaction.tx_execute(txParams={"signedTx": SIGNED, "value": "1000"}))
    assert "success" not in pay
    assert pay["asset"] == "USDC"

    proof = {"invoiceId": pay["invoiceId"], "txHash": "0x" + "ef" * 32, "amount": pay["amount"], "asset": "USDC"}
    done = _load(transaction.tx_execute(txParams={"signedTx": SIGNED, "value": "1000"}, paymentProof=proof))
    assert done["success"] is True
    assert done["data"]["status"] == "submitted"
    assert done["data"]["txHash"].startswith("0x")


def test_execute_invalid_proof(container):
    proof = {"invoiceId": "inv_x", "txHash": "0x12", "amount": "0.50", "asset": "USDC"}
    out = _load(transaction.tx_execute(txParams={"signedTx": SIGNED, "value": "1000"}, paymentProof=proof))
    assert out["error"]["code"] == "INVALID_PAYMENT_PROOF"


def test_execute_missing_signed_tx(container):
    out = _load(transaction.tx_execute(txParams={"value": "1"}))
    assert out["error"]["code"] == "EXECUTION_ERROR"
    assert "signedTx" in out["error"]["message"]


def test_strategy_propose_then_simulate(container):
    params = {
        "asset": "ETH",
        "budgetUsd": 100,
        "cadence": "daily",
        "eventRules": {"pauseOnUnlock": False, "maxGasGwei": 20, "boostOnDrawdownPct": 2},
    }
    proposal = _load(strategy.strategy_propose("dca_event_aware", params))
    assert proposal["success"] is True
    intent_id = proposal["data"]["intentId"]
    sim = _load(transaction.tx_simulate(intentId=intent_id))
    assert sim["success"] is True
    assert sim["data"]["route"] == ["uniswap", "1inch", "sushiswap"]
    assert container.intent_store.get(intent_id).state == "simulated"


def test_strategy_errors(container):
    assert _load(strategy.strategy_propose("moonshot", {}))["error"]["code"] == "UNKNOWN_STRATEGY"
    assert _load(strategy.strategy_propose("liquidation_guard", {"protocols": []}))["error"]["code"] == "INVALID_PARAMS"


def test_portfolio_errors_are_wrapped(container):
    with patch.object(container.portfolio_provider, "get_balances", side_effect=Exception("Connection reset")):
        out = _load(portfolio.portfolio_get_balance("0xabc"))
    assert out["error"]["code"] == "BALANCE_FETCH_ERROR"
    assert out["error"]["details"]["kind"] == "network_error"

    with patch.object(container.portfolio_provider, "get_positions", return_value={"positions": []}):
        out = _load(portfolio.portfolio_get_positions("0xabc"))
    assert out["data"] == {"positions": []}


def test_system_health(container):
    out = _load(system.system_health())
    data = out["data"]
    assert data["status"] == "ok"
    assert data["dependencies"]["broadcaster"]["mode"] == "paper"
    assert data["dependencies"]["guardEngine"]["rules"] == 4
    assert "uptime" in data


def test_registry_dispatch(container):
    assert set(TOOLS) == {t["name"] for t in list_tools()}
    unknown = _load(dispatch("swap.parse", {}))
    assert unknown["error"]["code"] == "UNKNOWN_TOOL"
    bad_args = _load(dispatch("guard.removeRule", {"nope": 1}))
    assert bad_args["error"]["code"] == "INVALID_PARAMS"
    ok = _load(dispatch("guard.listRules"))
    assert ok["success"] is True


def test_rate_limit(container):
    with patch.dict(os.environ, {"RATE_LIMIT_GUARD_LISTRULES_PER_MIN": "2"}):
        assert _load(guard.guard_list_rules())["success"]
        assert _load(guard.guard_list_rules())["success"]
        limited = _load(guard.guard_list_rules())
    assert limited["error"]["code"] == "RATE_LIMITED"
    assert container.metrics.counter("rate_limited_total") >= 1


def test_tool_metrics_recorded(container):
    before = container.metrics.counter("tool_guard.listRules_ok_total")
    guard.guard_list_rules()
    assert container.metrics.counter("tool_guard.listRules_ok_total") == before + 1


def test_system_health_reports_guard_hits(container):
    guard.guard_set_rules("risk", {"maxSlippagePct": 0.01}, name="hits")
    transaction.tx_simulate(txParams={"asset": "ETH"})
    data = _load(system.system_health())["data"]
    assert data["dependencies"]["guardEngine"]["guardHits"]["hits_risk"] >= 1


def test_system_health_reports_active_intents(container):
    before = _load(system.system_health())["data"]["dependencies"]["intents"]
    it = container.intent_store.create(strategy="dca_event_aware", plan={"asset": "ETH"})
    container.intent_store.transition(it.intent_id, "simulated")

    intents = _load(system.system_health())["data"]["dependencies"]["intents"]
    assert intents["active"] == before["active"] + 1
    assert intents["byState"]["simulated"] == before["byState"].get("simulated", 0) + 1


def test_system_health_shows_recent_audit_events(container, tmp_path):
    from observability.audit import AuditLog

    with patch.dict(os.environ, {"AUDIT_DB_PATH": str(tmp_path / "health_audit.db")}):
        container.audit_log = AuditLog()
        guard.guard_set_rules("gas", {"maxGasGwei": 40}, name="cap")
        audit = _load(system.system_health())["data"]["dependencies"]["audit"]
    container.audit_log = AuditLog()

    assert audit["enabled"] is True
    assert audit["integrity"] is True
    assert [r["tool"] for r in audit["recent"]] == ["guard.setRules"]
