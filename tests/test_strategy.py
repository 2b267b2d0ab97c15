from unittest.mock import MagicMock

import pytest

from common.errors import AppError, UnknownStrategyError
from core.strategy import StrategyPlanner, cadence_to_days
from execution.intents import IntentStore

DCA_PARAMS = {
    "asset": "ETH",
    "budgetUsd": 500,
    "cadence": "weekly",
    "eventRules": {"pauseOnUnlock": False, "maxGasGwei": 25, "boostOnDrawdownPct": 3},
}

LIQ_PARAMS = {
    "protocols": ["aave", "Compound"],
    "maxHealthFactor": 2.5,
    "minHealthFactor": 1.1,
    "autoRepayThreshold": 5000,
}


@pytest.fixture
def provider():
    p = MagicMock()
    p.get_strategies.return_value = [
        {"response": [{"name": "Yield farming", "risk": "opportunistic"}]},
        {"response": [{"name": "ETH DCA ladder", "risk": "moderate"}, {"name": "Stable DCA", "risk": "high"}]},
    ]
    return p


@pytest.fixture
def planner(provider):
    return StrategyPlanner(provider, IntentStore(ttl_seconds=60))


@pytest.mark.parametrize(
    "cadence,days",
    [("daily", 1), ("2x/week", 3), ("weekly", 7), ("bi-weekly", 14), ("monthly", 30), ("whenever", 7)],
)
def test_cadence_to_days(cadence, days):
    assert cadence_to_days(cadence) == days


def test_dca_plan(planner):
    out = planner.propose("dca_event_aware", DCA_PARAMS, "0xabc")
    plan = out["plan"]
    assert out["next"] == "tx.simulate"
    assert plan["splits"] == 10
    assert plan["windowDays"] == 7
    assert plan["intervalHours"] == pytest.approx(16.8)
    assert plan["venue"] == ["uniswap", "1inch", "sushiswap"]
    assert plan["maxSlipPct"] == 0.5
    assert [r["name"] for r in plan["recommendations"]] == ["ETH DCA ladder", "Stable DCA"]
    assert out["risks"] == ["moderate_risk", "high_risk_detected"]
    assert planner.intents.get(out["intentId"]).state == "proposed"


def test_dca_risk_heuristics(planner):
    params = dict(DCA_PARAMS, asset="PEPE", eventRules={"pauseOnUnlock": True, "maxGasGwei": 80, "boostOnDrawdownPct": 10})
    risks = planner.propose("dca_event_aware", params)["risks"]
    assert risks == ["high_gas_prices", "altcoin_volatility", "token_unlock_events", "aggressive_boost_settings"]


def test_no_address_skips_provider(planner, provider):
    out = planner.propose("dca_event_aware", DCA_PARAMS)
    assert out["plan"]["recommendations"] == []
    provider.get_strategies.assert_not_called()


def test_provider_failure_degrades(planner, provider):
    provider.get_strategies.side_effect = AppError("timeout", "Provider API error: timed out", {})
    out = planner.propose("dca_event_aware", DCA_PARAMS, "0xabc")
    assert out["plan"]["recommendations"] == []
    assert out["risks"] == []


def test_liquidation_plan(planner):
    out = planner.propose("liquidation_guard", LIQ_PARAMS, "0xabc")
    plan = out["plan"]
    assert plan["monitoring"]["interval"] == 300
    assert plan["actions"]["autoRepay"]["maxAmountUsd"] == 5000
    assert out["risks"] == [
        "very_low_health_factor",
        "conservative_health_factor",
        "high_auto_repay_threshold",
        "risky_protocol_detected",
    ]
    # no liquidation-flavoured recommendation: fall back to all of them, no provider risks
    assert len(plan["recommendations"]) == 3


def test_liquidation_protocol_count_risks(planner):
    none = planner.propose("liquidation_guard", dict(LIQ_PARAMS, protocols=[]))["risks"]
    assert "no_protocols_configured" in none
    many = planner.propose("liquidation_guard", dict(LIQ_PARAMS, protocols=["a", "b", "c", "d", "e", "f"]))["risks"]
    assert "too_many_protocols" in many


def test_unknown_strategy(planner):
    with pytest.raises(UnknownStrategyError) as exc:
        planner.propose("yolo", {})
    assert exc.value.code == "UNKNOWN_STRATEGY"


def test_invalid_params(planner):
    with pytest.raises(AppError) as exc:
        planner.propose("dca_event_aware", dict(DCA_PARAMS, budgetUsd=-1))
    assert exc.value.code == "INVALID_PARAMS"
    assert any(e["loc"] == "budgetUsd" for e in exc.value.data["errors"])
