"""
Strategy planner.

Turns a named strategy intent plus its parameters into a plan, a list of risk flags and a stored
intent that can then go through tx.simulate / tx.execute.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from common.errors import INVALID_PARAMS, AppError, UnknownStrategyError
from execution.intents import IntentStore
from observability.logging import log_event
from providers.portfolio import PortfolioProvider

DCA_EVENT_AWARE = "dca_event_aware"
LIQUIDATION_GUARD = "liquidation_guard"

SPLIT_SIZE_USD = 50.0
RISKY_PROTOCOLS = {"compound", "cream", "iron-bank"}
MAJOR_ASSETS = {"ETH", "USDC", "USDT"}


class _Params(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class EventRules(_Params):
    pause_on_unlock: bool = Field(alias="pauseOnUnlock")
    max_gas_gwei: float = Field(alias="maxGasGwei", gt=0)
    boost_on_drawdown_pct: float = Field(alias="boostOnDrawdownPct", gt=0)


class DCAEventAwareParams(_Params):
    asset: str = Field(min_length=1)
    budget_usd: float = Field(alias="budgetUsd", gt=0)
    cadence: str
    event_rules: EventRules = Field(alias="eventRules")


class LiquidationGuardParams(_Params):
    protocols: List[str]
    max_health_factor: float = Field(alias="maxHealthFactor", gt=0)
    min_health_factor: float = Field(alias="minHealthFactor", gt=0)
    auto_repay_threshold: float = Field(alias="autoRepayThreshold", gt=0)


def cadence_to_days(cadence: str) -> int:
    c = (cadence or "").strip().lower()
    if "daily" in c:
        return 1
    if "2x/week" in c:
        return 3
    if "bi-weekly" in c or "biweekly" in c:
        return 14
    if "weekly" in c:
        return 7
    if "monthly" in c:
        return 30
    return 7


def select_venues(asset: str) -> List[str]:
    if asset.upper() in MAJOR_ASSETS:
        return ["uniswap", "1inch", "sushiswap"]
    return ["uniswap", "sushiswap", "balancer"]


def dca_risks(p: DCAEventAwareParams) -> List[str]:
    risks = []
    if p.event_rules.max_gas_gwei > 30:
        risks.append("high_gas_prices")
    if p.asset.upper() not in MAJOR_ASSETS:
        risks.append("altcoin_volatility")
    if p.event_rules.pause_on_unlock:
        risks.append("token_unlock_events")
    if p.event_rules.boost_on_drawdown_pct > 5:
        risks.append("aggressive_boost_settings")
    return risks


def liquidation_risks(p: LiquidationGuardParams) -> List[str]:
    risks = []
    if p.min_health_factor < 1.2:
        risks.append("very_low_health_factor")
    if p.max_health_factor > 2.0:
        risks.append("conservative_health_factor")
    if not p.protocols:
        risks.append("no_protocols_configured")
    if len(p.protocols) > 5:
        risks.append("too_many_protocols")
    if p.auto_repay_threshold > 1000:
        risks.append("high_auto_repay_threshold")
    if any(x.lower() in RISKY_PROTOCOLS for x in p.protocols):
        risks.append("risky_protocol_detected")
    return risks


_PROVIDER_RISKS = {"high": "high_risk_detected", "moderate": "moderate_risk", "opportunistic": "opportunistic_strategy"}

_KEYWORDS = {
    DCA_EVENT_AWARE: ("dca", "dollar cost"),
    LIQUIDATION_GUARD: ("liquidation", "guard"),
}


def _matching_group(strategies: List[Dict[str, Any]], keywords) -> Optional[List[Dict[str, Any]]]:
    for group in strategies:
        recs = [r for r in (group.get("response") or []) if isinstance(r, dict)]
        if any(any(k in str(r.get("name", "")).lower() for k in keywords) for r in recs):
            return recs
    return None


def provider_risks(recommendations: List[Dict[str, Any]]) -> List[str]:
    out = []
    for r in recommendations:
        flag = _PROVIDER_RISKS.get(str(r.get("risk", "")).lower())
        if flag:
            out.append(flag)
    return out


def _dedupe(items: List[str]) -> List[str]:
    seen = set()
    out = []
    for x in items:
        if x not in seen:
            seen.add(x)
            out.append(x)
    return out


class StrategyPlanner:
    def __init__(self, provider: PortfolioProvider, intents: IntentStore) -> None:
        self.provider = provider
        self.intents = intents

    def _recommendations(self, intent: str, address: Optional[str]):
        """
        Returns (matched, all). A provider failure degrades to no recommendations.
        """
        if not address:
            return None, []
        try:
            strategies = self.provider.get_strategies(address)
        except Exception as e:
            log_event("strategy_provider_unavailable", data={"intent": intent, "error": str(getattr(e, "message", e))}, level="warn")
            return None, []
        everything = [r for s in strategies for r in (s.get("response") or []) if isinstance(r, dict)]
        return _matching_group(strategies, _KEYWORDS[intent]), everything

    def propose(self, intent: str, params: Dict[str, Any], address: Optional[str] = None) -> Dict[str, Any]:
        if intent not in _KEYWORDS:
            raise UnknownStrategyError(intent)

        model = DCAEventAwareParams if intent == DCA_EVENT_AWARE else LiquidationGuardParams
        try:
            p = model.model_validate(params or {})
        except ValidationError as e:
            errors = [{"loc": ".".join(str(x) for x in err["loc"]), "msg": err["msg"]} for err in e.errors()]
            raise AppError(INVALID_PARAMS, f"Invalid params for {intent}", {"errors": errors}) from None

        matched, everything = self._recommendations(intent, address)
        recommendations = matched if matched is not None else everything

        if intent == DCA_EVENT_AWARE:
            plan = self._dca_plan(p)
            risks = dca_risks(p)
        else:
            plan = self._liquidation_plan(p)
            risks = liquidation_risks(p)
        plan["recommendations"] = recommendations
        risks = _dedupe(risks + provider_risks(matched or []))

        stored = self.intents.create(strategy=intent, plan=plan, address=address)
        log_event("strategy_proposed", data={"intent": intent, "intent_id": stored.intent_id, "risks": risks})
        return {"intentId": stored.intent_id, "plan": plan, "risks": risks, "next": "tx.simulate"}

    def _dca_plan(self, p: DCAEventAwareParams) -> Dict[str, Any]:
        splits = math.ceil(p.budget_usd / SPLIT_SIZE_USD)
        window_days = cadence_to_days(p.cadence)
        start = datetime.now(timezone.utc)
        return {
            "splits": splits,
            "windowDays": window_days,
            "intervalHours": round(window_days * 24 / splits, 4),
            "venue": select_venues(p.asset),
            "maxSlipPct": 0.5,
            "budgetUsd": p.budget_usd,
            "asset": p.asset,
            "eventRules": p.event_rules.model_dump(by_alias=True),
            "execution": {
                "type": "scheduled",
                "startTime": start.isoformat(),
                "endTime": (start + timedelta(days=window_days)).isoformat(),
            },
        }

    def _liquidation_plan(self, p: LiquidationGuardParams) -> Dict[str, Any]:
        return {
            "protocols": list(p.protocols),
            "maxHealthFactor": p.max_health_factor,
            "minHealthFactor": p.min_health_factor,
            "autoRepayThreshold": p.auto_repay_threshold,
            "monitoring": {"interval": 300, "alertThreshold": 1.5, "emergencyThreshold": 1.1},
            "actions": {
                "autoRepay": {"enabled": True, "maxAmountUsd": p.auto_repay_threshold, "tokens": ["USDC", "USDT", "ETH"]},
                "hedging": {"enabled": True, "protocol": "perpetual", "maxHedgeRatio": 0.5},
                "notification": {"enabled": True, "channels": ["email", "telegram", "discord"]},
            },
            "execution": {
                "type": "monitoring",
                "startTime": datetime.now(timezone.utc).isoformat(),
                "duration": "indefinite",
            },
        }
