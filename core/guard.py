"""
Guard rules and their evaluation.

Rules are named, typed policies (risk, gas, route, deny) that gate every simulated and executed
transaction. A process-wide emergency stop overrides all of them.

Evaluation is pure: the engine reads one atomic snapshot of the rule store and never mutates it.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple, Union

from core.daily_limits import DailyUsageCounter
from core.routes import classify_protocols, classify_venues, has_route
from core.units import parse_wei, wei_to_gwei
from observability.logging import log_event

EMERGENCY_STOP_GUARD = "emergency_stop"
EMERGENCY_STOP_WARNING = "Emergency stop is active"


class RuleKind(str, Enum):
    RISK = "risk"
    GAS = "gas"
    ROUTE = "route"
    DENY = "deny"


def _opt_float(raw: Mapping[str, Any], key: str) -> Optional[float]:
    v = raw.get(key)
    if v is None:
        return None
    if isinstance(v, bool):
        raise ValueError(f"{key} must be a number")
    try:
        return float(v)
    except (TypeError, ValueError):
        raise ValueError(f"{key} must be a number") from None


def _opt_set(raw: Mapping[str, Any], key: str) -> Optional[FrozenSet[str]]:
    v = raw.get(key)
    if v is None:
        return None
    if isinstance(v, str):
        v = [v]
    try:
        return frozenset(str(x).strip().lower() for x in v if str(x).strip())
    except TypeError:
        raise ValueError(f"{key} must be a list of strings") from None


def _sorted(values: Optional[FrozenSet[str]]) -> Optional[List[str]]:
    return sorted(values) if values is not None else None


def _drop_none(d: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


@dataclass(frozen=True)
class RiskParams:
    max_slippage_pct: Optional[float] = None
    max_gas_gwei: Optional[float] = None
    max_drawdown_pct: Optional[float] = None
    min_liquidity_usd: Optional[float] = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "RiskParams":
        return cls(
            max_slippage_pct=_opt_float(raw, "maxSlippagePct"),
            max_gas_gwei=_opt_float(raw, "maxGasGwei"),
            max_drawdown_pct=_opt_float(raw, "maxDrawdownPct"),
            min_liquidity_usd=_opt_float(raw, "minLiquidityUsd"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(
            {
                "maxSlippagePct": self.max_slippage_pct,
                "maxGasGwei": self.max_gas_gwei,
                "maxDrawdownPct": self.max_drawdown_pct,
                "minLiquidityUsd": self.min_liquidity_usd,
            }
        )


@dataclass(frozen=True)
class GasParams:
    max_gas_gwei: Optional[float] = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "GasParams":
        return cls(max_gas_gwei=_opt_float(raw, "maxGasGwei"))

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({"maxGasGwei": self.max_gas_gwei})


@dataclass(frozen=True)
class RouteParams:
    allowed_dexes: Optional[FrozenSet[str]] = None
    blocked_tokens: Optional[FrozenSet[str]] = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "RouteParams":
        return cls(
            allowed_dexes=_opt_set(raw, "allowedDexes"),
            blocked_tokens=_opt_set(raw, "blockedTokens"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(
            {
                "allowedDexes": _sorted(self.allowed_dexes),
                "blockedTokens": _sorted(self.blocked_tokens),
            }
        )


@dataclass(frozen=True)
class DenyParams:
    blocked_addresses: Optional[FrozenSet[str]] = None
    blocked_protocols: Optional[FrozenSet[str]] = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "DenyParams":
        return cls(
            blocked_addresses=_opt_set(raw, "blockedAddresses"),
            blocked_protocols=_opt_set(raw, "blockedProtocols"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(
            {
                "blockedAddresses": _sorted(self.blocked_addresses),
                "blockedProtocols": _sorted(self.blocked_protocols),
            }
        )


RuleParams = Union[RiskParams, GasParams, RouteParams, DenyParams]

_PARAMS_BY_KIND = {
    RuleKind.RISK: RiskParams,
    RuleKind.GAS: GasParams,
    RuleKind.ROUTE: RouteParams,
    RuleKind.DENY: DenyParams,
}


def parse_kind(kind: Union[str, RuleKind]) -> RuleKind:
    try:
        return RuleKind(str(kind.value if isinstance(kind, RuleKind) else kind).strip().lower())
    except ValueError:
        raise ValueError(f"Unknown rule type: {kind}") from None


def parse_params(kind: Union[str, RuleKind], params: Union[Mapping[str, Any], RuleParams, None]) -> RuleParams:
    """
    Build the params variant for `kind`. Unknown fields are ignored; set members are lower-cased.
    """
    k = parse_kind(kind)
    cls = _PARAMS_BY_KIND[k]
    if isinstance(params, cls):
        return params
    if params is None:
        return cls()
    if not isinstance(params, Mapping):
        raise ValueError(f"params for a {k.value} rule must be an object")
    return cls.from_mapping(params)


@dataclass(frozen=True)
class GuardRule:
    name: str
    kind: RuleKind
    params: RuleParams
    enabled: bool = True

    @property
    def guard_id(self) -> str:
        return f"{self.name}_{self.kind.value}"

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "type": self.kind.value, "params": self.params.to_dict(), "enabled": self.enabled}


@dataclass(frozen=True)
class GuardEngineConfig:
    default_rules: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    emergency_stop: bool = False
    max_daily_volume_usd: Optional[float] = None
    max_daily_transactions: Optional[int] = None

    def has_daily_limits(self) -> bool:
        return self.max_daily_volume_usd is not None or self.max_daily_transactions is not None


@dataclass
class GuardResult:
    passed: bool
    triggered_guards: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    violations: Dict[str, List[str]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "triggeredGuards": list(self.triggered_guards),
            "warnings": list(self.warnings),
            "violations": {k: list(v) for k, v in self.violations.items()},
        }


class GuardRuleStore:
    """
    Named guard rules plus the runtime emergency-stop flag.

    Writers take the lock and swap in a new read-only mapping; readers grab the current one
    without copying, so an evaluation always sees either the whole old state or the whole new one.
    """

    def __init__(self, default_rules: Optional[Mapping[str, Mapping[str, Any]]] = None) -> None:
        self._lock = threading.Lock()
        rules: Dict[str, GuardRule] = {}
        for name, raw in (default_rules or {}).items():
            rules[str(name)] = GuardRule(name=str(name), kind=RuleKind.RISK, params=parse_params(RuleKind.RISK, raw))
        self._rules: Mapping[str, GuardRule] = MappingProxyType(rules)
        self._emergency_stop = False

    def set_rule(self, name: str, kind: Union[str, RuleKind], params: Union[Mapping[str, Any], RuleParams, None]) -> GuardRule:
        k = parse_kind(kind)
        rule = GuardRule(name=str(name), kind=k, params=parse_params(k, params), enabled=True)
        with self._lock:
            updated = dict(self._rules)
            updated[rule.name] = rule
            self._rules = MappingProxyType(updated)
        return rule

    def remove_rule(self, name: str) -> bool:
        with self._lock:
            if name not in self._rules:
                return False
            updated = dict(self._rules)
            del updated[name]
            self._rules = MappingProxyType(updated)
        return True

    def toggle_rule(self, name: str, enabled: bool) -> bool:
        with self._lock:
            rule = self._rules.get(name)
            if rule is None:
                return False
            updated = dict(self._rules)
            updated[name] = GuardRule(name=rule.name, kind=rule.kind, params=rule.params, enabled=bool(enabled))
            self._rules = MappingProxyType(updated)
        return True

    def get_all_rules(self) -> Dict[str, GuardRule]:
        return dict(self._rules)

    def set_emergency_stop(self, enabled: bool) -> None:
        with self._lock:
            self._emergency_stop = bool(enabled)

    @property
    def emergency_stop(self) -> bool:
        return self._emergency_stop

    def snapshot(self) -> Tuple[Mapping[str, GuardRule], bool]:
        with self._lock:
            return self._rules, self._emergency_stop


_Check = Tuple[str, str]


def _check_risk(params: RiskParams, simulation: Mapping[str, Any], _tx: Mapping[str, Any]) -> List[_Check]:
    out: List[_Check] = []
    slippage = simulation.get("slippagePct")
    if params.max_slippage_pct is not None and slippage is not None:
        if float(slippage) > params.max_slippage_pct:
            out.append(
                ("max_slippage_exceeded", f"Slippage {slippage}% exceeds maximum {params.max_slippage_pct}%")
            )
    # maxDrawdownPct / minLiquidityUsd / maxGasGwei are accepted on risk rules but not evaluated.
    return out


def _check_gas(params: GasParams, _simulation: Mapping[str, Any], tx: Mapping[str, Any]) -> List[_Check]:
    if params.max_gas_gwei is None:
        return []
    raw = tx.get("gasPrice")
    try:
        wei = parse_wei(raw)
    except ValueError:
        return [("invalid_gas_price", f"Gas price {raw!r} could not be parsed")]
    if wei is None:
        return []
    gwei = wei_to_gwei(wei)
    if gwei > params.max_gas_gwei:
        return [("max_gas_price_exceeded", f"Gas price {gwei:g} gwei exceeds maximum {params.max_gas_gwei:g} gwei")]
    return []


def _token_addresses(tx: Mapping[str, Any]) -> List[str]:
    raw = tx.get("tokenAddresses") or []
    if isinstance(raw, str):
        raw = [raw]
    return [str(a) for a in raw]


def _check_route(params: RouteParams, simulation: Mapping[str, Any], tx: Mapping[str, Any]) -> List[_Check]:
    out: List[_Check] = []
    route = simulation.get("route")
    if params.allowed_dexes is not None and has_route(route):
        venues = classify_venues(route)
        if not venues & params.allowed_dexes:
            listed = ", ".join(sorted(venues)) or "none"
            out.append(("unauthorized_dex", f"Route uses unauthorized DEXes: {listed}"))
    if params.blocked_tokens:
        blocked = [a for a in _token_addresses(tx) if a.lower() in params.blocked_tokens]
        if blocked:
            out.append(("blocked_token", f"Transaction involves blocked tokens: {', '.join(blocked)}"))
    return out


def _check_deny(params: DenyParams, simulation: Mapping[str, Any], tx: Mapping[str, Any]) -> List[_Check]:
    out: List[_Check] = []
    to = tx.get("to")
    if params.blocked_addresses and to and str(to).lower() in params.blocked_addresses:
        out.append(("blocked_address", f"Transaction target is blocked: {to}"))
    route = simulation.get("route")
    if params.blocked_protocols and has_route(route):
        hit = classify_protocols(route) & params.blocked_protocols
        if hit:
            out.append(("blocked_protocol", f"Route uses blocked protocols: {', '.join(sorted(hit))}"))
    return out


_CHECKS = {
    RiskParams: _check_risk,
    GasParams: _check_gas,
    RouteParams: _check_route,
    DenyParams: _check_deny,
}


class GuardEngine:
    """
    Evaluates simulations and execution requests against the rule store.
    """

    def __init__(
        self,
        config: Optional[GuardEngineConfig] = None,
        store: Optional[GuardRuleStore] = None,
        daily_counter: Optional[DailyUsageCounter] = None,
    ) -> None:
        self.config = config or GuardEngineConfig()
        self.store = store or GuardRuleStore(self.config.default_rules)
        self.daily_counter = daily_counter or DailyUsageCounter()

    # Rule management

    def set_rule(self, name: str, kind: Union[str, RuleKind], params: Union[Mapping[str, Any], RuleParams, None]) -> GuardRule:
        rule = self.store.set_rule(name, kind, params)
        log_event("guard_rule_set", data={"rule": rule.to_dict()})
        return rule

    def remove_rule(self, name: str) -> bool:
        removed = self.store.remove_rule(name)
        log_event("guard_rule_removed", data={"name": name, "existed": removed})
        return removed

    def toggle_rule(self, name: str, enabled: bool) -> bool:
        found = self.store.toggle_rule(name, enabled)
        log_event("guard_rule_toggled", data={"name": name, "enabled": bool(enabled), "existed": found})
        return found

    def get_all_rules(self) -> Dict[str, GuardRule]:
        return self.store.get_all_rules()

    def set_emergency_stop(self, enabled: bool) -> None:
        self.store.set_emergency_stop(enabled)
        log_event("emergency_stop_set", data={"enabled": bool(enabled)}, level="warn" if enabled else "info")

    def is_emergency_stop_active(self) -> bool:
        return self.store.emergency_stop or self.config.emergency_stop

    # Evaluation

    def _emergency_result(self) -> GuardResult:
        return GuardResult(
            passed=False,
            triggered_guards=[EMERGENCY_STOP_GUARD],
            warnings=[EMERGENCY_STOP_WARNING],
            violations={EMERGENCY_STOP_GUARD: [EMERGENCY_STOP_GUARD]},
        )

    def validate_simulation(self, simulation: Mapping[str, Any], tx_context: Optional[Mapping[str, Any]] = None) -> GuardResult:
        rules, runtime_stop = self.store.snapshot()
        if runtime_stop or self.config.emergency_stop:
            return self._emergency_result()

        tx = tx_context or {}
        result = GuardResult(passed=True)
        for rule in rules.values():
            if not rule.enabled:
                continue
            hits = _CHECKS[type(rule.params)](rule.params, simulation, tx)
            if not hits:
                continue
            result.triggered_guards.append(rule.guard_id)
            result.violations[rule.guard_id] = [reason for reason, _ in hits]
            result.warnings.extend(msg for _, msg in hits)
        result.passed = not result.triggered_guards
        return result

    def _execution_result(self, reasons: List[str], volume: float) -> GuardResult:
        result = GuardResult(passed=not reasons)
        usage = self.daily_counter.usage()
        if "daily_volume_exceeded" in reasons:
            result.triggered_guards.append("daily_volume_limit")
            result.violations["daily_volume_limit"] = ["daily_volume_exceeded"]
            result.warnings.append(
                f"Daily volume {usage['volume_usd'] + volume:g} USD would exceed maximum {self.config.max_daily_volume_usd:g} USD"
            )
        if "daily_transactions_exceeded" in reasons:
            result.triggered_guards.append("daily_transaction_limit")
            result.violations["daily_transaction_limit"] = ["daily_transactions_exceeded"]
            result.warnings.append(
                f"Daily transaction count would exceed maximum {self.config.max_daily_transactions}"
            )
        return result

    def validate_execution(self, request: Mapping[str, Any]) -> GuardResult:
        """Dry run of the execution-time checks; nothing is booked against the daily limits."""
        _, runtime_stop = self.store.snapshot()
        if runtime_stop or self.config.emergency_stop:
            return self._emergency_result()

        if not self.config.has_daily_limits():
            return GuardResult(passed=True)

        volume = _request_volume_usd(request)
        reasons = self.daily_counter.would_exceed(
            volume_usd=volume,
            max_volume_usd=self.config.max_daily_volume_usd,
            max_transactions=self.config.max_daily_transactions,
        )
        return self._execution_result(reasons, volume)

    def reserve_execution(self, request: Mapping[str, Any]) -> GuardResult:
        """
        Same checks as `validate_execution`, but a passing request also books its volume and one
        transaction against today's usage. Call `release_execution` if it is not broadcast.
        """
        _, runtime_stop = self.store.snapshot()
        if runtime_stop or self.config.emergency_stop:
            return self._emergency_result()

        volume = _request_volume_usd(request)
        reasons = self.daily_counter.try_reserve(
            volume_usd=volume,
            max_volume_usd=self.config.max_daily_volume_usd,
            max_transactions=self.config.max_daily_transactions,
        )
        return self._execution_result(reasons, volume)

    def release_execution(self, request: Mapping[str, Any]) -> None:
        self.daily_counter.release(_request_volume_usd(request))


def _request_volume_usd(request: Mapping[str, Any]) -> float:
    tx = request.get("txParams") or {}
    v = tx.get("valueUsd")
    if v is None:
        return 0.0
    try:
        return max(0.0, float(v))
    except (TypeError, ValueError):
        return 0.0
