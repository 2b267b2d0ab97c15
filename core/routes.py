"""
Route text classification.

Routes arrive either as free text ("uniswap-v3 -> curve 3pool") or as a list of hop names.
Classification is a plain substring match against a fixed vocabulary.
"""

from __future__ import annotations

from typing import Any, FrozenSet, Iterable

KNOWN_VENUES: FrozenSet[str] = frozenset({"uniswap", "1inch", "sushiswap"})
KNOWN_PROTOCOLS: FrozenSet[str] = frozenset({"aave", "compound", "curve"})


def _route_parts(route: Any) -> list[str]:
    if route is None:
        return []
    if isinstance(route, str):
        return [route.lower()]
    if isinstance(route, Iterable):
        return [str(x).lower() for x in route if x is not None]
    return [str(route).lower()]


def _classify(route: Any, vocabulary: Iterable[str]) -> FrozenSet[str]:
    parts = _route_parts(route)
    return frozenset(name for name in vocabulary for part in parts if name in part)


def classify_venues(route: Any) -> FrozenSet[str]:
    """Return the known DEX venues mentioned anywhere in `route`."""
    return _classify(route, KNOWN_VENUES)


def classify_protocols(route: Any) -> FrozenSet[str]:
    """Return the known lending/AMM protocols mentioned anywhere in `route`."""
    return _classify(route, KNOWN_PROTOCOLS)


def has_route(route: Any) -> bool:
    return any(p.strip() for p in _route_parts(route))
