from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

import requests

from common.errors import AppError, classify_exception
from observability.logging import log_event

DEFAULT_API_URL = "https://aura.adex.network"


class PortfolioProvider:
    """
    HTTP client for the upstream portfolio / strategy API.

    Endpoints used:
    - GET /api/portfolio/balances?address=...   -> {"portfolio": [{"network": {...}, "tokens": [...]}]}
    - GET /api/portfolio/strategies?address=... -> {"strategies": [{"response": [{"name", "risk", ...}]}]}
    """

    def __init__(self, api_url: Optional[str] = None, api_key: Optional[str] = None, timeout_sec: float = 30.0):
        self.api_url = (api_url or os.getenv("PROVIDER_API_URL") or DEFAULT_API_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else os.getenv("PROVIDER_API_KEY", "")
        self.timeout_sec = float(timeout_sec)

    def is_configured(self) -> bool:
        return bool(self.api_url)

    def _get(self, path: str, address: str) -> Dict[str, Any]:
        url = f"{self.api_url}{path}"
        params = {"address": address}
        if self.api_key:
            params["apiKey"] = self.api_key
        try:
            response = requests.get(url, params=params, timeout=self.timeout_sec)
            response.raise_for_status()
            data = response.json()
        except Exception as e:
            err = classify_exception(e)
            log_event("provider_request_failed", data={"path": path, "kind": err.code, "error": err.message}, level="warn")
            raise AppError(err.code, f"Provider API error: {err.message}", {"path": path}) from e
        if not isinstance(data, dict):
            raise AppError("bad_response", "Provider API returned a non-object body", {"path": path})
        return data

    def get_balances(self, address: str) -> Dict[str, Any]:
        data = self._get("/api/portfolio/balances", address)
        networks = data.get("portfolio") or []
        tokens: List[Dict[str, Any]] = []
        total_usd = 0.0
        for network in networks:
            for token in network.get("tokens") or []:
                usd = float(token.get("balanceUSD") or 0.0)
                total_usd += usd
                tokens.append(
                    {
                        "address": token.get("address"),
                        "symbol": token.get("symbol"),
                        "decimals": int(token.get("decimals") or 18),
                        "balance": str(token.get("balance", "0")),
                        "usd": usd,
                    }
                )
        return {"native": str(total_usd), "tokens": tokens}

    def get_positions(self, address: str) -> Dict[str, Any]:
        data = self._get("/api/portfolio/balances", address)
        positions: List[Dict[str, Any]] = []
        for network in data.get("portfolio") or []:
            network_name = (network.get("network") or {}).get("name")
            for token in network.get("tokens") or []:
                usd = float(token.get("balanceUSD") or 0.0)
                if usd <= 0:
                    continue
                positions.append(
                    {
                        "protocol": "wallet",
                        "asset": token.get("symbol"),
                        "balance": str(token.get("balance", "0")),
                        "balanceUSD": str(usd),
                        "network": network_name,
                    }
                )
        return {"positions": positions}

    def get_strategies(self, address: str) -> List[Dict[str, Any]]:
        """Raw strategy groups; each has a `response` list of recommendations."""
        data = self._get("/api/portfolio/strategies", address)
        return [s for s in (data.get("strategies") or []) if isinstance(s, dict)]
