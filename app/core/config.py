import json
import os
from typing import Any, Dict, Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_GUARD_RULES: Dict[str, Dict[str, Any]] = {
    "risk": {"maxSlippagePct": 1.0, "maxGasGwei": 50, "minLiquidityUsd": 10000},
    "gas": {"maxGasGwei": 100},
    "route": {"allowedDexes": ["uniswap", "1inch", "sushiswap"], "blockedTokens": []},
    "deny": {"blockedAddresses": [], "blockedProtocols": []},
}


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() == "true"


def _env_opt_float(name: str) -> Optional[float]:
    raw = (os.getenv(name) or "").strip()
    return float(raw) if raw else None


def _env_opt_int(name: str) -> Optional[int]:
    raw = (os.getenv(name) or "").strip()
    return int(raw) if raw else None


def _default_rules() -> Dict[str, Dict[str, Any]]:
    raw = (os.getenv("GUARD_DEFAULT_RULES_JSON") or "").strip()
    if not raw:
        return DEFAULT_GUARD_RULES
    rules = json.loads(raw)
    if not isinstance(rules, dict):
        raise ValueError("GUARD_DEFAULT_RULES_JSON must be a JSON object of rule name -> params")
    return rules


class Settings:
    PROJECT_NAME: str = "TxGuard-MCP"
    VERSION: str = "0.1.0"

    PAPER_MODE: bool = _env_bool("PAPER_MODE", "true")

    # Guards
    EMERGENCY_STOP: bool = _env_bool("EMERGENCY_STOP", "false")
    MAX_DAILY_VOLUME_USD: Optional[float] = _env_opt_float("MAX_DAILY_VOLUME_USD")
    MAX_DAILY_TRANSACTIONS: Optional[int] = _env_opt_int("MAX_DAILY_TRANSACTIONS")
    GUARD_DEFAULT_RULES: Dict[str, Dict[str, Any]] = _default_rules()

    # x402 payment gate
    X402_RECEIVER: str = os.getenv("X402_RECEIVER", "0x" + "0" * 40)
    X402_FEE_AMOUNT: str = os.getenv("X402_FEE_AMOUNT", "0.50")
    X402_ASSET: str = os.getenv("X402_ASSET", "USDC")
    X402_VALUE_THRESHOLD: int = int(os.getenv("X402_VALUE_THRESHOLD", "100"))  # wei
    X402_VERIFY_ONCHAIN: bool = _env_bool("X402_VERIFY_ONCHAIN", "false")
    X402_CHAIN: str = os.getenv("X402_CHAIN", "base").strip().lower()
    X402_TOKEN_ADDRESS: str = os.getenv("X402_TOKEN_ADDRESS", "").strip()
    X402_TOKEN_DECIMALS: int = int(os.getenv("X402_TOKEN_DECIMALS", "6"))

    # Estimation
    NATIVE_PRICE_USD: float = float(os.getenv("NATIVE_PRICE_USD", "2000"))

    # Upstream provider
    PROVIDER_API_URL: str = os.getenv("PROVIDER_API_URL", "https://aura.adex.network")
    PROVIDER_API_KEY: str = os.getenv("PROVIDER_API_KEY", "")
    PROVIDER_TIMEOUT_SEC: float = float(os.getenv("PROVIDER_TIMEOUT_SEC", "30"))

    INTENT_TTL_SECONDS: int = int(os.getenv("INTENT_TTL_SECONDS", "3600"))

settings = Settings()
