from __future__ import annotations

import os
from typing import Dict

from web3 import Web3

DEFAULT_RPC_URLS: Dict[str, str] = {
    "ethereum": "https://eth-mainnet.g.alchemy.com/v2/demo",
    "base": "https://mainnet.base.org",
    "arbitrum": "https://arb1.arbitrum.io/rpc",
    "polygon": "https://polygon-rpc.com",
    "optimism": "https://mainnet.optimism.io",
}


def rpc_url_for(chain: str) -> str:
    """
    Resolve the JSON-RPC URL for `chain`.

    `RPC_<CHAIN>` overrides the public defaults; production deployments should always set it.
    """
    chain_key = (chain or "ethereum").strip().lower()
    env_key = f"RPC_{chain_key.upper()}"
    rpc_url = os.getenv(env_key) or DEFAULT_RPC_URLS.get(chain_key)
    if not rpc_url:
        raise ValueError(
            f"Chain {chain} not supported. Set {env_key} or use one of: {', '.join(sorted(DEFAULT_RPC_URLS))}"
        )
    return rpc_url


def get_web3(chain: str, timeout_sec: float = 30.0) -> Web3:
    """Get a Web3 instance for the specified chain."""
    return Web3(Web3.HTTPProvider(rpc_url_for(chain), request_kwargs={"timeout": timeout_sec}))
