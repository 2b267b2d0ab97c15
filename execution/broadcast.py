"""
Broadcasters hand a pre-signed raw transaction to a chain.

Nothing here signs. `PaperBroadcaster` never touches the network and is the default while
PAPER_MODE is on; `Web3Broadcaster` submits via `eth_sendRawTransaction`.
"""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from typing import Callable, Optional

from web3 import Web3

from common.errors import BroadcastError, classify_exception
from execution.rpc import get_web3
from observability.logging import log_event


class Broadcaster(ABC):
    mode: str = "base"

    @abstractmethod
    def broadcast(self, signed_tx: str, chain: str) -> str:
        """Submit `signed_tx` on `chain` and return the transaction hash as 0x-hex."""


def _require_signed_tx(signed_tx: str) -> str:
    raw = str(signed_tx or "").strip()
    if not raw:
        raise BroadcastError("Missing signedTx: a pre-signed raw transaction is required", {})
    return raw


class PaperBroadcaster(Broadcaster):
    """
    Deterministic stand-in: the "hash" is sha256 over chain + payload, so repeated calls
    with the same payload are reproducible in tests and dry runs.
    """

    mode = "paper"

    def broadcast(self, signed_tx: str, chain: str) -> str:
        raw = _require_signed_tx(signed_tx)
        digest = hashlib.sha256(f"{chain.lower()}:{raw}".encode()).hexdigest()
        tx_hash = "0x" + digest
        log_event("paper_broadcast", data={"chain": chain, "tx_hash": tx_hash})
        return tx_hash


class Web3Broadcaster(Broadcaster):
    mode = "live"

    def __init__(self, web3_factory: Optional[Callable[[str], Web3]] = None) -> None:
        self._web3_factory = web3_factory or get_web3

    def broadcast(self, signed_tx: str, chain: str) -> str:
        raw = _require_signed_tx(signed_tx)
        try:
            w3 = self._web3_factory(chain)
            tx_hash = w3.eth.send_raw_transaction(raw)
        except BroadcastError:
            raise
        except Exception as e:
            err = classify_exception(e)
            log_event(
                "broadcast_failed",
                data={"chain": chain, "kind": err.code, "error": err.message},
                level="error",
            )
            raise BroadcastError(f"Broadcast failed on {chain}: {e}", {"kind": err.code, "chain": chain}) from e
        tx_hex = Web3.to_hex(tx_hash)
        log_event("live_broadcast", data={"chain": chain, "tx_hash": tx_hex})
        return tx_hex
