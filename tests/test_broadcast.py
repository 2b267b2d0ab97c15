import os
from unittest.mock import MagicMock, patch

import pytest

from common.errors import BroadcastError
from execution.broadcast import PaperBroadcaster, Web3Broadcaster
from execution.rpc import rpc_url_for


def test_paper_broadcast_is_deterministic():
    b = PaperBroadcaster()
    h1 = b.broadcast("0xf86c01", "ethereum")
    h2 = b.broadcast("0xf86c01", "Ethereum")
    assert h1 == h2
    assert h1.startswith("0x") and len(h1) == 66
    assert b.broadcast("0xf86c01", "base") != h1


def test_missing_signed_tx_rejected():
    with pytest.raises(BroadcastError):
        PaperBroadcaster().broadcast("", "ethereum")


def test_web3_broadcast_sends_raw_transaction():
    w3 = MagicMock()
    w3.eth.send_raw_transaction.return_value = bytes.fromhex("cd" * 32)
    b = Web3Broadcaster(web3_factory=lambda chain: w3)
    assert b.broadcast("0xf86c01", "base") == "0x" + "cd" * 32
    w3.eth.send_raw_transaction.assert_called_once_with("0xf86c01")


def test_web3_broadcast_wraps_rpc_errors():
    w3 = MagicMock()
    w3.eth.send_raw_transaction.side_effect = ValueError("nonce too low")
    b = Web3Broadcaster(web3_factory=lambda chain: w3)
    with pytest.raises(BroadcastError) as exc:
        b.broadcast("0xf86c01", "ethereum")
    assert exc.value.data["kind"] == "tx_rejected"


def test_rpc_url_env_override_and_defaults():
    with patch.dict(os.environ, {"RPC_BASE": "https://my-base.example"}):
        assert rpc_url_for("base") == "https://my-base.example"
    with patch.dict(os.environ, {}, clear=True):
        assert rpc_url_for("arbitrum") == "https://arb1.arbitrum.io/rpc"
        with pytest.raises(ValueError):
            rpc_url_for("solana")
