"""
x402 payment gate.

High-value executions must carry proof that a flat execution fee was paid. Without a proof the
caller gets an invoice back; with one, the proof is checked before anything is broadcast.
"""

from __future__ import annotations

import re
import secrets
import threading
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal
from typing import Any, Callable, Mapping, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from web3 import Web3
from web3.exceptions import TransactionNotFound

from core.results import PaymentRequired
from core.units import parse_wei
from execution.rpc import get_web3
from observability.logging import log_event

_TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")

PAYMENT_DESCRIPTION = "Transaction execution fee"

# keccak("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


class PaymentProof(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    invoice_id: str = Field(alias="invoiceId")
    tx_hash: str = Field(alias="txHash")
    amount: Decimal
    asset: str


@dataclass(frozen=True)
class PaymentPolicy:
    receiver: str = "0x" + "0" * 40
    fee_amount: str = "0.50"
    asset: str = "USDC"
    value_threshold_wei: int = 100
    verify_onchain: bool = False
    chain: str = "base"
    # ERC-20 contract of `asset` on `chain`; when unset any token's Transfer log is accepted.
    token_address: Optional[str] = None
    token_decimals: int = 6

    def fee_units(self) -> int:
        """Fee in the token's smallest unit."""
        return int(Decimal(self.fee_amount).scaleb(self.token_decimals).to_integral_value(rounding=ROUND_CEILING))


def _hex(value: Any) -> str:
    if isinstance(value, str):
        return value.lower() if value.startswith("0x") else "0x" + value.lower()
    return Web3.to_hex(value).lower()


def _topic_address(topic: Any) -> str:
    return "0x" + _hex(topic)[-40:]


class ChainReceiptVerifier:
    """
    Confirms a payment on chain: the receipt must have `status == 1` and carry an ERC-20
    `Transfer` log to the receiver for at least the fee.
    """

    def __init__(self, web3_factory: Optional[Callable[[str], Web3]] = None) -> None:
        self._web3_factory = web3_factory or get_web3

    def paid(
        self,
        tx_hash: str,
        chain: str,
        *,
        receiver: str,
        min_units: int,
        token_address: Optional[str] = None,
    ) -> bool:
        w3 = self._web3_factory(chain)
        try:
            receipt = w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return False
        if int(receipt["status"]) != 1:
            return False

        receiver = receiver.lower()
        token = token_address.lower() if token_address else None
        for entry in receipt.get("logs") or []:
            topics = entry.get("topics") or []
            if len(topics) != 3 or _hex(topics[0]) != TRANSFER_TOPIC:
                continue
            if token and str(entry.get("address", "")).lower() != token:
                continue
            if _topic_address(topics[2]) != receiver:
                continue
            data = _hex(entry.get("data") or "0x")
            amount = int(data, 16) if len(data) > 2 else 0
            if amount >= min_units:
                return True
        return False


class PaymentGate:
    """
    Invoices and proof checks for the x402 flow.

    A proof's payment hash can back only one broadcast: `redeem` marks it used and `release`
    frees it again when the broadcast it was redeemed for fails. The used set is in-memory, so
    it resets on restart.
    """

    def __init__(self, policy: Optional[PaymentPolicy] = None, receipt_verifier: Optional[ChainReceiptVerifier] = None) -> None:
        self.policy = policy or PaymentPolicy()
        self._receipts = receipt_verifier or ChainReceiptVerifier()
        self._lock = threading.Lock()
        self._redeemed: Set[str] = set()

    def requires_payment(self, tx_params: Mapping[str, Any]) -> bool:
        value = parse_wei(tx_params.get("value"))
        return value is not None and value > self.policy.value_threshold_wei

    def issue_invoice(self) -> PaymentRequired:
        invoice = PaymentRequired(
            invoice_id=f"inv_{secrets.token_hex(8)}",
            amount=self.policy.fee_amount,
            asset=self.policy.asset,
            receiver=self.policy.receiver,
            description=PAYMENT_DESCRIPTION,
        )
        log_event("payment_invoice_issued", data={"invoice_id": invoice.invoice_id, "amount": invoice.amount})
        return invoice

    def _parse(self, proof: Any) -> Optional[PaymentProof]:
        try:
            return proof if isinstance(proof, PaymentProof) else PaymentProof.model_validate(proof)
        except ValidationError:
            return None

    def verify(self, proof: Any) -> bool:
        """
        Structural checks first (invoice id, hash format, asset, amount), then the optional
        on-chain check of the payment transfer. RPC failures other than "not found" propagate.

        The invoice id is only checked for presence; invoices are not tracked, so the hash is
        what ties a proof to a single use (see `redeem`).
        """
        p = self._parse(proof)
        if p is None:
            return False

        if not p.invoice_id.strip():
            return False
        if not _TX_HASH_RE.match(p.tx_hash):
            return False
        if p.asset.strip().upper() != self.policy.asset.upper():
            return False
        if p.amount < Decimal(self.policy.fee_amount):
            return False

        if self.policy.verify_onchain:
            ok = self._receipts.paid(
                p.tx_hash,
                self.policy.chain,
                receiver=self.policy.receiver,
                min_units=self.policy.fee_units(),
                token_address=self.policy.token_address,
            )
            log_event("payment_receipt_checked", data={"invoice_id": p.invoice_id, "confirmed": ok})
            return ok
        return True

    def redeem(self, proof: Any) -> bool:
        """Verify `proof` and claim its payment hash. False if invalid or already redeemed."""
        if not self.verify(proof):
            return False
        key = self._parse(proof).tx_hash.lower()
        with self._lock:
            if key in self._redeemed:
                log_event("payment_proof_replayed", data={"tx_hash": key}, level="warn")
                return False
            self._redeemed.add(key)
        return True

    def release(self, proof: Any) -> None:
        p = self._parse(proof)
        if p is None:
            return
        with self._lock:
            self._redeemed.discard(p.tx_hash.lower())
