"""
Pipeline outcomes.

Every tool call ends in exactly one of three shapes: a success envelope, a failure envelope, or
a bare payment-required object (no `success` key) that tells the caller to pay and retry.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class Success:
    data: Any
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "data": self.data,
            "metadata": {"timestamp": _timestamp(), "requestId": self.request_id},
        }


@dataclass
class Failure:
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            error["details"] = self.details
        return {"success": False, "error": error, "metadata": {"timestamp": _timestamp()}}


@dataclass
class PaymentRequired:
    invoice_id: str
    amount: str
    asset: str
    receiver: str
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "invoiceId": self.invoice_id,
            "amount": self.amount,
            "asset": self.asset,
            "receiver": self.receiver,
        }
        if self.description:
            out["description"] = self.description
        return out


PipelineResult = Union[Success, Failure, PaymentRequired]
