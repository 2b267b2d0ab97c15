"""
In-memory store of proposed intents.

An intent is a strategy plan waiting to go through simulate/execute. The store tracks where each
one is in its lifecycle:

    proposed -> simulated | rejected
    simulated -> payment_required | executing | rejected
    payment_required -> executing | rejected
    executing -> executed  (back to simulated via `abort_execution` when the broadcast fails)

Only one caller can move an intent into `executing`, so an intent is broadcast at most once.

Intents expire after a TTL; an expired intent behaves as unknown.
"""

from __future__ import annotations

import secrets
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

PROPOSED = "proposed"
SIMULATED = "simulated"
REJECTED = "rejected"
PAYMENT_REQUIRED = "payment_required"
EXECUTING = "executing"
EXECUTED = "executed"

_TRANSITIONS = {
    PROPOSED: {SIMULATED, REJECTED},
    SIMULATED: {SIMULATED, PAYMENT_REQUIRED, EXECUTING, REJECTED},
    PAYMENT_REQUIRED: {PAYMENT_REQUIRED, EXECUTING, REJECTED},
    EXECUTING: {EXECUTED},
    REJECTED: {SIMULATED, REJECTED},
    EXECUTED: set(),
}


@dataclass
class Intent:
    intent_id: str
    strategy: str
    plan: Dict[str, Any]
    address: Optional[str]
    created_at: float
    expires_at: float
    state: str = PROPOSED
    history: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intentId": self.intent_id,
            "strategy": self.strategy,
            "state": self.state,
            "address": self.address,
            "createdAt": self.created_at,
            "expiresAt": self.expires_at,
        }


class IntentStore:
    def __init__(self, ttl_seconds: int = 3600) -> None:
        self._lock = threading.Lock()
        self._items: Dict[str, Intent] = {}
        self._ttl = int(ttl_seconds)

    def create(self, *, strategy: str, plan: Dict[str, Any], address: Optional[str] = None) -> Intent:
        with self._lock:
            self._purge_expired()
            now = time.time()
            intent_id = f"{strategy}_{int(now * 1000)}_{secrets.token_hex(4)}"
            it = Intent(
                intent_id=intent_id,
                strategy=strategy,
                plan=dict(plan),
                address=address,
                created_at=now,
                expires_at=now + self._ttl,
                history=[PROPOSED],
            )
            self._items[intent_id] = it
            return it

    def get(self, intent_id: str) -> Optional[Intent]:
        with self._lock:
            it = self._items.get(intent_id)
            if it is None:
                return None
            if it.expires_at <= time.time():
                del self._items[intent_id]
                return None
            return it

    def transition(self, intent_id: str, state: str) -> bool:
        """
        Move an intent to `state`. Returns False for unknown intents or disallowed transitions.
        """
        with self._lock:
            it = self._items.get(intent_id)
            if it is None or it.expires_at <= time.time():
                return False
            if state not in _TRANSITIONS.get(it.state, set()):
                return False
            it.state = state
            it.history.append(state)
            return True

    def abort_execution(self, intent_id: str) -> None:
        with self._lock:
            it = self._items.get(intent_id)
            if it is not None and it.state == EXECUTING:
                it.state = SIMULATED
                it.history.append(SIMULATED)

    def can_transition(self, intent_id: str, state: str) -> bool:
        with self._lock:
            it = self._items.get(intent_id)
            if it is None or it.expires_at <= time.time():
                return False
            return state in _TRANSITIONS.get(it.state, set())

    def list_active(self) -> List[Dict[str, Any]]:
        with self._lock:
            self._purge_expired()
            return [it.to_dict() for it in self._items.values()]

    def _purge_expired(self) -> None:
        now = time.time()
        for k in [k for k, v in self._items.items() if v.expires_at <= now]:
            del self._items[k]
