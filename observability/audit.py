from __future__ import annotations

import hashlib
import json
import os
import sqlite3
import threading
import time
from typing import Any, Dict, List, Optional

_GENESIS_HASH = "INITIAL_HASH"


class AuditLog:
    """
    Optional SQLite audit trail of guard mutations and transaction decisions.

    OFF unless `AUDIT_DB_PATH` (or `TXGUARD_AUDIT_DB_PATH`) is set. Each row carries the hash
    of the previous row so tampering with history is detectable via `verify_integrity()`.

    Only summaries are stored: raw signed transactions and payment proofs stay out of the log.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._conn: Optional[sqlite3.Connection] = None

    def enabled(self) -> bool:
        return bool(self._db_path())

    def append(
        self,
        *,
        ts_ms: int,
        request_id: str,
        tool: str,
        ok: bool,
        error_code: str | None = None,
        intent_id: str | None = None,
        summary: Dict[str, Any] | None = None,
    ) -> None:
        conn = self._get_conn()
        if conn is None:
            return

        payload = self._serialize_payload(summary)

        with self._lock:
            last_row = conn.execute("SELECT hash FROM audit_events ORDER BY id DESC LIMIT 1").fetchone()
            prev_hash = last_row[0] if last_row else _GENESIS_HASH
            current_hash = _chain_hash(prev_hash, ts_ms, request_id, tool, 1 if ok else 0, payload)
            conn.execute(
                """
                INSERT INTO audit_events(
                    ts_ms, request_id, tool, ok, error_code, intent_id, summary_json, hash, previous_hash
                )
                VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    int(ts_ms),
                    str(request_id),
                    str(tool),
                    1 if ok else 0,
                    error_code,
                    intent_id,
                    payload,
                    current_hash,
                    prev_hash,
                ),
            )
            conn.commit()

    def verify_integrity(self) -> bool:
        conn = self._get_conn()
        if conn is None:
            return True

        with self._lock:
            rows = conn.execute(
                "SELECT ts_ms, request_id, tool, ok, summary_json, hash, previous_hash FROM audit_events ORDER BY id ASC"
            ).fetchall()

        last_hash = _GENESIS_HASH
        for ts_ms, req_id, tool, ok, summary, cur_hash, prev_hash in rows:
            if prev_hash != last_hash:
                return False
            if _chain_hash(prev_hash, ts_ms, req_id, tool, ok, summary) != cur_hash:
                return False
            last_hash = cur_hash
        return True

    def recent(self, limit: int = 50) -> List[Dict[str, Any]]:
        conn = self._get_conn()
        if conn is None:
            return []
        with self._lock:
            rows = conn.execute(
                """
                SELECT ts_ms, request_id, tool, ok, error_code, intent_id, summary_json
                FROM audit_events ORDER BY id DESC LIMIT ?
                """,
                (int(limit),),
            ).fetchall()
        out = []
        for ts_ms, req_id, tool, ok, error_code, intent_id, summary in rows:
            out.append(
                {
                    "ts_ms": ts_ms,
                    "request_id": req_id,
                    "tool": tool,
                    "ok": bool(ok),
                    "error_code": error_code,
                    "intent_id": intent_id,
                    "summary": json.loads(summary) if summary else {},
                }
            )
        return out

    def _serialize_payload(self, summary: Dict[str, Any] | None) -> str:
        return json.dumps(summary or {}, sort_keys=True, separators=(",", ":"), default=str)

    def _db_path(self) -> str:
        p = (os.getenv("TXGUARD_AUDIT_DB_PATH") or os.getenv("AUDIT_DB_PATH") or "").strip()
        if not p:
            return ""
        parent = os.path.dirname(p)
        if parent and not os.path.exists(parent):
            try:
                os.makedirs(parent, exist_ok=True)
            except OSError:
                return ""
        return p

    def _get_conn(self) -> Optional[sqlite3.Connection]:
        path = self._db_path()
        if not path:
            return None
        with self._lock:
            if self._conn is None:
                self._conn = sqlite3.connect(path, check_same_thread=False)
                self._conn.execute("PRAGMA journal_mode=WAL;")
                self._conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS audit_events(
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        ts_ms INTEGER NOT NULL,
                        request_id TEXT NOT NULL,
                        tool TEXT NOT NULL,
                        ok INTEGER NOT NULL,
                        error_code TEXT,
                        intent_id TEXT,
                        summary_json TEXT NOT NULL,
                        hash TEXT NOT NULL,
                        previous_hash TEXT NOT NULL
                    )
                    """
                )
                self._conn.commit()
            return self._conn


def _chain_hash(prev_hash: str, ts_ms: Any, request_id: Any, tool: Any, ok: Any, payload: str) -> str:
    data = f"{prev_hash}|{ts_ms}|{request_id}|{tool}|{ok}|{payload}"
    return hashlib.sha256(data.encode()).hexdigest()


def now_ms() -> int:
    return int(time.time() * 1000)
