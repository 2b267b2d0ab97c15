import json
import os
import sqlite3
from unittest.mock import patch

import pytest

from observability.audit import AuditLog


@pytest.fixture
def audit_db(tmp_path):
    db_path = str(tmp_path / "audit" / "test_audit.db")
    with patch.dict(os.environ, {"AUDIT_DB_PATH": db_path}):
        log = AuditLog()
        yield log


def test_audit_logs_and_verifies(audit_db):
    assert audit_db.enabled()

    audit_db.append(ts_ms=1000, request_id="req1", tool="guard.setRules", ok=True, summary={"rule": {"name": "r1"}})
    audit_db.append(ts_ms=2000, request_id="req2", tool="tx.execute", ok=False, error_code="GUARD_VIOLATION")
    audit_db.append(ts_ms=3000, request_id="req3", tool="tx.execute", ok=False, error_code="PAYMENT_REQUIRED")

    assert audit_db.verify_integrity()

    # Manually tamper with DB
    conn = sqlite3.connect(audit_db._db_path())
    conn.execute("UPDATE audit_events SET tool='tampered' WHERE request_id='req1'")
    conn.commit()
    conn.close()

    assert not audit_db.verify_integrity()


def test_recent_newest_first(audit_db):
    audit_db.append(ts_ms=1, request_id="a", tool="tx.simulate", ok=True, intent_id="dca_1")
    audit_db.append(ts_ms=2, request_id="b", tool="tx.execute", ok=True, summary={"status": "submitted"})
    rows = audit_db.recent(limit=10)
    assert [r["request_id"] for r in rows] == ["b", "a"]
    assert rows[0]["summary"] == {"status": "submitted"}
    assert rows[1]["intent_id"] == "dca_1"


def test_audit_disabled_if_no_path():
    with patch.dict(os.environ, {}, clear=True):
        log = AuditLog()
        assert not log.enabled()
        log.append(ts_ms=1, request_id="r", tool="t", ok=True)  # no-op
        assert log.recent() == []
        assert log.verify_integrity()


def test_tool_calls_are_audited(container, tmp_path):
    from app.tools import guard, transaction

    db_path = str(tmp_path / "tool_audit.db")
    with patch.dict(os.environ, {"AUDIT_DB_PATH": db_path}):
        container.audit_log = AuditLog()
        guard.guard_set_rules("risk", {"maxSlippagePct": 0.01}, name="tight")
        transaction.tx_simulate(txParams={"asset": "ETH", "signedTx": "0xsecret"})
        guard.guard_list_rules()
        rows = container.audit_log.recent()
        assert container.audit_log.verify_integrity()
    container.audit_log = AuditLog()

    # listRules is read-only and not audited
    assert [r["tool"] for r in rows] == ["tx.simulate", "guard.setRules"]
    assert rows[0]["error_code"] == "GUARD_VIOLATION"
    assert "tight_risk" in rows[0]["summary"]["triggeredGuards"]
    assert "0xsecret" not in json.dumps(rows)
