import json

from observability.logging import build_log_context, log_event, redact


def test_redact_removes_sensitive_keys():
    inp = {
        "api_key": "abc",
        "nested": {"password": "p", "ok": 1},
        "signedTx": "0x02f8",
        "tokenAddresses": ["0xabc"],
        "safe": "x",
    }
    out = redact(inp)
    assert out["api_key"] == "***REDACTED***"
    assert out["nested"]["password"] == "***REDACTED***"
    assert out["signedTx"] == "***REDACTED***"
    assert out["tokenAddresses"] == ["0xabc"]
    assert out["safe"] == "x"


def test_log_event_emits_single_json_line(capsys, monkeypatch):
    monkeypatch.setenv("TXGUARD_LOG_LEVEL", "debug")
    ctx = build_log_context(tool="tx.execute", intent_id="dca_1")
    log_event("payment_checked", ctx=ctx, data={"privateKey": "k", "amount": "0.50"})
    line = capsys.readouterr().out.strip()
    payload = json.loads(line)
    assert payload["event"] == "payment_checked"
    assert payload["tool"] == "tx.execute"
    assert payload["intent_id"] == "dca_1"
    assert payload["data"] == {"privateKey": "***REDACTED***", "amount": "0.50"}


def test_log_level_threshold(capsys, monkeypatch):
    monkeypatch.setenv("TXGUARD_LOG_LEVEL", "error")
    log_event("chatty", ctx={}, level="info")
    assert capsys.readouterr().out == ""
