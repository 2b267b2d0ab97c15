from unittest.mock import patch

from execution.intents import IntentStore


def test_create_and_get():
    store = IntentStore(ttl_seconds=60)
    it = store.create(strategy="dca_event_aware", plan={"splits": 2}, address="0xabc")
    assert it.intent_id.startswith("dca_event_aware_")
    assert store.get(it.intent_id).plan == {"splits": 2}
    assert store.list_active()[0]["state"] == "proposed"


def test_transitions_follow_lifecycle():
    store = IntentStore()
    it = store.create(strategy="s", plan={})
    assert store.transition(it.intent_id, "executed") is False
    assert store.transition(it.intent_id, "simulated")
    assert store.transition(it.intent_id, "payment_required")
    assert store.transition(it.intent_id, "executed") is False
    assert store.transition(it.intent_id, "executing")
    assert store.transition(it.intent_id, "executing") is False
    assert store.transition(it.intent_id, "executed")
    assert store.transition(it.intent_id, "simulated") is False
    assert it.history == ["proposed", "simulated", "payment_required", "executing", "executed"]


def test_expired_intent_is_unknown():
    store = IntentStore(ttl_seconds=10)
    with patch("execution.intents.time.time", return_value=1000.0):
        it = store.create(strategy="s", plan={})
    with patch("execution.intents.time.time", return_value=1011.0):
        assert store.get(it.intent_id) is None
        assert store.transition(it.intent_id, "simulated") is False
        assert store.list_active() == []


def test_unknown_intent():
    assert IntentStore().transition("nope", "simulated") is False


def test_can_transition_does_not_move_state():
    store = IntentStore()
    it = store.create(strategy="s", plan={})
    assert store.can_transition(it.intent_id, "executing") is False
    store.transition(it.intent_id, "simulated")
    assert store.can_transition(it.intent_id, "executing")
    assert store.get(it.intent_id).state == "simulated"
    assert store.can_transition("nope", "executing") is False


def test_abort_execution_returns_to_simulated():
    store = IntentStore()
    it = store.create(strategy="s", plan={})
    store.transition(it.intent_id, "simulated")
    store.transition(it.intent_id, "executing")
    # a simulate while the broadcast is in flight cannot reopen the intent
    assert store.transition(it.intent_id, "simulated") is False
    store.abort_execution(it.intent_id)
    assert store.get(it.intent_id).state == "simulated"
    # only an executing intent is rolled back
    store.transition(it.intent_id, "executing")
    store.transition(it.intent_id, "executed")
    store.abort_execution(it.intent_id)
    assert store.get(it.intent_id).state == "executed"
