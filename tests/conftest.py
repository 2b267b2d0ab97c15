import os
import sys

import pytest

# Add root directory to sys.path to allow imports from top-level modules
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

# Set environment variables BEFORE modules are imported
os.environ["PAPER_MODE"] = "true"
os.environ["EMERGENCY_STOP"] = "false"
os.environ["RATE_LIMIT_DEFAULT_PER_MIN"] = "0"
os.environ["RATE_LIMIT_EXECUTION_PER_MIN"] = "0"
os.environ["TXGUARD_LOG_LEVEL"] = "error"
os.environ.pop("AUDIT_DB_PATH", None)
os.environ.pop("TXGUARD_AUDIT_DB_PATH", None)
os.environ.pop("MAX_DAILY_VOLUME_USD", None)
os.environ.pop("MAX_DAILY_TRANSACTIONS", None)
os.environ.pop("GUARD_DEFAULT_RULES_JSON", None)


@pytest.fixture
def container():
    from app.core.config import settings
    from app.core.container import global_container
    from core.guard import GuardRuleStore

    # Fresh guard state per test; the pipeline shares this engine object.
    global_container.guard_engine.store = GuardRuleStore(settings.GUARD_DEFAULT_RULES)
    global_container.daily_counter.reset()
    global_container.rate_limiter.reset()
    return global_container


@pytest.fixture
def guard_engine():
    from core.guard import GuardEngine, GuardEngineConfig

    return GuardEngine(GuardEngineConfig())


@pytest.fixture
def fake_broadcaster():
    from unittest.mock import MagicMock

    from execution.broadcast import Broadcaster

    b = MagicMock(spec=Broadcaster)
    b.mode = "fake"
    b.broadcast.return_value = "0x" + "ab" * 32
    return b


@pytest.fixture
def pipeline(guard_engine, fake_broadcaster):
    from core.payments import PaymentGate, PaymentPolicy
    from core.pipeline import TransactionPipeline
    from execution.intents import IntentStore

    return TransactionPipeline(
        guard_engine=guard_engine,
        payment_gate=PaymentGate(PaymentPolicy()),
        broadcaster=fake_broadcaster,
        intents=IntentStore(ttl_seconds=60),
    )
