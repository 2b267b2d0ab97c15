from app.core.config import settings
from common.rate_limiter import FixedWindowRateLimiter
from core.daily_limits import DailyUsageCounter
from core.guard import GuardEngine, GuardEngineConfig
from core.payments import PaymentGate, PaymentPolicy
from core.pipeline import TransactionEstimator, TransactionPipeline
from core.strategy import StrategyPlanner
from execution.broadcast import PaperBroadcaster, Web3Broadcaster
from execution.intents import IntentStore
from observability import AuditLog, Metrics
from providers.portfolio import PortfolioProvider


class Container:
    def __init__(self):
        # Observability
        self.metrics = Metrics()
        self.audit_log = AuditLog()
        self.rate_limiter = FixedWindowRateLimiter()

        # Guards
        self.daily_counter = DailyUsageCounter()
        self.guard_engine = GuardEngine(
            GuardEngineConfig(
                default_rules=settings.GUARD_DEFAULT_RULES,
                emergency_stop=settings.EMERGENCY_STOP,
                max_daily_volume_usd=settings.MAX_DAILY_VOLUME_USD,
                max_daily_transactions=settings.MAX_DAILY_TRANSACTIONS,
            ),
            daily_counter=self.daily_counter,
        )

        # Stores
        self.intent_store = IntentStore(ttl_seconds=settings.INTENT_TTL_SECONDS)

        # Upstream & execution
        self.portfolio_provider = PortfolioProvider(
            api_url=settings.PROVIDER_API_URL,
            api_key=settings.PROVIDER_API_KEY,
            timeout_sec=settings.PROVIDER_TIMEOUT_SEC,
        )
        self.broadcaster = PaperBroadcaster() if settings.PAPER_MODE else Web3Broadcaster()
        self.payment_gate = PaymentGate(
            PaymentPolicy(
                receiver=settings.X402_RECEIVER,
                fee_amount=settings.X402_FEE_AMOUNT,
                asset=settings.X402_ASSET,
                value_threshold_wei=settings.X402_VALUE_THRESHOLD,
                verify_onchain=settings.X402_VERIFY_ONCHAIN,
                chain=settings.X402_CHAIN,
                token_address=settings.X402_TOKEN_ADDRESS or None,
                token_decimals=settings.X402_TOKEN_DECIMALS,
            )
        )

        self.pipeline = TransactionPipeline(
            guard_engine=self.guard_engine,
            payment_gate=self.payment_gate,
            broadcaster=self.broadcaster,
            intents=self.intent_store,
            estimator=TransactionEstimator(native_price_usd=settings.NATIVE_PRICE_USD),
            metrics=self.metrics,
        )
        self.strategy_planner = StrategyPlanner(self.portfolio_provider, self.intent_store)

global_container = Container()
