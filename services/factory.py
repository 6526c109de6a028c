"""
Wiring of the categorization pipeline from settings.
"""
from typing import Optional

from clients.ledger import LedgerClient, SlidingWindowLimiter
from clients.notifier import TelegramNotifier
from core.config import Settings, get_settings
from core.db import ConfidenceStore
from core.usage import CLASSIFIER, LEDGER, JsonUsageStore, ProviderLimits, UsageTracker
from llm.classify import Classifier
from llm.client import ClassifierClient
from services.categorization_service import CategorizationService
from services.decider import CategorizationDecider


def build_usage_tracker(settings: Settings) -> UsageTracker:
    limits = {
        CLASSIFIER: ProviderLimits(
            daily=settings.classifier_daily_limit,
            monthly=settings.classifier_monthly_limit,
            cost_limit=settings.classifier_cost_limit,
        ),
        LEDGER: ProviderLimits(
            daily=settings.ledger_daily_limit,
            monthly=settings.ledger_monthly_limit,
        ),
    }
    return UsageTracker(JsonUsageStore(settings.usage_file), limits)


def build_store(settings: Settings) -> ConfidenceStore:
    settings.ensure_directories()
    return ConfidenceStore(settings.database_path)


def build_service(settings: Optional[Settings] = None) -> CategorizationService:
    """
    Build a fully wired CategorizationService.

    Raises:
        ConfigurationError: If ledger or classifier credentials are missing
    """
    settings = settings or get_settings()
    tracker = build_usage_tracker(settings)
    store = build_store(settings)

    ledger = LedgerClient(
        api_key=settings.ledger_api_key,
        budget_id=settings.ledger_budget_id,
        base_url=settings.ledger_base_url,
        limiter=SlidingWindowLimiter(max_requests=settings.ledger_hourly_limit),
        timeout=settings.ledger_timeout,
        usage_tracker=tracker,
        max_attempts=settings.max_attempts,
    )
    classifier_client = ClassifierClient(
        api_key=settings.classifier_api_key,
        model=settings.classifier_model,
        base_url=settings.classifier_base_url,
        cost_per_call=settings.classifier_cost_per_call,
        timeout=settings.classifier_timeout,
        usage_tracker=tracker,
        max_attempts=settings.max_attempts,
    )
    notifier = TelegramNotifier(
        bot_token=settings.telegram_bot_token,
        chat_id=settings.telegram_chat_id,
        timeout=settings.telegram_timeout,
        max_attempts=settings.max_attempts,
    )

    decider = CategorizationDecider(
        Classifier(classifier_client),
        auto_approve_threshold=settings.auto_approve_threshold,
        history_confidence_threshold=settings.history_confidence_threshold,
        history_min_count=settings.history_min_count,
    )
    return CategorizationService(
        ledger=ledger,
        store=store,
        decider=decider,
        notifier=notifier,
        since_days=settings.since_days,
    )
