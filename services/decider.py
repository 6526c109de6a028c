"""
Categorization decision policy.
Chooses between learned merchant history and the classifier, and decides
whether the result is trusted enough to approve automatically.
"""
import re
from typing import Callable, Optional, Sequence

from core.exceptions import ValidationError
from core.logger import setup_logger
from core.schema import (
    Category,
    ClassifierResponse,
    Decision,
    DecisionSource,
    LedgerTransaction,
    MerchantHistory,
)

logger = setup_logger(__name__)

ClassifyFn = Callable[[str, float, Sequence[Category], Optional[MerchantHistory]], ClassifierResponse]

# Checked in order against category names, case-insensitive substring
FALLBACK_CATEGORY_HINTS = ("stuff i forgot", "miscellaneous", "misc", "other")

_AI_TAG = re.compile(r"\s*\[AI:[^\]]*\]")


def select_fallback_category(categories: Sequence[Category]) -> Category:
    """
    Pick the catch-all category used when classification fails.

    Raises:
        ValidationError: If there are no categories
    """
    if not categories:
        raise ValidationError("No categories available for fallback")

    for hint in FALLBACK_CATEGORY_HINTS:
        for category in categories:
            if hint in category.name.lower():
                return category
    return categories[0]


def resolve_category_id(category_name: str, categories: Sequence[Category]) -> Optional[str]:
    for category in categories:
        if category.name == category_name:
            return category.id
    return None


def format_memo(decision: Decision, existing_memo: Optional[str] = None) -> str:
    """
    Build the ledger memo for a decision.

    Keeps any user memo and replaces a previous AI tag.

    Returns:
        e.g. "Lunch [AI: Dining Out (93%)]"
    """
    tag = f"[AI: {decision.category} ({decision.confidence_pct}%)]"
    base = _AI_TAG.sub("", existing_memo or "").strip()
    return f"{base} {tag}" if base else tag


class CategorizationDecider:
    """Decides the category, confidence and approval for one transaction."""

    def __init__(
        self,
        classify: ClassifyFn,
        auto_approve_threshold: float = 0.95,
        history_confidence_threshold: float = 0.90,
        history_min_count: int = 3,
    ):
        self.classify = classify
        self.auto_approve_threshold = auto_approve_threshold
        self.history_confidence_threshold = history_confidence_threshold
        self.history_min_count = history_min_count

    def _from_history(
        self,
        history: MerchantHistory,
        categories: Sequence[Category],
    ) -> Optional[Decision]:
        if history.is_new or not history.history:
            return None

        top = history.history[0]
        if top.avg_confidence < self.history_confidence_threshold or top.usage_count < self.history_min_count:
            return None

        return Decision(
            category=top.category_name,
            category_id=resolve_category_id(top.category_name, categories) or top.category_id,
            confidence=top.avg_confidence,
            reasoning=f"Historical categorization ({top.usage_count} times)",
            source=DecisionSource.HISTORY,
        )

    def decide(
        self,
        transaction: LedgerTransaction,
        categories: Sequence[Category],
        history: MerchantHistory,
    ) -> Decision:
        """
        Decide how to categorize one transaction.

        A consistent, confident history wins without calling the classifier.
        A failing classifier yields the fallback category at zero confidence.

        Args:
            transaction: Unapproved ledger transaction
            categories: Live category list
            history: Learned history for the transaction's merchant

        Returns:
            Decision with auto_approved set

        Raises:
            ValidationError: If categories is empty
        """
        if not categories:
            raise ValidationError(
                "Cannot categorize without categories",
                details={"transaction_id": transaction.id}
            )

        payee = transaction.payee_name or ""
        decision = self._from_history(history, categories)

        if decision is None:
            try:
                result = self.classify(payee, transaction.amount, categories, history)
                decision = Decision(
                    category=result.category,
                    category_id=resolve_category_id(result.category, categories),
                    confidence=result.confidence,
                    reasoning=result.reasoning,
                    source=DecisionSource.CLASSIFIER,
                )
            except Exception as e:
                logger.error(f"Classification failed for {payee!r}: {e}")
                fallback = select_fallback_category(categories)
                decision = Decision(
                    category=fallback.name,
                    category_id=fallback.id,
                    confidence=0.0,
                    reasoning=f"Error during categorization: {e}",
                    source=DecisionSource.ERROR,
                )

        decision.auto_approved = (
            decision.source != DecisionSource.ERROR
            and decision.confidence >= self.auto_approve_threshold
        )
        return decision
