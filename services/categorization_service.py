"""
Daily categorization run.
Fetches unapproved ledger transactions, decides each one, writes the
decision back to the ledger, learns from it and reports a summary.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

from core.db import ConfidenceStore
from core.exceptions import PersistenceError, ValidationError
from core.logger import setup_logger
from core.schema import (
    Category,
    Decision,
    LedgerTransaction,
    MerchantHistory,
    ProcessedTransaction,
    RunSummary,
)
from services.decider import CategorizationDecider, format_memo

logger = setup_logger(__name__)

STORE_ERROR_SUFFIX = " (merchant DB error)"


class Ledger(Protocol):
    def list_categories(self) -> List[Category]: ...

    def list_unapproved(self, since_days: int = 7) -> List[LedgerTransaction]: ...

    def update_transaction(
        self,
        transaction_id: str,
        category_id: Optional[str] = None,
        memo: Optional[str] = None,
        approved: bool = False,
    ) -> object: ...


class Notifier(Protocol):
    def notify(self, stats, details, date=None) -> None: ...


class RunState(str, Enum):
    """Stages of one categorization run."""
    FETCH_CATEGORIES = "fetch_categories"
    FETCH_TRANSACTIONS = "fetch_transactions"
    PROCESS_ITEMS = "process_items"
    SUMMARIZE = "summarize"
    NOTIFY = "notify"
    DONE = "done"


@dataclass
class ItemOutcome:
    """Which side effects of processing one transaction took place."""
    ledger_ok: bool = False
    store_ok: bool = False


class CategorizationService:
    """Runs one categorization pass over the ledger's unapproved transactions."""

    def __init__(
        self,
        ledger: Ledger,
        store: ConfidenceStore,
        decider: CategorizationDecider,
        notifier: Optional[Notifier] = None,
        since_days: int = 7,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.ledger = ledger
        self.store = store
        self.decider = decider
        self.notifier = notifier
        self.since_days = since_days
        self.clock = clock
        self.state: Optional[RunState] = None

    def _enter(self, state: RunState) -> None:
        self.state = state
        logger.debug(f"Run state: {state.value}")

    def _lookup_history(self, payee: str) -> MerchantHistory:
        if not payee.strip():
            return MerchantHistory.new(payee)
        return self.store.get_merchant_history(payee)

    def process_transaction(
        self,
        transaction: LedgerTransaction,
        categories: Sequence[Category],
    ) -> Tuple[ItemOutcome, Decision]:
        """
        Decide, update the ledger and record the result for one transaction.

        The ledger update must succeed for the item to count. A store failure
        afterwards is reported through the outcome instead of raised.

        Returns:
            (outcome, decision)

        Raises:
            Exception: Anything raised before or during the ledger update
        """
        outcome = ItemOutcome()
        payee = transaction.payee_name or ""

        history = self._lookup_history(payee)
        decision = self.decider.decide(transaction, categories, history)

        self.ledger.update_transaction(
            transaction.id,
            category_id=decision.category_id,
            memo=format_memo(decision, transaction.memo),
            approved=decision.auto_approved,
        )
        outcome.ledger_ok = True

        try:
            self.store.record_categorization(
                payee,
                decision.category,
                decision.category_id,
                decision.confidence,
                decision.auto_approved,
                transaction_id=transaction.id,
                amount=transaction.amount,
            )
            outcome.store_ok = True
        except (PersistenceError, ValidationError) as e:
            logger.warning(
                f"Ledger updated for {payee!r} but merchant store write failed, counting as processed: {e}"
            )

        return outcome, decision

    def run(self) -> RunSummary:
        """
        Execute one run.

        Returns:
            RunSummary with counters and per-transaction details

        Raises:
            Exception: If categories or transactions cannot be fetched
        """
        logger.info("Starting daily transaction categorization")

        self._enter(RunState.FETCH_CATEGORIES)
        categories = self.ledger.list_categories()
        logger.info(f"Loaded {len(categories)} categories")

        self._enter(RunState.FETCH_TRANSACTIONS)
        transactions = self.ledger.list_unapproved(since_days=self.since_days)
        logger.info(f"Found {len(transactions)} unapproved transactions")

        summary = RunSummary()
        if not transactions:
            logger.info("No transactions to process")
            self._enter(RunState.DONE)
            return summary

        self._enter(RunState.PROCESS_ITEMS)
        for transaction in transactions:
            payee = transaction.payee_name or ""
            try:
                outcome, decision = self.process_transaction(transaction, categories)
            except Exception as e:
                logger.error(f"Error processing transaction {transaction.id}: {e}")
                summary.errors += 1
                continue

            summary.processed += 1
            if decision.auto_approved:
                summary.approved += 1
            else:
                summary.pending += 1

            reasoning = decision.reasoning if outcome.store_ok else decision.reasoning + STORE_ERROR_SUFFIX
            summary.details.append(
                ProcessedTransaction(
                    transaction_id=transaction.id,
                    payee=payee,
                    amount=transaction.amount,
                    category=decision.category,
                    confidence=decision.confidence,
                    approved=decision.auto_approved,
                    source=decision.source,
                    reasoning=reasoning,
                    stored=outcome.store_ok,
                )
            )
            status = "APPROVED" if decision.auto_approved else "PENDING"
            logger.info(f"{payee} → {decision.category} ({decision.confidence_pct}%) {status}")

        self._enter(RunState.SUMMARIZE)
        logger.info(
            f"Categorization complete: {summary.processed} processed, {summary.approved} approved, "
            f"{summary.pending} pending, {summary.errors} errors"
        )

        self._enter(RunState.NOTIFY)
        self._notify(summary)

        self._enter(RunState.DONE)
        return summary

    def _notify(self, summary: RunSummary) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(summary.stats(), summary.details, self.clock().date().isoformat())
        except Exception as e:
            logger.error(f"Failed to send run summary: {e}")
