"""
Tests for the daily categorization run.
"""
from datetime import datetime, timezone

import pytest

from core.db import ConfidenceStore
from core.exceptions import LedgerError, NotificationError, PersistenceError
from core.schema import ClassifierResponse, DecisionSource, LedgerTransaction
from services.categorization_service import CategorizationService, RunState
from services.decider import CategorizationDecider


class FakeLedger:
    def __init__(self, categories, transactions, failing_updates=(), fetch_error=None):
        self.categories = categories
        self.transactions = transactions
        self.failing_updates = set(failing_updates)
        self.fetch_error = fetch_error
        self.updates = []

    def list_categories(self):
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.categories

    def list_unapproved(self, since_days=7):
        return self.transactions

    def update_transaction(self, transaction_id, category_id=None, memo=None, approved=False):
        if transaction_id in self.failing_updates:
            raise LedgerError(f"ledger API error: 500 for {transaction_id}", status_code=500)
        self.updates.append(
            {"id": transaction_id, "category_id": category_id, "memo": memo, "approved": approved}
        )
        return {}


class FakeNotifier:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def notify(self, stats, details, date=None):
        self.calls.append((stats, details, date))
        if self.error is not None:
            raise self.error


class ScriptedClassifier:
    """Returns a fixed reply per payee and records who was asked."""

    def __init__(self, replies=None, error=None):
        self.replies = replies or {}
        self.error = error
        self.asked = []

    def __call__(self, payee, amount, categories, history):
        self.asked.append(payee)
        if self.error is not None:
            raise self.error
        category, confidence = self.replies.get(payee, ("Groceries", 0.5))
        return ClassifierResponse(category=category, confidence=confidence, reasoning="scripted")


class BrokenStore(ConfidenceStore):
    def record_categorization(self, *args, **kwargs):
        raise PersistenceError("Merchant database error: disk I/O error")


def txn(tid, payee, amount=-10.0, memo=None):
    return LedgerTransaction(id=tid, payee_name=payee, amount=amount, memo=memo)


def make_service(ledger, store, classifier, notifier=None):
    return CategorizationService(
        ledger=ledger,
        store=store,
        decider=CategorizationDecider(classifier),
        notifier=notifier,
        clock=lambda: datetime(2026, 3, 10, 6, 0, tzinfo=timezone.utc),
    )


def test_known_merchant_is_auto_approved_from_history(store, categories):
    for i in range(3):
        store.record_categorization("Sunoco", "Gas & Transportation", "cat-gas", 0.95, True, f"old{i}", -40.0)
    ledger = FakeLedger(categories, [txn("t1", "SUNOCO", -42.5)])
    classifier = ScriptedClassifier()
    notifier = FakeNotifier()

    summary = make_service(ledger, store, classifier, notifier).run()

    assert classifier.asked == []
    assert summary.stats() == {"processed": 1, "approved": 1, "pending": 0, "errors": 0}
    assert ledger.updates == [
        {"id": "t1", "category_id": "cat-gas", "memo": "[AI: Gas & Transportation (95%)]", "approved": True}
    ]
    assert summary.details[0].source == DecisionSource.HISTORY
    assert store.get_merchant_history("Sunoco").total_transactions == 4


def test_new_merchant_goes_to_review(store, categories):
    ledger = FakeLedger(categories, [txn("t1", "Unknown Shop", memo="cash back")])
    classifier = ScriptedClassifier({"Unknown Shop": ("Groceries", 0.5)})

    summary = make_service(ledger, store, classifier).run()

    assert classifier.asked == ["Unknown Shop"]
    assert summary.stats() == {"processed": 1, "approved": 0, "pending": 1, "errors": 0}
    assert ledger.updates[0]["memo"] == "cash back [AI: Groceries (50%)]"
    assert ledger.updates[0]["approved"] is False
    assert store.get_merchant_confidence("Unknown Shop", "Groceries")["is_new"] is True


def test_failing_item_does_not_stop_the_run(store, categories):
    transactions = [txn(f"t{i}", f"Shop {i}") for i in range(1, 6)]
    ledger = FakeLedger(categories, transactions, failing_updates={"t3"})

    summary = make_service(ledger, store, ScriptedClassifier()).run()

    assert summary.processed == 4
    assert summary.errors == 1
    assert summary.processed + summary.errors == len(transactions)
    assert summary.approved + summary.pending == summary.processed
    assert [u["id"] for u in ledger.updates] == ["t1", "t2", "t4", "t5"]
    assert [d.transaction_id for d in summary.details] == ["t1", "t2", "t4", "t5"]


def test_store_failure_after_ledger_update_still_counts(tmp_path, categories):
    store = BrokenStore(str(tmp_path / "broken.db"))
    ledger = FakeLedger(categories, [txn("t1", "Instacart")])
    classifier = ScriptedClassifier({"Instacart": ("Groceries", 0.97)})

    summary = make_service(ledger, store, classifier).run()

    assert summary.stats() == {"processed": 1, "approved": 1, "pending": 0, "errors": 0}
    detail = summary.details[0]
    assert detail.stored is False
    assert detail.reasoning == "scripted (merchant DB error)"


def test_transaction_without_payee(store, categories):
    ledger = FakeLedger(categories, [txn("t1", None)])
    classifier = ScriptedClassifier()

    summary = make_service(ledger, store, classifier).run()

    assert classifier.asked == [""]
    assert summary.processed == 1
    assert summary.details[0].reasoning.endswith("(merchant DB error)")


def test_classifier_outage_falls_back_to_review(store, categories):
    ledger = FakeLedger(categories, [txn("t1", "Mystery Co")])
    classifier = ScriptedClassifier(error=LedgerError("unreachable"))

    summary = make_service(ledger, store, classifier).run()

    assert summary.pending == 1
    assert ledger.updates[0]["category_id"] == "cat-forgot"
    assert ledger.updates[0]["memo"] == "[AI: Stuff I Forgot to Budget For (0%)]"
    assert summary.details[0].source == DecisionSource.ERROR


def test_notifier_receives_summary(store, categories):
    ledger = FakeLedger(categories, [txn("t1", "Unknown Shop")])
    notifier = FakeNotifier()

    summary = make_service(ledger, store, ScriptedClassifier(), notifier).run()

    assert len(notifier.calls) == 1
    stats, details, date = notifier.calls[0]
    assert stats == summary.stats()
    assert details == summary.details
    assert date == "2026-03-10"


def test_notification_failure_is_swallowed(store, categories):
    ledger = FakeLedger(categories, [txn("t1", "Unknown Shop")])
    notifier = FakeNotifier(error=NotificationError("Telegram API error: chat not found"))
    service = make_service(ledger, store, ScriptedClassifier(), notifier)

    summary = service.run()

    assert summary.processed == 1
    assert service.state == RunState.DONE


def test_no_transactions_skips_notification(store, categories):
    notifier = FakeNotifier()
    service = make_service(FakeLedger(categories, []), store, ScriptedClassifier(), notifier)

    summary = service.run()

    assert summary.stats() == {"processed": 0, "approved": 0, "pending": 0, "errors": 0}
    assert summary.details == []
    assert notifier.calls == []
    assert service.state == RunState.DONE


def test_fetch_failure_is_fatal(store, categories):
    ledger = FakeLedger(categories, [txn("t1", "Sunoco")], fetch_error=LedgerError("ledger API error: 503"))
    notifier = FakeNotifier()
    service = make_service(ledger, store, ScriptedClassifier(), notifier)

    with pytest.raises(LedgerError):
        service.run()

    assert service.state == RunState.FETCH_CATEGORIES
    assert notifier.calls == []
    assert ledger.updates == []


def test_learning_carries_across_runs(store, categories):
    classifier = ScriptedClassifier({"Whole Foods": ("Groceries", 0.96)})

    for run in range(3):
        ledger = FakeLedger(categories, [txn(f"r{run}", "Whole Foods")])
        make_service(ledger, store, classifier).run()
    assert classifier.asked == ["Whole Foods"] * 3

    ledger = FakeLedger(categories, [txn("r4", "WHOLE FOODS")])
    summary = make_service(ledger, store, classifier).run()

    assert classifier.asked == ["Whole Foods"] * 3
    assert summary.details[0].source == DecisionSource.HISTORY
    assert summary.approved == 1
