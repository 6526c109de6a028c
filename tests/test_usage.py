"""
Tests for per-provider usage budgets.
"""
import json
from datetime import datetime, timezone

import pytest

from core.usage import CLASSIFIER, LEDGER, JsonUsageStore, ProviderLimits, UsageTracker


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return Clock(datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def usage_path(tmp_path):
    return tmp_path / "api-usage.json"


@pytest.fixture
def tracker(usage_path, clock):
    limits = {
        CLASSIFIER: ProviderLimits(daily=3, monthly=5, cost_limit=0.01),
        LEDGER: ProviderLimits(daily=2, monthly=100),
    }
    return UsageTracker(JsonUsageStore(str(usage_path)), limits, clock=clock)


def test_fresh_tracker_allows_calls(tracker):
    assert tracker.check_limit(CLASSIFIER) is True
    assert tracker.check_limit(LEDGER) is True


def test_unknown_provider_is_denied(tracker):
    assert tracker.check_limit("mystery") is False


def test_daily_limit_blocks(tracker):
    tracker.record_usage(LEDGER)
    tracker.record_usage(LEDGER)

    assert tracker.check_limit(LEDGER) is False
    assert tracker.check_limit(CLASSIFIER) is True


def test_cost_limit_blocks(tracker):
    tracker.record_usage(CLASSIFIER, 0.006)
    assert tracker.check_limit(CLASSIFIER) is True

    tracker.record_usage(CLASSIFIER, 0.006)
    assert tracker.check_limit(CLASSIFIER) is False


def test_usage_is_persisted(tracker, usage_path):
    tracker.record_usage(CLASSIFIER, 0.003)

    data = json.loads(usage_path.read_text())
    assert data[CLASSIFIER]["daily"] == 1
    assert data[CLASSIFIER]["monthly"] == 1
    assert data[CLASSIFIER]["cost_estimate"] == pytest.approx(0.003)
    assert "last_reset" in data[CLASSIFIER]


def test_non_cost_bearing_provider_ignores_cost(tracker):
    tracker.record_usage(LEDGER, 5.0)
    assert tracker.snapshot()[LEDGER]["cost_estimate"] == 0.0


def test_daily_rollover_resets_daily_only(tracker, clock):
    tracker.record_usage(LEDGER)
    tracker.record_usage(LEDGER)
    assert tracker.check_limit(LEDGER) is False

    clock.now = datetime(2026, 3, 11, 0, 5, tzinfo=timezone.utc)
    assert tracker.check_limit(LEDGER) is True

    snapshot = tracker.snapshot()[LEDGER]
    assert snapshot["daily"] == 0
    assert snapshot["monthly"] == 2


def test_month_rollover_resets_monthly_and_cost(tracker, clock):
    tracker.record_usage(CLASSIFIER, 0.006)
    tracker.record_usage(CLASSIFIER, 0.006)
    assert tracker.check_limit(CLASSIFIER) is False

    clock.now = datetime(2026, 4, 1, 9, 0, tzinfo=timezone.utc)
    assert tracker.check_limit(CLASSIFIER) is True

    snapshot = tracker.snapshot()[CLASSIFIER]
    assert snapshot["daily"] == 0
    assert snapshot["monthly"] == 0
    assert snapshot["cost_estimate"] == 0.0


def test_year_rollover_resets_monthly(tracker, clock):
    clock.now = datetime(2025, 12, 31, 23, 0, tzinfo=timezone.utc)
    tracker.record_usage(LEDGER)

    clock.now = datetime(2026, 1, 1, 1, 0, tzinfo=timezone.utc)
    tracker.check_limit(LEDGER)
    assert tracker.snapshot()[LEDGER]["monthly"] == 0


def test_corrupt_usage_file_starts_fresh(tracker, usage_path):
    usage_path.write_text("{not json")

    assert tracker.check_limit(CLASSIFIER) is True
    tracker.record_usage(CLASSIFIER)
    assert json.loads(usage_path.read_text())[CLASSIFIER]["daily"] == 1


def test_malformed_entry_is_reset(tracker, usage_path):
    usage_path.write_text(json.dumps({CLASSIFIER: {"daily": "lots", "last_reset": "never"}}))

    assert tracker.check_limit(CLASSIFIER) is True
    assert tracker.snapshot()[CLASSIFIER]["daily"] == 0


def test_state_survives_new_tracker_instance(tracker, usage_path, clock):
    tracker.record_usage(LEDGER)
    tracker.record_usage(LEDGER)

    reloaded = UsageTracker(JsonUsageStore(str(usage_path)), tracker.limits, clock=clock)
    assert reloaded.check_limit(LEDGER) is False


def test_snapshot_reflects_rollover_without_saving(tracker, usage_path, clock):
    tracker.record_usage(LEDGER)
    tracker.record_usage(LEDGER)
    saved = usage_path.read_text()

    clock.now = datetime(2026, 3, 11, 0, 5, tzinfo=timezone.utc)
    snapshot = tracker.snapshot()[LEDGER]

    assert snapshot["daily"] == 0
    assert snapshot["monthly"] == 2
    assert usage_path.read_text() == saved


def test_untracked_providers_survive_saves(tracker, usage_path):
    other = {"daily": 4, "monthly": 40, "cost_estimate": 1.5, "last_reset": "2026-03-10T08:00:00+00:00"}
    usage_path.write_text(json.dumps({"telegram": other}))

    tracker.record_usage(CLASSIFIER, 0.003)

    data = json.loads(usage_path.read_text())
    assert data["telegram"] == other
    assert data[CLASSIFIER]["daily"] == 1
