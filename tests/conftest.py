"""
Shared fixtures: isolated settings, a temporary merchant store and
fake HTTP sessions for the provider clients.
"""
import json
from collections import deque
from typing import Any, Dict, List, Optional

import pytest
import requests

from core.config import reset_settings
from core.db import ConfidenceStore
from core.schema import Category


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Point storage at tmp_path and clear settings overrides between tests."""
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "merchant_data.db"))
    monkeypatch.setenv("USAGE_FILE", str(tmp_path / "api-usage.json"))
    for name in (
        "PORT",
        "LOG_LEVEL",
        "AUTO_APPROVE_THRESHOLD",
        "HISTORY_MIN_COUNT",
        "SINCE_DAYS",
        "LEDGER_API_KEY",
        "LEDGER_BUDGET_ID",
        "CLASSIFIER_API_KEY",
        "TELEGRAM_BOT_TOKEN",
        "TELEGRAM_CHAT_ID",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def store(tmp_path):
    return ConfidenceStore(str(tmp_path / "merchants.db"))


@pytest.fixture
def categories() -> List[Category]:
    return [
        Category(id="cat-groceries", name="Groceries", group_name="Everyday"),
        Category(id="cat-gas", name="Gas & Transportation", group_name="Everyday"),
        Category(id="cat-dining", name="Dining Out", group_name="Everyday"),
        Category(id="cat-forgot", name="Stuff I Forgot to Budget For", group_name="Misc"),
    ]


def make_response(status_code: int = 200, body: Any = None, reason: str = "", text: Optional[str] = None):
    """Build a real requests.Response with the given status and body."""
    response = requests.Response()
    response.status_code = status_code
    response.reason = reason
    if text is not None:
        response._content = text.encode("utf-8")
    elif body is not None:
        response._content = json.dumps(body).encode("utf-8")
    else:
        response._content = b""
    return response


class FakeSession:
    """Stand-in for requests.Session replaying queued responses or exceptions."""

    def __init__(self, *outcomes):
        self.outcomes = deque(outcomes)
        self.calls: List[Dict[str, Any]] = []

    def queue(self, *outcomes) -> None:
        self.outcomes.extend(outcomes)

    def request(self, method, url, headers=None, json=None, params=None, timeout=None):
        self.calls.append(
            {"method": method, "url": url, "headers": headers, "json": json, "params": params, "timeout": timeout}
        )
        if not self.outcomes:
            raise AssertionError(f"Unexpected request: {method} {url}")
        outcome = self.outcomes.popleft()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps):
    return sleeps.append
