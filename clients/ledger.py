"""
Budgeting ledger REST client.
Reads categories and unapproved transactions, writes categorization updates.
"""
import math
import time
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Deque, Dict, List, Optional, Type

from clients.base import ResilientClient
from core.exceptions import (
    ConfigurationError,
    ExternalServiceError,
    LedgerError,
    LedgerRateLimitedError,
    LedgerUnauthorizedError,
)
from core.logger import setup_logger
from core.schema import Category, LedgerTransaction
from core.usage import LEDGER

logger = setup_logger(__name__)

MILLIUNITS = 1000


class SlidingWindowLimiter:
    """Client-side request window: at most max_requests per window_seconds."""

    def __init__(
        self,
        max_requests: int = 200,
        window_seconds: float = 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self._requests: Deque[float] = deque()

    def acquire(self) -> None:
        """
        Record one request in the window.

        Raises:
            LedgerRateLimitedError: If the window is full
        """
        now = self.clock()
        while self._requests and now - self._requests[0] >= self.window_seconds:
            self._requests.popleft()

        if len(self._requests) >= self.max_requests:
            retry_after = math.ceil(self._requests[0] + self.window_seconds - now)
            raise LedgerRateLimitedError(
                f"Ledger API rate limit exceeded. Reset in {retry_after} seconds.",
                details={"retry_after": retry_after, "max_requests": self.max_requests},
            )

        self._requests.append(now)


class LedgerClient(ResilientClient):
    """YNAB-style ledger API client."""

    provider = LEDGER
    error_class = LedgerError

    def __init__(
        self,
        api_key: str,
        budget_id: str,
        base_url: str = "https://api.ynab.com/v1",
        limiter: Optional[SlidingWindowLimiter] = None,
        **kwargs: Any,
    ):
        if not api_key:
            raise ConfigurationError(
                "LEDGER_API_KEY environment variable not set",
                details={"required_key": "LEDGER_API_KEY"}
            )
        if not budget_id:
            raise ConfigurationError(
                "LEDGER_BUDGET_ID environment variable not set",
                details={"required_key": "LEDGER_BUDGET_ID"}
            )

        super().__init__(base_url, **kwargs)
        self.api_key = api_key
        self.budget_id = budget_id
        self.limiter = limiter or SlidingWindowLimiter()

        logger.info(f"Initialized ledger client for budget {self.budget_id}")

    def default_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def before_attempt(self) -> None:
        self.limiter.acquire()

    def error_class_for_status(self, status_code: int) -> Type[ExternalServiceError]:
        if status_code == 401:
            return LedgerUnauthorizedError
        if status_code == 429:
            return LedgerRateLimitedError
        return LedgerError

    def _data(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        payload = self._request(method, path, **kwargs)
        return payload.get("data", {}) if isinstance(payload, dict) else {}

    def list_categories(self) -> List[Category]:
        """
        Fetch visible budget categories, flattened across groups.

        Returns:
            Categories that are neither hidden nor deleted
        """
        data = self._data("GET", f"/budgets/{self.budget_id}/categories")

        categories = []
        for group in data.get("category_groups", []):
            if group.get("hidden") or group.get("deleted"):
                continue
            for cat in group.get("categories", []):
                if cat.get("hidden") or cat.get("deleted"):
                    continue
                categories.append(Category(id=cat["id"], name=cat["name"], group_name=group.get("name")))

        logger.info(f"Loaded {len(categories)} ledger categories")
        return categories

    def list_unapproved(self, since_days: int = 7) -> List[LedgerTransaction]:
        """
        Fetch transactions from the last since_days days that still need review.

        Args:
            since_days: Look-back window in days

        Returns:
            Unapproved, non-deleted transactions with amounts in currency units
        """
        since_date = (datetime.now(timezone.utc).date() - timedelta(days=since_days)).isoformat()
        data = self._data(
            "GET",
            f"/budgets/{self.budget_id}/transactions",
            params={"since_date": since_date},
        )

        transactions = [
            self._to_transaction(t)
            for t in data.get("transactions", [])
            if not t.get("approved") and not t.get("deleted")
        ]
        logger.info(f"Found {len(transactions)} unapproved transactions since {since_date}")
        return transactions

    def get_transaction(self, transaction_id: str) -> LedgerTransaction:
        data = self._data("GET", f"/budgets/{self.budget_id}/transactions/{transaction_id}")
        return self._to_transaction(data.get("transaction", {}))

    def update_transaction(
        self,
        transaction_id: str,
        category_id: Optional[str] = None,
        memo: Optional[str] = None,
        approved: bool = False,
    ) -> Dict[str, Any]:
        """
        Update one transaction. Only fields that were given are sent.

        Returns:
            The ledger's response data
        """
        updates: Dict[str, Any] = {}
        if category_id is not None:
            updates["category_id"] = category_id
        if memo is not None:
            updates["memo"] = memo
        if approved:
            updates["approved"] = True

        return self._data(
            "PUT",
            f"/budgets/{self.budget_id}/transactions/{transaction_id}",
            json_body={"transaction": updates},
        )

    @staticmethod
    def _to_transaction(raw: Dict[str, Any]) -> LedgerTransaction:
        return LedgerTransaction(
            id=raw["id"],
            date=raw.get("date"),
            amount=(raw.get("amount") or 0) / MILLIUNITS,
            payee_name=raw.get("payee_name"),
            category_name=raw.get("category_name"),
            category_id=raw.get("category_id"),
            account_name=raw.get("account_name"),
            memo=raw.get("memo"),
            approved=bool(raw.get("approved")),
        )
