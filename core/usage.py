"""
Per-provider usage budgets.

Counters are persisted after every mutation and reset on calendar day and
month rollover. Single-process, single-writer: concurrent runs sharing a
usage file are not coordinated.
"""
import json
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from core.logger import setup_logger
from core.schema import ProviderUsage

logger = setup_logger(__name__)

CLASSIFIER = "classifier"
LEDGER = "ledger"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ProviderLimits:
    """Call budget for one provider. A provider with a cost_limit is cost-bearing."""
    daily: int
    monthly: int
    cost_limit: Optional[float] = None

    @property
    def cost_bearing(self) -> bool:
        return self.cost_limit is not None


class JsonUsageStore:
    """Usage state persisted as one JSON document."""

    def __init__(self, path: str):
        self.path = Path(path)

    def load(self) -> Dict[str, Any]:
        """
        Load raw usage state.

        Returns:
            Parsed document, or an empty dict when the file is missing or corrupt
        """
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Usage file {self.path} unreadable, starting fresh: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Usage file {self.path} has unexpected shape, starting fresh")
            return {}
        return data

    def save(self, data: Dict[str, Any]) -> None:
        """Write usage state atomically."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=".usage-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


class UsageTracker:
    """Gates outbound calls against daily, monthly and cost budgets."""

    def __init__(
        self,
        store: JsonUsageStore,
        limits: Dict[str, ProviderLimits],
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.limits = limits
        self.clock = clock

    def _load(self) -> Dict[str, ProviderUsage]:
        raw = self.store.load()
        now = self.clock()
        state: Dict[str, ProviderUsage] = {}
        for provider in self.limits:
            entry = raw.get(provider)
            try:
                state[provider] = ProviderUsage(**entry) if isinstance(entry, dict) else ProviderUsage(last_reset=now)
            except PydanticValidationError as e:
                logger.warning(f"Discarding malformed usage entry for {provider}: {e}")
                state[provider] = ProviderUsage(last_reset=now)
        return state

    def _save(self, state: Dict[str, ProviderUsage]) -> None:
        # Entries for providers without limits here are carried over untouched
        data = self.store.load()
        data.update({provider: usage.model_dump(mode="json") for provider, usage in state.items()})
        try:
            self.store.save(data)
        except OSError as e:
            logger.error(f"Failed to save usage data: {e}")

    def reset_counters_if_needed(self, state: Dict[str, ProviderUsage]) -> Dict[str, ProviderUsage]:
        """
        Zero counters whose period has rolled over.

        Daily counters reset on a new calendar day; monthly counters (and the
        cost estimate of cost-bearing providers) on a new calendar month.
        last_reset is always refreshed to now.
        """
        now = self.clock()
        for provider, usage in state.items():
            last = usage.last_reset
            if last.tzinfo is None:
                last = last.replace(tzinfo=timezone.utc)
            last = last.astimezone(now.tzinfo or timezone.utc)

            if now.date() != last.date():
                usage.daily = 0

            if (now.year, now.month) != (last.year, last.month):
                usage.monthly = 0
                limits = self.limits.get(provider)
                if limits is not None and limits.cost_bearing:
                    usage.cost_estimate = 0.0

            usage.last_reset = now
        return state

    def check_limit(self, provider: str) -> bool:
        """
        Check whether one more call to provider fits its budget.

        Returns:
            False if any daily, monthly or cost budget is exhausted
        """
        limits = self.limits.get(provider)
        if limits is None:
            logger.warning(f"Unknown provider: {provider}")
            return False

        state = self.reset_counters_if_needed(self._load())
        self._save(state)
        usage = state[provider]

        if usage.daily >= limits.daily:
            logger.warning(f"Daily limit exceeded for {provider}: {usage.daily}/{limits.daily}")
            return False

        if usage.monthly >= limits.monthly:
            logger.warning(f"Monthly limit exceeded for {provider}: {usage.monthly}/{limits.monthly}")
            return False

        if limits.cost_bearing and usage.cost_estimate >= limits.cost_limit:
            logger.warning(
                f"Cost limit exceeded for {provider}: ${usage.cost_estimate:.2f}/${limits.cost_limit:.2f}"
            )
            return False

        return True

    def record_usage(self, provider: str, cost: float = 0.0) -> None:
        """Count one completed call (and its estimated cost) against provider."""
        if provider not in self.limits:
            logger.warning(f"Ignoring usage for unknown provider: {provider}")
            return

        state = self.reset_counters_if_needed(self._load())
        usage = state[provider]
        usage.daily += 1
        usage.monthly += 1
        if self.limits[provider].cost_bearing:
            usage.cost_estimate += cost

        self._save(state)
        logger.debug(f"{provider} usage updated: daily={usage.daily}, monthly={usage.monthly}")

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Current counters and limits per provider, rolled over to now but not saved."""
        state = self.reset_counters_if_needed(self._load())
        return {
            provider: {
                **state[provider].model_dump(mode="json"),
                "limits": {
                    "daily": limits.daily,
                    "monthly": limits.monthly,
                    "cost_limit": limits.cost_limit,
                },
            }
            for provider, limits in self.limits.items()
        }
