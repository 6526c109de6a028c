"""
Resilient HTTP client base for external providers.
Budget gate, fixed timeout, bounded retries of transient failures with exponential backoff,
usage accounting and typed error translation.
"""
import time
from typing import Any, Callable, Dict, Optional, Type

import requests
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from core.exceptions import ExternalServiceError, UsageLimitExceededError
from core.logger import setup_logger
from core.usage import UsageTracker

logger = setup_logger(__name__)

RATE_LIMITED = 429


class ResilientClient:
    """
    Wraps outbound calls to one provider.

    Subclasses set `provider`, `error_class` and optionally override
    `error_class_for_status`, `extract_error_message` and `before_attempt`.
    """

    provider: str = "external"
    error_class: Type[ExternalServiceError] = ExternalServiceError

    def __init__(
        self,
        base_url: str,
        timeout: float = 30,
        usage_tracker: Optional[UsageTracker] = None,
        cost_per_call: float = 0.0,
        max_attempts: int = 3,
        backoff_multiplier: float = 1.0,
        backoff_max: float = 8.0,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.usage_tracker = usage_tracker
        self.cost_per_call = cost_per_call
        self.max_attempts = max_attempts
        self.backoff_multiplier = backoff_multiplier
        self.backoff_max = backoff_max
        self.session = session or requests.Session()
        self.sleep = sleep

    def default_headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    def before_attempt(self) -> None:
        """Hook run before every HTTP attempt, including retries."""

    def error_class_for_status(self, status_code: int) -> Type[ExternalServiceError]:
        return self.error_class

    def extract_error_message(self, response: requests.Response) -> Optional[str]:
        """Pull the provider's own error text out of a failed response."""
        try:
            body = response.json()
        except ValueError:
            return response.text[:500] if response.text else None

        if isinstance(body, dict):
            error = body.get("error")
            if isinstance(error, dict):
                return error.get("detail") or error.get("message") or str(error)
            if error:
                return str(error)
            return body.get("description") or body.get("message")
        return None

    @staticmethod
    def is_transient(exc: BaseException) -> bool:
        """Rate limits, timeouts and dropped connections. Server errors fail fast."""
        if isinstance(exc, (requests.exceptions.Timeout, requests.exceptions.ConnectionError)):
            return True
        return isinstance(exc, ExternalServiceError) and exc.status_code == RATE_LIMITED

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"{self.provider} call failed (attempt {retry_state.attempt_number}/{self.max_attempts}): "
            f"{exc}. Retrying in {delay:.1f}s"
        )

    def _send(
        self,
        method: str,
        url: str,
        json_body: Optional[Dict[str, Any]],
        params: Optional[Dict[str, Any]],
        headers: Dict[str, str],
    ) -> Dict[str, Any]:
        self.before_attempt()

        response = self.session.request(
            method,
            url,
            headers=headers,
            json=json_body,
            params=params,
            timeout=self.timeout,
        )

        if not response.ok:
            provider_message = self.extract_error_message(response)
            message = f"{self.provider} API error: {response.status_code} {response.reason or ''}".rstrip()
            if provider_message:
                message = f"{message} - {provider_message}"
            error_class = self.error_class_for_status(response.status_code)
            raise error_class(
                message,
                status_code=response.status_code,
                provider_message=provider_message,
                details={"url": url, "method": method},
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise self.error_class(
                f"{self.provider} returned invalid JSON",
                status_code=response.status_code,
                details={"url": url, "body": response.text[:500]},
            ) from e

    def _request(
        self,
        method: str,
        path: str,
        json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Issue one logical call to the provider.

        Raises:
            UsageLimitExceededError: If the provider budget is exhausted
            ExternalServiceError: (subclass per provider) on any other failure
        """
        if self.usage_tracker is not None and not self.usage_tracker.check_limit(self.provider):
            raise UsageLimitExceededError(self.provider)

        url = f"{self.base_url}{path}"
        request_headers = {**self.default_headers(), **(headers or {})}

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_multiplier, max=self.backoff_max),
            retry=retry_if_exception(self.is_transient),
            before_sleep=self._log_retry,
            sleep=self.sleep,
            reraise=True,
        )

        try:
            data = retrying(self._send, method, url, json_body, params, request_headers)
        except requests.exceptions.Timeout as e:
            logger.error(f"{self.provider} request timeout after {self.timeout}s: {e}")
            raise self.error_class(
                f"{self.provider} request timeout after {self.timeout}s",
                details={"url": url, "timeout": self.timeout},
            ) from e
        except requests.exceptions.RequestException as e:
            logger.error(f"{self.provider} request failed: {e}")
            raise self.error_class(
                f"Failed to connect to {self.provider}: {e}",
                details={"url": url, "error": str(e)},
            ) from e

        if self.usage_tracker is not None:
            self.usage_tracker.record_usage(self.provider, self.cost_per_call)
        return data
