"""
Classifier client using direct REST calls to the Anthropic Messages API.
Budget-gated and retried through ResilientClient.
"""
from typing import Any, Dict

from clients.base import ResilientClient
from core.exceptions import ClassifierError, ConfigurationError
from core.logger import setup_logger
from core.usage import CLASSIFIER

logger = setup_logger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class ClassifierClient(ResilientClient):
    """Wrapper for the Messages REST API."""

    provider = CLASSIFIER
    error_class = ClassifierError

    def __init__(
        self,
        api_key: str,
        model: str = "claude-3-5-sonnet-20241022",
        base_url: str = "https://api.anthropic.com",
        max_tokens: int = 1000,
        cost_per_call: float = 0.003,
        **kwargs: Any,
    ):
        if not api_key:
            raise ConfigurationError(
                "CLASSIFIER_API_KEY environment variable not set",
                details={"required_key": "CLASSIFIER_API_KEY"}
            )

        super().__init__(base_url, cost_per_call=cost_per_call, **kwargs)
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens

        logger.info(f"Initialized classifier client with model: {self.model}")

    def default_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

    def complete(self, prompt: str) -> str:
        """
        Send a single-turn prompt and return the text of the reply.

        Args:
            prompt: User message

        Returns:
            Concatenated text blocks of the reply

        Raises:
            UsageLimitExceededError: If the classifier budget is exhausted
            ClassifierError: If the call fails or the reply has no text
        """
        data = self._request(
            "POST",
            "/v1/messages",
            json_body={
                "model": self.model,
                "max_tokens": self.max_tokens,
                "messages": [{"role": "user", "content": prompt}],
            },
        )

        text = "".join(
            block.get("text", "")
            for block in data.get("content", [])
            if isinstance(block, dict) and block.get("type") == "text"
        )
        if not text.strip():
            logger.error(f"Response keys: {list(data.keys())}")
            raise ClassifierError(
                "Unexpected response structure: no text content",
                details={"model": self.model},
            )

        if "usage" in data:
            usage = data["usage"]
            logger.debug(
                f"Token usage - Input: {usage.get('input_tokens', 'N/A')}, "
                f"Output: {usage.get('output_tokens', 'N/A')}"
            )
        return text
