"""
Transaction classification using the external classifier.
Strictly validates the reply against the category list.
"""
import json
from typing import Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from core.exceptions import ClassifierError, ValidationError
from core.logger import setup_logger
from core.schema import Category, ClassifierResponse, MerchantHistory
from llm.client import ClassifierClient
from llm.prompts import build_categorization_prompt

logger = setup_logger(__name__)


def strip_code_fences(content: str) -> str:
    """Remove a surrounding markdown code block, if any."""
    content_stripped = content.strip()
    if content_stripped.startswith("```"):
        lines = content_stripped.split("\n")
        if lines[0].startswith("```"):
            lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        content_stripped = "\n".join(lines).strip()
    return content_stripped


def match_category(name: str, categories: Sequence[Category]) -> Optional[Category]:
    """Find a category by name, ignoring case and surrounding whitespace."""
    wanted = name.strip().casefold()
    for category in categories:
        if category.name.strip().casefold() == wanted:
            return category
    return None


def parse_classifier_output(text: str, categories: Sequence[Category]) -> ClassifierResponse:
    """
    Parse and validate the classifier's reply.

    Args:
        text: Raw reply text
        categories: Categories the reply must choose from

    Returns:
        ClassifierResponse with the canonical category name

    Raises:
        ClassifierError: If the reply is not a valid JSON object of the expected shape
        ValidationError: If the category is not in the list
    """
    content = strip_code_fences(text)
    try:
        raw = json.loads(content)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse classifier reply as JSON: {e}")
        raise ClassifierError(
            f"Classifier returned invalid JSON: {e}",
            details={"raw_response": text[:500]}
        ) from e

    if not isinstance(raw, dict):
        raise ClassifierError(
            "Classifier reply is not a JSON object",
            details={"raw_response": text[:500]}
        )

    try:
        result = ClassifierResponse(**raw)
    except PydanticValidationError as e:
        logger.error(f"Classifier reply validation failed: {e}")
        raise ClassifierError(
            f"Classifier reply failed validation: {e}",
            details={"raw_response": text[:500]}
        ) from e

    category = match_category(result.category, categories)
    if category is None:
        raise ValidationError(
            f"Classifier chose unknown category: {result.category}",
            details={"category": result.category}
        )

    return result.model_copy(update={"category": category.name})


class Classifier:
    """Callable that categorizes one transaction through the classifier client."""

    def __init__(self, client: ClassifierClient):
        self.client = client

    def __call__(
        self,
        payee: str,
        amount: float,
        categories: Sequence[Category],
        history: Optional[MerchantHistory] = None,
    ) -> ClassifierResponse:
        prompt = build_categorization_prompt(payee, amount, categories, history)
        reply = self.client.complete(prompt)
        result = parse_classifier_output(reply, categories)
        logger.info(f"Classified {payee!r} as {result.category} ({result.confidence:.2f})")
        return result
