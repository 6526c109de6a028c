"""
Prompt builder for transaction categorization.
"""
from typing import Optional, Sequence

from core.schema import Category, MerchantHistory

RULES = """You are categorizing personal budget transactions.
Pick the single best category for the transaction from the list of available categories.
Use the exact category name as written in the list. Prefer the merchant's historical
category when it is consistent. Use a lower confidence when the merchant is ambiguous."""


def build_history_context(history: Optional[MerchantHistory]) -> str:
    if history is None or history.is_new or not history.history:
        return "This is a new merchant with no history."

    lines = ["Historical categorizations for this merchant:"]
    for entry in history.history:
        lines.append(
            f"- {entry.category_name}: {entry.usage_count} times "
            f"({entry.avg_confidence * 100:.0f}% confidence)"
        )
    return "\n".join(lines)


def build_categorization_prompt(
    payee: str,
    amount: float,
    categories: Sequence[Category],
    history: Optional[MerchantHistory] = None,
) -> str:
    """
    Build the single-turn categorization prompt.

    Args:
        payee: Payee name as it appears on the transaction
        amount: Transaction amount in currency units
        categories: Available categories
        history: Learned merchant history, if any

    Returns:
        Prompt text asking for a JSON object
    """
    category_names = ", ".join(c.name for c in categories)

    return f"""{RULES}

Available categories: {category_names}

Merchant: {payee}
Amount: ${abs(amount):.2f}

{build_history_context(history)}

Respond with ONLY a JSON object in this exact format:
{{
  "category": "exact category name from the list",
  "confidence": 0.95,
  "reasoning": "brief explanation"
}}"""
