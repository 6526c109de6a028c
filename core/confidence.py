"""
Merchant confidence learning rules.

Scores live on a 0-100 scale. A stronger observation replaces the current
score outright; a weaker one only pulls it down slowly. Corrections decay
the wrong category and bootstrap the right one at a fixed trust level.
"""
import re

MIN_SCORE = 0.0
MAX_SCORE = 100.0

# Weights used when a weaker observation arrives
BLEND_KEEP = 0.8
BLEND_OBSERVED = 0.2
CORRECTION_DECAY = 0.7
CORRECTION_BOOTSTRAP_SCORE = 80.0

# Score assumed for a category that has events but no confidence row yet
DEFAULT_CONFIDENCE_SCORE = 50.0

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_name(name: str) -> str:
    """
    Normalize a payee name for merchant matching.

    Lowercases, drops everything except ASCII letters, digits and whitespace,
    then collapses whitespace runs. Idempotent.

    Args:
        name: Raw payee name

    Returns:
        Normalized merchant key (may be empty)
    """
    if not name:
        return ""
    text = _NON_ALNUM.sub("", name.lower())
    return _WHITESPACE.sub(" ", text).strip()


def clamp_score(score: float) -> float:
    return max(MIN_SCORE, min(MAX_SCORE, float(score)))


def blend_confidence(current: float, observed: float) -> float:
    """
    Blend a new observation into the current score.

    Args:
        current: Current score (0-100)
        observed: Observed score (0-100)

    Returns:
        Updated score, clamped to [0, 100]
    """
    if observed > current:
        return clamp_score(observed)
    return clamp_score(current * BLEND_KEEP + observed * BLEND_OBSERVED)


def decay_confidence(current: float) -> float:
    """Penalize a category after a human correction."""
    return clamp_score(current * CORRECTION_DECAY)


def weighted_score(confidence_score: float, category_count: int, total_count: int) -> float:
    """Score a category by its confidence and share of the merchant's events."""
    if total_count <= 0:
        return 0.0
    return confidence_score * (category_count / total_count)
